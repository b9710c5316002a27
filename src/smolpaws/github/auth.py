"""GitHub App credential broker.

A GitHub App authenticates in two steps:

1. Mint a short-lived RS256 JWT ("app assertion") signed with the app's
   private key: ``{iat: now - 60, exp: now + 540, iss: app_id}``. The
   60-second backdate tolerates clock skew; GitHub rejects expiries more
   than 10 minutes out.
2. Exchange the assertion for an installation access token with
   ``POST /app/installations/{id}/access_tokens``.

Tokens are fetched fresh for every dispatch and never cached, logged or
persisted.
"""

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger(__name__)

ASSERTION_BACKDATE_SECONDS = 60
ASSERTION_LIFETIME_SECONDS = 540
USER_AGENT = "smolpaws-webhook"


class CredentialError(Exception):
    """Raised when an app assertion cannot be minted or exchanged.

    Attributes:
        status_code: HTTP status of the failed exchange, if any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class InstallationToken:
    """Installation-scoped GitHub API credential.

    Attributes:
        token: The bearer token. Excluded from repr.
        installation_id: Installation the token is scoped to.
        expires_at: Expiry timestamp as reported by GitHub, if any.
    """

    token: str = field(repr=False)
    installation_id: int
    expires_at: Optional[str] = None


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    """Load a PKCS#1 or PKCS#8 PEM key.

    Keys stored in a single-line environment variable often carry literal
    ``\\n`` sequences instead of newlines; those are restored first.
    """
    pem = private_key_pem.strip()
    if "\\n" in pem and "\n" not in pem:
        pem = pem.replace("\\n", "\n")

    try:
        key = serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as exc:
        raise CredentialError(f"Invalid GitHub App private key: {exc}") from exc

    if not isinstance(key, rsa.RSAPrivateKey):
        raise CredentialError("GitHub App private key must be an RSA key")
    return key


def mint_app_assertion(
    app_id: str,
    private_key_pem: str,
    now: Optional[int] = None,
) -> str:
    """Mint a signed JWT identifying the GitHub App.

    Args:
        app_id: The GitHub App id (``iss`` claim).
        private_key_pem: The app's RSA private key in PEM format.
        now: Current Unix time; defaults to ``time.time()``.

    Returns:
        ``header.payload.signature``, each segment base64url without padding.

    Raises:
        CredentialError: If the key cannot be loaded.
    """
    issued = int(time.time()) if now is None else now
    header = {"alg": "RS256", "typ": "JWT"}
    claims = {
        "iat": issued - ASSERTION_BACKDATE_SECONDS,
        "exp": issued + ASSERTION_LIFETIME_SECONDS,
        "iss": str(app_id),
    }

    encoded_header = _base64url(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    encoded_claims = _base64url(json.dumps(claims, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{encoded_header}.{encoded_claims}".encode("ascii")

    key = _load_private_key(private_key_pem)
    signature = key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())

    return f"{encoded_header}.{encoded_claims}.{_base64url(signature)}"


class CredentialBroker:
    """Issues installation tokens for the configured GitHub App.

    Attributes:
        app_id: GitHub App id.
        base_url: Base URL for GitHub API (supports GitHub Enterprise).
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        app_id: Optional[str],
        private_key_pem: Optional[str],
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.app_id = app_id
        self._private_key_pem = private_key_pem
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def get_installation_token(self, installation_id: int) -> InstallationToken:
        """Mint a fresh assertion and exchange it for an installation token.

        Raises:
            CredentialError: If the app is not configured or GitHub refuses
                the exchange.
        """
        if not self.app_id or not self._private_key_pem:
            raise CredentialError("GitHub App credentials not configured")

        assertion = mint_app_assertion(self.app_id, self._private_key_pem)
        return await self.exchange_for_installation_token(assertion, installation_id)

    async def exchange_for_installation_token(
        self,
        assertion: str,
        installation_id: int,
    ) -> InstallationToken:
        """Exchange an app assertion for an installation access token.

        Args:
            assertion: JWT from mint_app_assertion.
            installation_id: Installation to scope the token to.

        Returns:
            The installation token.

        Raises:
            CredentialError: On a non-success response, a transport failure
                or a response without a token.
        """
        path = f"/app/installations/{installation_id}/access_tokens"
        headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {assertion}",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(path, headers=headers)
        except httpx.HTTPError as exc:
            raise CredentialError(
                f"Installation token request failed: {exc}"
            ) from exc

        if not response.is_success:
            logger.error(
                "Installation token exchange failed",
                extra={
                    "installation_id": installation_id,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise CredentialError(
                f"Failed to get installation token: {response.text[:500]}",
                status_code=response.status_code,
            )

        data = response.json()
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise CredentialError("Installation token response had no token")

        logger.info(
            "Installation token issued",
            extra={"installation_id": installation_id},
        )
        return InstallationToken(
            token=token,
            installation_id=installation_id,
            expires_at=data.get("expires_at"),
        )
