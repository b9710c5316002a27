"""Pytest configuration and shared fixtures for smolpaws tests."""

from typing import Any, Dict, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from src.smolpaws.webhook.models import EventKind, GithubEventPayload, QueueMessage


@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_private_key) -> str:
    """PKCS#1 ("BEGIN RSA PRIVATE KEY") PEM, the format GitHub hands out."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def make_payload_dict(
    body: str = "@smolpaws please look at this",
    action: Optional[str] = "created",
    actor: str = "octocat",
    owner: str = "acme",
    repo: str = "acme/widgets",
    issue_number: Optional[int] = 7,
    installation_id: Optional[int] = 42,
    **extra: Any,
) -> Dict[str, Any]:
    """Build an issue_comment webhook payload."""
    payload: Dict[str, Any] = {
        "sender": {"login": actor, "id": 1},
        "comment": {"body": body, "id": 99},
        "repository": {"full_name": repo, "owner": {"login": owner}},
    }
    if action is not None:
        payload["action"] = action
    if issue_number is not None:
        payload["issue"] = {"number": issue_number}
    if installation_id is not None:
        payload["installation"] = {"id": installation_id}
    payload.update(extra)
    return payload


def make_message(
    delivery_id: Optional[str] = "delivery-1",
    event: EventKind = EventKind.ISSUE_COMMENT,
    **payload_kwargs: Any,
) -> QueueMessage:
    return QueueMessage(
        event=event,
        payload=GithubEventPayload.model_validate(make_payload_dict(**payload_kwargs)),
        delivery_id=delivery_id,
    )
