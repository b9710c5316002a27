"""Agent driver invocation inside a sandbox.

The runner installs the agent runtime into a virtualenv under the agent
directory (once per sandbox), writes the driver script, and runs it with the
prompt and LLM settings passed as environment variables. The driver prints
``__SMOLPAWS_RESPONSE__`` followed by the agent's final message; everything
after the last marker is the reply.
"""

import logging
from typing import Dict, Optional

from src.smolpaws.sandbox.models import LlmConfig
from src.smolpaws.sandbox.provider import Sandbox, run_shell
from src.smolpaws.sandbox.shell import env_assignments, shell_join, shell_quote

logger = logging.getLogger(__name__)

AGENT_DIR = "/workspace/smolpaws-agent"
RESPONSE_MARKER = "__SMOLPAWS_RESPONSE__"
DEFAULT_AGENT_PACKAGES = "openhands-sdk openhands-tools"
HEREDOC_DELIMITER = "SMOLPAWS_DRIVER_EOF"

DRIVER_SCRIPT = f'''import os
import sys

from pydantic import SecretStr

from openhands.sdk import LLM, Conversation, TextContent
from openhands.sdk.event import MessageEvent
from openhands.tools.preset.default import get_default_agent

prompt = os.environ.get("SMOLPAWS_PROMPT", "")
model = os.environ.get("LLM_MODEL", "")
if not model:
    sys.exit("LLM model is required")

provider = os.environ.get("LLM_PROVIDER") or None
if provider and "/" not in model:
    model = f"{{provider}}/{{model}}"

api_key = os.environ.get("LLM_API_KEY") or None
llm = LLM(
    usage_id="smolpaws",
    model=model,
    base_url=os.environ.get("LLM_BASE_URL") or None,
    api_key=SecretStr(api_key) if api_key else None,
)
agent = get_default_agent(llm=llm, cli_mode=True)

response = ""


def on_event(event):
    global response
    if isinstance(event, MessageEvent) and event.source == "agent":
        texts = [
            part.text
            for part in event.llm_message.content
            if isinstance(part, TextContent)
        ]
        response = "\\n".join(texts).strip()


conversation = Conversation(
    agent=agent,
    workspace=os.environ.get("SMOLPAWS_WORKSPACE_ROOT") or os.getcwd(),
    persistence_dir=os.environ.get("SMOLPAWS_PERSISTENCE_DIR") or None,
    callbacks=[on_event],
    max_iteration_per_run=50,
)
conversation.send_message(prompt)
conversation.run()
print("{RESPONSE_MARKER}" + response)
'''


def extract_reply(output: str) -> str:
    """Return the text after the last response marker, trimmed.

    Falls back to the whole trimmed output when the marker is missing.
    """
    index = output.rfind(RESPONSE_MARKER)
    if index >= 0:
        return output[index + len(RESPONSE_MARKER):].strip()
    return output.strip()


def build_driver_env(
    prompt: str,
    workspace_root: str,
    llm: LlmConfig,
    persistence_dir: Optional[str] = None,
) -> Dict[str, str]:
    """Environment variables for the driver; unset optionals are omitted."""
    env = {
        "SMOLPAWS_PROMPT": prompt,
        "SMOLPAWS_WORKSPACE_ROOT": workspace_root,
        "LLM_MODEL": llm.model,
    }
    if llm.provider:
        env["LLM_PROVIDER"] = llm.provider
    if llm.base_url:
        env["LLM_BASE_URL"] = llm.base_url
    if llm.api_key:
        env["LLM_API_KEY"] = llm.api_key
    if persistence_dir:
        env["SMOLPAWS_PERSISTENCE_DIR"] = persistence_dir
    return env


class SandboxAgentRunner:
    """Installs and runs the agent driver in a sandbox.

    Attributes:
        agent_dir: Directory holding the virtualenv and driver script.
        agent_packages: Space-separated pip requirements for the runtime.
        command_timeout_seconds: Deadline for each command, including the
            agent run itself.
        persistence_dir: Optional conversation persistence directory.
    """

    def __init__(
        self,
        agent_dir: str = AGENT_DIR,
        agent_packages: str = DEFAULT_AGENT_PACKAGES,
        command_timeout_seconds: int = 1800,
        persistence_dir: Optional[str] = None,
    ):
        self.agent_dir = agent_dir
        self.agent_packages = agent_packages
        self.command_timeout_seconds = command_timeout_seconds
        self.persistence_dir = persistence_dir

    @property
    def script_path(self) -> str:
        return f"{self.agent_dir}/run_agent.py"

    @property
    def venv_dir(self) -> str:
        return f"{self.agent_dir}/.venv"

    @property
    def install_marker(self) -> str:
        """Written only after the runtime installed cleanly."""
        return f"{self.venv_dir}/.smolpaws-installed"

    def install_command(self) -> str:
        venv_pip = f"{self.venv_dir}/bin/pip"
        packages = self.agent_packages.split()
        # A leftover venv without the marker is from a failed install
        return (
            f"if [ ! -f {shell_quote(self.install_marker)} ]; then "
            f"{shell_join(['rm', '-rf', self.venv_dir])} && "
            f"{shell_join(['python3', '-m', 'venv', self.venv_dir])} && "
            f"{shell_join([venv_pip, 'install', '--quiet', *packages])} >/dev/null && "
            f"{shell_join(['touch', self.install_marker])}; fi"
        )

    def write_script_command(self) -> str:
        return (
            f"cat > {shell_quote(self.script_path)} <<'{HEREDOC_DELIMITER}'\n"
            f"{DRIVER_SCRIPT}\n"
            f"{HEREDOC_DELIMITER}"
        )

    def run_command(self, env: Dict[str, str]) -> str:
        venv_python = f"{self.venv_dir}/bin/python"
        return (
            f"cd {shell_quote(self.agent_dir)} && "
            f"{env_assignments(env)} {shell_join([venv_python, self.script_path])}"
        )

    async def run(
        self,
        sandbox: Sandbox,
        prompt: str,
        workspace_root: str,
        llm: LlmConfig,
    ) -> str:
        """Run the agent against a checked-out workspace.

        Args:
            sandbox: Provisioned sandbox.
            prompt: User request text.
            workspace_root: Repository checkout the agent works in.
            llm: LLM settings for the driver.

        Returns:
            The agent's reply text.

        Raises:
            SandboxCommandError: If any step fails or times out.
        """
        await self._run(sandbox, shell_join(["mkdir", "-p", self.agent_dir]), "mkdir agent")
        await self._run(sandbox, self.install_command(), "install agent runtime")
        await self._run(sandbox, self.write_script_command(), "write driver script")

        env = build_driver_env(prompt, workspace_root, llm, self.persistence_dir)
        output = await self._run(sandbox, self.run_command(env), "run agent")

        reply = extract_reply(output)
        logger.info(
            "Agent run finished",
            extra={"workspace": workspace_root, "reply_length": len(reply)},
        )
        return reply

    async def _run(self, sandbox: Sandbox, command: str, command_name: str) -> str:
        return await run_shell(
            sandbox, command, command_name, self.command_timeout_seconds
        )
