"""Forwarding agent launcher.

Builds the `aws ssm start-session` command line for a hop candidate and
spawns it detached, so the port-forward outlives this process.
"""

import json
from datetime import datetime
from pathlib import Path

from ..common.config import ProviderContext
from ..common.exceptions import AgentLaunchFailed
from ..common.logging import get_logger
from ..common.process import ProcessManager
from ..common.utils import validate_port
from ..resolver.models import HopCandidate
from .config import TunnelConfig

logger = get_logger(__name__)


class ForwardingAgentLauncher:
    """Spawns forwarding agents for a provider context."""

    def __init__(
        self,
        context: ProviderContext | None = None,
        config: TunnelConfig | None = None,
    ):
        self.context = context or ProviderContext.from_env()
        self.config = config or TunnelConfig()

    def build_command(self, candidate: HopCandidate, local_port: int) -> list[str]:
        """Build the agent command line forwarding local_port through candidate."""
        validate_port(local_port, "Local port")
        parameters: dict[str, list[str]] = {
            "portNumber": [str(candidate.remote_port)],
            "localPortNumber": [str(local_port)],
        }
        if candidate.remote_host:
            document = self.config.remote_document
            parameters["host"] = [candidate.remote_host]
        else:
            document = self.config.direct_document

        return [
            self.config.aws_executable,
            "ssm",
            "start-session",
            "--target",
            candidate.hop.id,
            "--document-name",
            document,
            "--parameters",
            json.dumps(parameters, separators=(",", ":")),
            *self.context.cli_args(),
        ]

    def launch(self, candidate: HopCandidate, local_port: int) -> ProcessManager:
        """Start a detached forwarding agent.

        Returns:
            ProcessManager owning the spawned agent

        Raises:
            ExternalToolMissing: If the aws executable is not installed
            AgentLaunchFailed: If the process cannot be spawned
        """
        args = self.build_command(candidate, local_port)
        process = ProcessManager(args, log_path=self._log_path(local_port))
        try:
            pid = process.start()
        except OSError as e:
            raise AgentLaunchFailed(
                f"Failed to launch forwarding agent via {candidate.hop.id} "
                f"for local port {local_port}: {e}"
            ) from e

        logger.info(
            "Forwarding agent launched",
            pid=pid,
            hop=candidate.hop.id,
            destination=candidate.destination,
            local_port=local_port,
        )
        return process

    def _log_path(self, local_port: int) -> Path | None:
        if self.config.log_dir is None:
            return None
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        return self.config.log_dir / f"tunnel-{local_port}-{stamp}.log"
