"""Discovery of forwarding agents already running on this host.

Agents are detached and survive restarts of awsx, so the registry is rebuilt
from the process list. The agent receives its session parameters as JSON
arguments; the target and ports are read from whichever argument carries
them. This is best effort: anything that cannot be parsed is left as None.
"""

import json
from collections.abc import Iterable
from typing import Any

import psutil
from pydantic import BaseModel, ConfigDict

from ..common.logging import get_logger

logger = get_logger(__name__)


class AgentProcess(BaseModel):
    """A running forwarding agent and what its arguments reveal."""

    model_config = ConfigDict(frozen=True)

    pid: int
    ppid: int | None = None
    target: str | None = None
    local_port: int | None = None
    remote_port: int | None = None
    remote_host: str | None = None


def _json_objects(text: str) -> Iterable[dict[str, Any]]:
    """Yield every JSON object embedded in text."""
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            obj, end = decoder.raw_decode(text, index)
        except ValueError:
            index = text.find("{", index + 1)
            continue
        if isinstance(obj, dict):
            yield obj
        index = text.find("{", end)


def _first(value: Any) -> str | None:
    if isinstance(value, list):
        value = value[0] if value else None
    if value is None:
        return None
    return str(value)


def _port(value: Any) -> int | None:
    text = _first(value)
    if text is None or not text.isdigit():
        return None
    port = int(text)
    return port if 1 <= port <= 65535 else None


def parse_agent_cmdline(pid: int, cmdline: list[str], ppid: int | None = None) -> AgentProcess:
    """Extract target and ports from an agent's arguments."""
    target = local_port = remote_port = remote_host = None

    for arg in cmdline:
        for obj in _json_objects(arg):
            params = obj.get("Parameters")
            sources = [obj, params] if isinstance(params, dict) else [obj]
            if target is None and isinstance(obj.get("Target"), str):
                target = obj["Target"]
            for source in sources:
                local_port = local_port or _port(source.get("localPortNumber"))
                remote_port = remote_port or _port(source.get("portNumber"))
                remote_host = remote_host or _first(source.get("host"))

    return AgentProcess(
        pid=pid,
        ppid=ppid,
        target=target,
        local_port=local_port,
        remote_port=remote_port,
        remote_host=remote_host,
    )


def find_agents(signature: str = "session-manager-plugin") -> list[AgentProcess]:
    """Scan the process list for forwarding agents."""
    agents: list[AgentProcess] = []
    for proc in psutil.process_iter(["pid", "ppid", "cmdline", "status"]):
        info = proc.info
        cmdline = info.get("cmdline") or []
        if info.get("status") == psutil.STATUS_ZOMBIE:
            continue
        if not cmdline or signature not in " ".join(cmdline):
            continue
        agent = parse_agent_cmdline(info["pid"], cmdline, info.get("ppid"))
        logger.debug(
            "Found forwarding agent",
            pid=agent.pid,
            target=agent.target,
            local_port=agent.local_port,
        )
        agents.append(agent)
    return agents
