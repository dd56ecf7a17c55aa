"""Tests for the forwarding agent launcher."""

import json
from unittest.mock import patch

import pytest

from awsx.common.config import ProviderContext
from awsx.common.exceptions import AgentLaunchFailed
from awsx.resolver.models import CandidateSource, HopCandidate
from awsx.tunnel import ForwardingAgentLauncher, TunnelConfig


@pytest.fixture
def launcher(tmp_path):
    return ForwardingAgentLauncher(
        context=ProviderContext(profile="prod", region="eu-west-1"),
        config=TunnelConfig(log_dir=tmp_path / "logs"),
    )


def test_direct_command(launcher, make_instance):
    candidate = HopCandidate(
        hop=make_instance(instance_id="i-web"), remote_port=8000, source=CandidateSource.DIRECT
    )
    args = launcher.build_command(candidate, 8080)

    assert args[:5] == ["aws", "ssm", "start-session", "--target", "i-web"]
    assert args[args.index("--document-name") + 1] == "AWS-StartPortForwardingSession"
    parameters = json.loads(args[args.index("--parameters") + 1])
    assert parameters == {"portNumber": ["8000"], "localPortNumber": ["8080"]}
    assert args[-4:] == ["--profile", "prod", "--region", "eu-west-1"]


def test_remote_host_command(launcher, make_instance):
    candidate = HopCandidate(
        hop=make_instance(instance_id="i-bastion"),
        remote_host="10.0.2.7",
        remote_port=443,
        source=CandidateSource.BASTION,
    )
    args = launcher.build_command(candidate, 8443)

    assert (
        args[args.index("--document-name") + 1]
        == "AWS-StartPortForwardingSessionToRemoteHost"
    )
    parameters = json.loads(args[args.index("--parameters") + 1])
    assert parameters["host"] == ["10.0.2.7"]


def test_invalid_local_port(launcher, make_instance):
    candidate = HopCandidate(hop=make_instance(), remote_port=80, source=CandidateSource.DIRECT)
    with pytest.raises(ValueError):
        launcher.build_command(candidate, 0)


def test_launch_spawn_failure(launcher, make_instance, fake_binary):
    launcher.config.aws_executable = str(fake_binary)
    candidate = HopCandidate(hop=make_instance(), remote_port=80, source=CandidateSource.DIRECT)
    with patch("awsx.common.process.subprocess.Popen", side_effect=PermissionError("denied")):
        with pytest.raises(AgentLaunchFailed, match="local port 8080"):
            launcher.launch(candidate, 8080)


def test_launch_logs_to_log_dir(launcher, make_instance, fake_binary, mock_process, tmp_path):
    launcher.config.aws_executable = str(fake_binary)
    candidate = HopCandidate(hop=make_instance(), remote_port=80, source=CandidateSource.DIRECT)
    with patch("awsx.common.process.subprocess.Popen", return_value=mock_process):
        process = launcher.launch(candidate, 8080)

    assert process.pid == 12345
    assert process.log_path.parent == tmp_path / "logs"
    assert process.log_path.name.startswith("tunnel-8080-")
