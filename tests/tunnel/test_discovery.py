"""Tests for forwarding agent discovery."""

import json
from unittest.mock import Mock, patch

import psutil

from awsx.tunnel.discovery import find_agents, parse_agent_cmdline

SESSION = json.dumps(
    {"SessionId": "dev-0abc", "StreamUrl": "wss://ssmmessages", "TokenValue": "x"}
)


def plugin_cmdline(parameters):
    request = json.dumps(
        {
            "Target": "i-0123456789abcdef0",
            "DocumentName": "AWS-StartPortForwardingSessionToRemoteHost",
            "Parameters": parameters,
        }
    )
    return [
        "session-manager-plugin",
        SESSION,
        "eu-west-1",
        "StartSession",
        "prod",
        request,
        "https://ssm.eu-west-1.amazonaws.com",
    ]


class TestParseAgentCmdline:
    def test_remote_host_forward(self):
        cmdline = plugin_cmdline(
            {"portNumber": ["5432"], "localPortNumber": ["15432"], "host": ["db.internal"]}
        )
        agent = parse_agent_cmdline(100, cmdline, ppid=99)

        assert agent.target == "i-0123456789abcdef0"
        assert agent.local_port == 15432
        assert agent.remote_port == 5432
        assert agent.remote_host == "db.internal"
        assert agent.ppid == 99

    def test_scalar_parameters(self):
        agent = parse_agent_cmdline(
            100, plugin_cmdline({"portNumber": "80", "localPortNumber": "8080"})
        )
        assert agent.local_port == 8080
        assert agent.remote_host is None

    def test_unparseable_arguments(self):
        agent = parse_agent_cmdline(100, ["session-manager-plugin", "{not json", "x"])
        assert agent.target is None
        assert agent.local_port is None

    def test_out_of_range_port_ignored(self):
        agent = parse_agent_cmdline(
            100, plugin_cmdline({"portNumber": ["80"], "localPortNumber": ["99999"]})
        )
        assert agent.local_port is None
        assert agent.remote_port == 80


def fake_proc(pid, cmdline, status=psutil.STATUS_SLEEPING, ppid=1):
    return Mock(info={"pid": pid, "ppid": ppid, "cmdline": cmdline, "status": status})


class TestFindAgents:
    def test_filters_by_signature_and_zombies(self):
        cmdline = plugin_cmdline({"portNumber": ["80"], "localPortNumber": ["8080"]})
        procs = [
            fake_proc(1, ["/sbin/init"]),
            fake_proc(2, None),
            fake_proc(3, cmdline),
            fake_proc(4, cmdline, status=psutil.STATUS_ZOMBIE),
        ]
        with patch("awsx.tunnel.discovery.psutil.process_iter", return_value=procs):
            agents = find_agents()

        assert [a.pid for a in agents] == [3]
        assert agents[0].local_port == 8080
