"""Shared pytest fixtures for awsx tests."""

from collections.abc import Callable
from typing import Any
from unittest.mock import Mock

import pytest

from awsx.common.config import ProviderContext
from awsx.inventory.client import InventoryClient
from awsx.inventory.models import AgentStatus, Instance, InstanceState


class FakePaginator:
    """Paginator returning canned pages for one operation."""

    def __init__(self, client: "FakeAwsClient", operation: str):
        self.client = client
        self.operation = operation

    def paginate(self, **kwargs: Any) -> list[dict[str, Any]]:
        response = self.client.respond(self.operation, kwargs)
        return response if isinstance(response, list) else [response]


class FakeAwsClient:
    """Stands in for a boto3 client.

    responses maps operation names to a dict, a list of pages, an exception
    to raise, or a callable receiving the call's keyword arguments.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.waiters: dict[str, Mock] = {}

    def respond(self, operation: str, kwargs: dict[str, Any]) -> Any:
        self.calls.append((operation, kwargs))
        response = self.responses.get(operation, {})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(**kwargs)
        return response

    def get_paginator(self, operation: str) -> FakePaginator:
        return FakePaginator(self, operation)

    def get_waiter(self, name: str) -> Mock:
        return self.waiters.setdefault(name, Mock())

    def called(self, operation: str) -> list[dict[str, Any]]:
        return [kwargs for op, kwargs in self.calls if op == operation]

    def __getattr__(self, operation: str) -> Callable[..., Any]:
        if operation.startswith("_"):
            raise AttributeError(operation)

        def call(**kwargs: Any) -> Any:
            return self.respond(operation, kwargs)

        return call


@pytest.fixture
def aws_clients() -> dict[str, FakeAwsClient]:
    """One fake client per service, created on first use."""
    return {
        "ec2": FakeAwsClient(),
        "ssm": FakeAwsClient(),
        "elbv2": FakeAwsClient(),
        "sts": FakeAwsClient(),
    }


@pytest.fixture
def inventory_client(aws_clients) -> InventoryClient:
    """InventoryClient wired to the fake clients."""
    return InventoryClient(
        context=ProviderContext(profile="test", region="eu-west-1"),
        client_factory=lambda service: aws_clients[service],
    )


@pytest.fixture
def make_instance() -> Callable[..., Instance]:
    """Factory for Instance snapshots, online and running by default."""

    def factory(
        instance_id: str = "i-0123456789abcdef0",
        name: str = "web-1",
        online: bool = True,
        private_ip: str | None = "10.0.1.10",
        security_group_ids: tuple[str, ...] = (),
        state: InstanceState = InstanceState.RUNNING,
    ) -> Instance:
        return Instance(
            id=instance_id,
            name=name,
            instance_type="t3.micro",
            state=state,
            agent_status=AgentStatus.ONLINE if online else AgentStatus.OFFLINE,
            private_ip=private_ip,
            security_group_ids=security_group_ids,
        )

    return factory


@pytest.fixture
def mock_process():
    """Create a mock Popen object for a running process.

    Returns:
        Mock: Mock process with common attributes
    """
    process = Mock()
    process.pid = 12345
    process.poll.return_value = None
    process.wait.return_value = 0
    return process


@pytest.fixture
def fake_binary(tmp_path):
    """Executable file usable as an absolute command path."""
    binary = tmp_path / "fake-tool"
    binary.write_text("#!/bin/sh\nexit 0\n")
    binary.chmod(0o755)
    return binary
