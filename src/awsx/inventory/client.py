"""Inventory client: read-only queries against EC2, SSM and ELBv2.

Also carries the few fleet actions (start, stop, resize) exposed by awsx.
"""

from collections.abc import Callable, Iterator
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..common.config import ProviderContext
from ..common.exceptions import AmbiguousTarget, NoInstanceFound, ProviderError
from ..common.logging import get_logger
from .models import (
    AgentStatus,
    Instance,
    InstanceState,
    ListenerRule,
    LoadBalancer,
    SecurityGroup,
    SecurityGroupRule,
    TargetGroup,
    TargetHealth,
)

logger = get_logger(__name__)

ClientFactory = Callable[[str], Any]


class InventoryClient:
    """Stateless wrapper around the provider APIs awsx reads from."""

    def __init__(
        self,
        context: ProviderContext | None = None,
        client_factory: ClientFactory | None = None,
    ):
        """Initialize the inventory client.

        Args:
            context: Profile and region to query; read from the environment if None
            client_factory: Callable returning a boto3 client for a service name;
                defaults to a boto3 Session built from the context
        """
        self.context = context or ProviderContext.from_env()
        self._client_factory = client_factory or self._session_factory()
        self._clients: dict[str, Any] = {}

    def _session_factory(self) -> ClientFactory:
        def factory(service: str) -> Any:
            session = boto3.Session(
                profile_name=self.context.profile,
                region_name=self.context.region,
            )
            return session.client(service)

        return factory

    def _client(self, service: str) -> Any:
        if service not in self._clients:
            self._clients[service] = self._client_factory(service)
        return self._clients[service]

    def _call(self, service: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response: dict[str, Any] = getattr(self._client(service), operation)(**kwargs)
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"{service}.{operation}", str(e)) from e
        return response

    def _paginate(
        self, service: str, operation: str, key: str, **kwargs: Any
    ) -> Iterator[Any]:
        try:
            paginator = self._client(service).get_paginator(operation)
            for page in paginator.paginate(**kwargs):
                yield from page.get(key, [])
        except (ClientError, BotoCoreError) as e:
            raise ProviderError(f"{service}.{operation}", str(e)) from e

    # Instances

    def agent_status_map(self) -> dict[str, AgentStatus]:
        """Map instance IDs to their agent ping status."""
        statuses: dict[str, AgentStatus] = {}
        for info in self._paginate(
            "ssm", "describe_instance_information", "InstanceInformationList"
        ):
            try:
                statuses[info["InstanceId"]] = AgentStatus(info.get("PingStatus", "-"))
            except ValueError:
                statuses[info["InstanceId"]] = AgentStatus.UNKNOWN
        return statuses

    def list_instances(self) -> list[Instance]:
        """List instances in provider order, joined with agent status.

        Agent status is best effort: if the SSM query fails every instance is
        reported with an unknown status rather than failing the listing.
        """
        try:
            statuses = self.agent_status_map()
        except ProviderError as e:
            logger.warning("Agent status unavailable", error=str(e))
            statuses = {}

        instances = []
        for reservation in self._paginate("ec2", "describe_instances", "Reservations"):
            for raw in reservation.get("Instances", []):
                instances.append(_to_instance(raw, statuses))
        logger.debug("Listed instances", count=len(instances))
        return instances

    def online_instances(self) -> list[Instance]:
        """Instances whose forwarding agent is online, in provider order."""
        return [i for i in self.list_instances() if i.agent_online]

    def find_instance_by_name(self, pattern: str, online_only: bool = False) -> Instance:
        """Find exactly one instance whose Name tag contains pattern.

        Raises:
            NoInstanceFound: If nothing matches
            AmbiguousTarget: If more than one instance matches
        """
        needle = pattern.lower()
        candidates = self.online_instances() if online_only else self.list_instances()
        matches = [i for i in candidates if needle in i.name.lower()]
        if not matches:
            raise NoInstanceFound(pattern)
        if len(matches) > 1:
            raise AmbiguousTarget(pattern, [m.label for m in matches])
        return matches[0]

    def instance_by_id(self, instance_id: str) -> Instance | None:
        for instance in self.list_instances():
            if instance.id == instance_id:
                return instance
        return None

    # Load balancers

    def describe_load_balancers(self) -> list[LoadBalancer]:
        return [
            LoadBalancer(
                arn=lb["LoadBalancerArn"],
                name=lb.get("LoadBalancerName", ""),
                dns_name=lb.get("DNSName", ""),
            )
            for lb in self._paginate("elbv2", "describe_load_balancers", "LoadBalancers")
            if lb.get("Type", "application") == "application"
        ]

    def describe_listener_rules(self, load_balancer_arn: str) -> list[ListenerRule]:
        """All routing rules of every listener on a load balancer."""
        rules: list[ListenerRule] = []
        for listener in self._paginate(
            "elbv2", "describe_listeners", "Listeners", LoadBalancerArn=load_balancer_arn
        ):
            listener_arn = listener["ListenerArn"]
            response = self._call("elbv2", "describe_rules", ListenerArn=listener_arn)
            for raw in response.get("Rules", []):
                rules.append(_to_rule(raw, listener_arn))
        return rules

    def describe_target_groups(self, load_balancer_arn: str) -> list[TargetGroup]:
        return [
            TargetGroup(
                arn=tg["TargetGroupArn"],
                name=tg.get("TargetGroupName", ""),
                port=tg.get("Port"),
            )
            for tg in self._paginate(
                "elbv2",
                "describe_target_groups",
                "TargetGroups",
                LoadBalancerArn=load_balancer_arn,
            )
        ]

    def describe_target_health(
        self, target_group_arn: str, default_port: int | None = None
    ) -> list[TargetHealth]:
        response = self._call(
            "elbv2", "describe_target_health", TargetGroupArn=target_group_arn
        )
        targets = []
        for desc in response.get("TargetHealthDescriptions", []):
            target = desc.get("Target", {})
            port = target.get("Port", default_port)
            if not target.get("Id") or port is None:
                continue
            targets.append(
                TargetHealth(
                    target_id=target["Id"],
                    port=port,
                    state=desc.get("TargetHealth", {}).get("State", "unknown"),
                )
            )
        return targets

    # Security groups

    def target_security_group_ids(self, target_id: str) -> list[str]:
        """Security groups of the network interfaces behind an instance ID or IP."""
        if target_id.startswith("i-"):
            flt = {"Name": "attachment.instance-id", "Values": [target_id]}
        else:
            flt = {"Name": "addresses.private-ip-address", "Values": [target_id]}

        group_ids: list[str] = []
        for eni in self._paginate(
            "ec2", "describe_network_interfaces", "NetworkInterfaces", Filters=[flt]
        ):
            for group in eni.get("Groups", []):
                if group["GroupId"] not in group_ids:
                    group_ids.append(group["GroupId"])
        return group_ids

    def describe_security_groups(self, group_ids: list[str]) -> list[SecurityGroup]:
        if not group_ids:
            return []
        return [
            _to_security_group(raw)
            for raw in self._paginate(
                "ec2", "describe_security_groups", "SecurityGroups", GroupIds=group_ids
            )
        ]

    # Fleet actions

    def start_instance(self, instance_id: str) -> None:
        logger.info("Starting instance", instance_id=instance_id)
        self._call("ec2", "start_instances", InstanceIds=[instance_id])

    def stop_instance(self, instance_id: str, force: bool = False) -> None:
        logger.info("Stopping instance", instance_id=instance_id, force=force)
        self._call("ec2", "stop_instances", InstanceIds=[instance_id], Force=force)

    def modify_instance_type(self, instance_id: str, instance_type: str) -> None:
        """Change the instance type; a running instance is stopped first."""
        instance = self.instance_by_id(instance_id)
        if instance is not None and instance.state == InstanceState.RUNNING:
            self.stop_instance(instance_id)
            try:
                self._client("ec2").get_waiter("instance_stopped").wait(
                    InstanceIds=[instance_id]
                )
            except (ClientError, BotoCoreError) as e:
                raise ProviderError("ec2.wait_instance_stopped", str(e)) from e
        logger.info("Resizing instance", instance_id=instance_id, instance_type=instance_type)
        self._call(
            "ec2",
            "modify_instance_attribute",
            InstanceId=instance_id,
            InstanceType={"Value": instance_type},
        )

    def caller_identity(self) -> dict[str, str]:
        response = self._call("sts", "get_caller_identity")
        return {
            "account": response.get("Account", "?"),
            "arn": response.get("Arn", "?"),
        }


def _tag(raw: dict[str, Any], key: str) -> str:
    for tag in raw.get("Tags") or []:
        if tag.get("Key") == key:
            return str(tag.get("Value", ""))
    return ""


def _to_instance(raw: dict[str, Any], statuses: dict[str, AgentStatus]) -> Instance:
    groups = raw.get("SecurityGroups") or []
    return Instance(
        id=raw["InstanceId"],
        name=_tag(raw, "Name"),
        instance_type=raw.get("InstanceType", ""),
        state=InstanceState.parse(raw.get("State", {}).get("Name")),
        agent_status=statuses.get(raw["InstanceId"], AgentStatus.UNKNOWN),
        private_ip=raw.get("PrivateIpAddress"),
        public_ip=raw.get("PublicIpAddress"),
        security_group_ids=tuple(g["GroupId"] for g in groups),
        security_group_names=tuple(g.get("GroupName", "") for g in groups),
    )


def _to_rule(raw: dict[str, Any], listener_arn: str) -> ListenerRule:
    hosts: list[str] = []
    for condition in raw.get("Conditions", []):
        if condition.get("Field") != "host-header":
            continue
        config = condition.get("HostHeaderConfig", {})
        hosts.extend(config.get("Values") or condition.get("Values") or [])

    target_groups: list[str] = []
    for action in raw.get("Actions", []):
        if action.get("Type") != "forward":
            continue
        if action.get("TargetGroupArn"):
            target_groups.append(action["TargetGroupArn"])
        for tg in action.get("ForwardConfig", {}).get("TargetGroups", []):
            if tg["TargetGroupArn"] not in target_groups:
                target_groups.append(tg["TargetGroupArn"])

    return ListenerRule(
        arn=raw["RuleArn"],
        listener_arn=listener_arn,
        priority=str(raw.get("Priority", "default")),
        is_default=bool(raw.get("IsDefault", False)),
        host_patterns=tuple(h.lower() for h in hosts),
        target_group_arns=tuple(target_groups),
    )


def _to_security_group(raw: dict[str, Any]) -> SecurityGroup:
    rules: list[SecurityGroupRule] = []
    for perm in raw.get("IpPermissions", []):
        common = {
            "protocol": str(perm.get("IpProtocol", "-1")),
            "from_port": perm.get("FromPort"),
            "to_port": perm.get("ToPort"),
        }
        for pair in perm.get("UserIdGroupPairs", []):
            if pair.get("GroupId"):
                rules.append(SecurityGroupRule(source=pair["GroupId"], **common))
        for cidr in perm.get("IpRanges", []):
            if cidr.get("CidrIp"):
                rules.append(SecurityGroupRule(source=cidr["CidrIp"], **common))
    return SecurityGroup(
        id=raw["GroupId"], name=raw.get("GroupName", ""), inbound=tuple(rules)
    )
