"""Path resolver: turn a URL or name pattern into ordered hop candidates.

URL resolution walks hostname -> DNS -> load balancer listener rule ->
healthy target group backends -> security-group-permitted hop instances.
Any step that comes up empty falls back to every instance with an online
forwarding agent, in provider order.
"""

import fnmatch

from ..common.exceptions import (
    DnsResolutionFailed,
    NoRouteFound,
    ProviderError,
    ResolutionFailure,
)
from ..common.logging import get_logger
from ..common.utils import default_port_for_url, is_url, strip_url_to_host
from ..inventory import dns
from ..inventory.client import InventoryClient
from ..inventory.models import Instance, ListenerRule, LoadBalancer, TargetHealth
from .config import ResolverConfig
from .models import AlbTarget, CandidateSource, FallbackReason, HopCandidate, Resolution

logger = get_logger(__name__)

_FALLBACK_MESSAGES = {
    FallbackReason.NO_ALB_MATCH: "no load balancer routes host {host}",
    FallbackReason.NO_HEALTHY_TARGETS: "no healthy target group backend for host {host}",
    FallbackReason.NO_PERMITTED_HOP: (
        "no healthy target group backend reachable for host {host}"
    ),
    FallbackReason.LOOKUP_FAILED: "load balancer lookup failed for host {host}",
}


class PathResolver:
    """Resolves targets against the inventory. Holds no state between calls."""

    def __init__(
        self, inventory: InventoryClient, config: ResolverConfig | None = None
    ):
        self.inventory = inventory
        self.config = config or ResolverConfig()

    def resolve(self, target: str, remote_port: int | None = None) -> Resolution:
        """Resolve a URL or an instance name pattern.

        Raises:
            ResolutionFailure: If no candidate can be produced
        """
        if is_url(target):
            return self.resolve_url(target, remote_port)
        return self.resolve_name(target, remote_port)

    def resolve_name(self, pattern: str, remote_port: int | None = None) -> Resolution:
        """Match pattern against the names of instances with an online agent.

        Raises:
            NoInstanceFound: If no online instance matches
            AmbiguousTarget: If several online instances match
        """
        instance = self.inventory.find_instance_by_name(pattern, online_only=True)
        port = remote_port or self.config.default_direct_port
        return Resolution(
            target=pattern,
            candidates=(
                HopCandidate(hop=instance, remote_port=port, source=CandidateSource.DIRECT),
            ),
            trail=(f"Name match: {instance.label}",),
        )

    def resolve_bastion(
        self, bastion_pattern: str, host: str, remote_port: int | None = None
    ) -> Resolution:
        """Use one named bastion to reach an explicit host."""
        bastion = self.inventory.find_instance_by_name(bastion_pattern, online_only=True)
        port = remote_port or self.config.default_remote_port
        return Resolution(
            target=f"{host}:{port}",
            host=host,
            candidates=(
                HopCandidate(
                    hop=bastion,
                    remote_host=host,
                    remote_port=port,
                    source=CandidateSource.BASTION,
                ),
            ),
            trail=(f"Bastion: {bastion.label}",),
        )

    def resolve_dns(self, url: str, remote_port: int | None = None) -> Resolution:
        """Map a hostname's address to an instance, else route via a bastion.

        Unlike resolve_url this does not consult load balancers: an address
        equal to an instance's private IP gives a direct tunnel to it, and
        anything else (including an unresolvable internal name) is forwarded
        through the first online bastion.
        """
        host = strip_url_to_host(url)
        port = remote_port or self.config.default_remote_port
        addresses = dns.resolve_host(host, self.config.external_dns_server)
        instances = self.inventory.list_instances()
        trail = [_dns_line(host, addresses)]

        for address in addresses:
            for instance in instances:
                if instance.private_ip == address:
                    trail.append(f"EC2 match: {instance.label}")
                    return Resolution(
                        target=url,
                        host=host,
                        addresses=tuple(addresses),
                        candidates=(
                            HopCandidate(
                                hop=instance, remote_port=port, source=CandidateSource.DNS
                            ),
                        ),
                        trail=tuple(trail),
                    )

        routable = [a for a in addresses if not dns.is_loopback(a)]
        remote_host = routable[0] if routable else host
        bastions = self._bastions(instances)
        if not bastions:
            raise NoRouteFound(f"No online bastion available to reach {host}")
        trail.append(f"No direct EC2 IP match, via bastion {bastions[0].label}")
        return Resolution(
            target=url,
            host=host,
            addresses=tuple(addresses),
            fallback_reason=FallbackReason.NO_ALB_MATCH,
            candidates=(
                HopCandidate(
                    hop=bastions[0],
                    remote_host=remote_host,
                    remote_port=port,
                    source=CandidateSource.BASTION,
                ),
            ),
            trail=tuple(trail),
        )

    def resolve_url(self, url: str, remote_port: int | None = None) -> Resolution:
        """Resolve a URL through the load balancer chain with bastion fallback.

        Args:
            url: Target URL; only the hostname and port are used
            remote_port: Only accept backends listening on this port; also the
                port used for bastion candidates (defaults to the URL's port)

        Raises:
            DnsResolutionFailed: If the hostname has no DNS record
            NoRouteFound: If the bastion fallback has no online instance either
        """
        host = strip_url_to_host(url)
        if not host:
            raise DnsResolutionFailed(url)

        addresses = dns.resolve_host(host, self.config.external_dns_server)
        if not addresses:
            raise DnsResolutionFailed(host)

        trail = [_dns_line(host, addresses)]
        routable = {a for a in addresses if not dns.is_loopback(a)}
        instances = self.inventory.list_instances()

        alb: AlbTarget | None = None
        candidates: list[HopCandidate] = []
        reason: FallbackReason | None = None
        try:
            alb = self._match_load_balancer(host, routable, trail)
            if alb is None:
                reason = FallbackReason.NO_ALB_MATCH
            else:
                backends = self._healthy_backends(alb, remote_port, trail)
                alb = alb.model_copy(update={"backends": tuple(backends)})
                if not backends:
                    reason = FallbackReason.NO_HEALTHY_TARGETS
                else:
                    candidates = self._permitted_hops(backends, instances, trail)
                    if not candidates:
                        reason = FallbackReason.NO_PERMITTED_HOP
        except ProviderError as e:
            trail.append(f"Load balancer lookup failed: {e}")
            reason = FallbackReason.LOOKUP_FAILED

        if reason is not None:
            message = _FALLBACK_MESSAGES[reason].format(host=host)
            logger.warning(f"{message}, falling back to bastions", host=host, reason=reason.value)
            trail.append(f"{message}, falling back to bastions")
            port = remote_port or default_port_for_url(
                url, self.config.http_port, self.config.https_port
            )
            candidates = [
                HopCandidate(
                    hop=bastion,
                    remote_host=host,
                    remote_port=port,
                    source=CandidateSource.BASTION,
                )
                for bastion in self._bastions(instances)
            ]
            if not candidates:
                trail.append("No instance with an online agent")
                raise NoRouteFound(
                    f"No route to {host}: {message} and no online bastion is available"
                )
            trail.append(
                "Bastions: " + ", ".join(c.hop.label for c in candidates)
            )

        logger.info(
            "Resolved target",
            host=host,
            candidates=len(candidates),
            primary=candidates[0].hop.id,
            fallback=reason.value if reason else None,
        )
        return Resolution(
            target=url,
            host=host,
            addresses=tuple(addresses),
            alb=alb,
            fallback_reason=reason,
            candidates=tuple(candidates),
            trail=tuple(trail),
        )

    def explain(self, target: str) -> str:
        """Human-readable report of every resolution step for target."""
        lines = [f"Resolving: {strip_url_to_host(target) or target}"]
        try:
            resolution = self.resolve(target)
        except ResolutionFailure as e:
            lines.append(f"  Failed: {e}")
            return "\n".join(lines)

        lines.extend(f"  {step}" for step in resolution.trail)
        lines.append("  Candidates:")
        for candidate in resolution.candidates:
            lines.append(
                f"    - {candidate.hop.label} -> {candidate.destination} "
                f"[{candidate.source.value}]"
            )
        return "\n".join(lines)

    # Internal steps

    def _bastions(self, instances: list[Instance]) -> list[Instance]:
        online = [i for i in instances if i.agent_online]
        if self.config.bastion_pattern:
            needle = self.config.bastion_pattern.lower()
            online = [i for i in online if needle in i.name.lower()]
        return online

    def _match_load_balancer(
        self, host: str, routable: set[str], trail: list[str]
    ) -> AlbTarget | None:
        """Find the listener rule routing host, else a balancer sharing its address."""
        load_balancers = self.inventory.describe_load_balancers()
        rules_by_lb = {
            lb.arn: self.inventory.describe_listener_rules(lb.arn) for lb in load_balancers
        }

        for lb in load_balancers:
            for rule in rules_by_lb[lb.arn]:
                if rule.target_group_arns and _host_matches(host, rule.host_patterns):
                    trail.append(
                        f"ALB match: {lb.name or lb.arn} rule {rule.priority} "
                        f"({', '.join(rule.host_patterns)})"
                    )
                    return AlbTarget(
                        load_balancer_arn=lb.arn,
                        listener_rule_arn=rule.arn,
                        target_group_arns=rule.target_group_arns,
                    )

        if not routable:
            trail.append("No load balancer rule for host")
            return None

        for lb in load_balancers:
            if not lb.dns_name or routable.isdisjoint(dns.lookup(lb.dns_name)):
                continue
            trail.append(f"ALB match by address: {lb.name or lb.arn}")
            return self._default_route(lb, rules_by_lb[lb.arn])

        trail.append("No load balancer rule or address for host")
        return None

    def _default_route(self, lb: LoadBalancer, rules: list[ListenerRule]) -> AlbTarget:
        defaults = [r for r in rules if r.is_default and r.target_group_arns]
        if defaults:
            return AlbTarget(
                load_balancer_arn=lb.arn,
                listener_rule_arn=defaults[0].arn,
                target_group_arns=defaults[0].target_group_arns,
            )
        groups = self.inventory.describe_target_groups(lb.arn)
        return AlbTarget(
            load_balancer_arn=lb.arn,
            target_group_arns=tuple(g.arn for g in groups),
        )

    def _healthy_backends(
        self, alb: AlbTarget, remote_port: int | None, trail: list[str]
    ) -> list[TargetHealth]:
        ports = {
            g.arn: g.port for g in self.inventory.describe_target_groups(alb.load_balancer_arn)
        }
        backends: list[TargetHealth] = []
        for tg_arn in alb.target_group_arns:
            for target in self.inventory.describe_target_health(tg_arn, ports.get(tg_arn)):
                if not target.healthy:
                    continue
                if remote_port is not None and target.port != remote_port:
                    continue
                backends.append(target)

        if backends:
            trail.append(
                "Healthy targets: "
                + ", ".join(f"{b.target_id}:{b.port}" for b in backends)
            )
        else:
            trail.append("No healthy targets")
        return backends

    def _permitted_hops(
        self,
        backends: list[TargetHealth],
        instances: list[Instance],
        trail: list[str],
    ) -> list[HopCandidate]:
        """Online instances that the backend's security groups admit."""
        online = [i for i in instances if i.agent_online]
        by_id = {i.id: i for i in instances}
        candidates: list[HopCandidate] = []
        seen: set[tuple[str, str, int]] = set()

        for backend in backends:
            remote_host = backend.target_id
            if backend.is_instance:
                instance = by_id.get(backend.target_id)
                if instance is None or not instance.private_ip:
                    trail.append(f"Target {backend.target_id}: no private IP, skipped")
                    continue
                remote_host = instance.private_ip

            try:
                group_ids = self.inventory.target_security_group_ids(backend.target_id)
                groups = self.inventory.describe_security_groups(group_ids)
            except ProviderError as e:
                trail.append(f"Target {backend.target_id}: security groups unavailable ({e})")
                continue

            rules = [
                rule
                for group in groups
                for rule in group.inbound
                if rule.covers_port(backend.port)
            ]
            hops = [i for i in online if any(rule.admits(i) for rule in rules)]
            if not hops:
                trail.append(f"Target {remote_host}:{backend.port}: no permitted hop")
                continue

            for hop in hops:
                key = (hop.id, remote_host, backend.port)
                if key in seen:
                    continue
                seen.add(key)
                candidates.append(
                    HopCandidate(
                        hop=hop,
                        remote_host=remote_host,
                        remote_port=backend.port,
                        source=CandidateSource.ALB,
                    )
                )
            trail.append(
                f"Target {remote_host}:{backend.port} via "
                + ", ".join(h.label for h in hops)
            )
        return candidates


def _host_matches(host: str, patterns: tuple[str, ...]) -> bool:
    host = host.lower()
    return any(fnmatch.fnmatchcase(host, pattern.lower()) for pattern in patterns)


def _dns_line(host: str, addresses: list[str]) -> str:
    if not addresses:
        return f"DNS: {host} not resolvable (likely an internal hostname)"
    return f"DNS: {host} -> {', '.join(addresses)}"
