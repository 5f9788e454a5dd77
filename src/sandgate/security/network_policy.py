"""Container network egress allowlist.

Restricts outbound traffic from agent containers to a configurable list
of allowed domains.  This module only *computes* the policy: it resolves
each allowed domain to its current IPv4/IPv6 addresses and hands them to
the container as launch arguments.  The container entrypoint (running as
root, before dropping privileges) programs iptables from
``ALLOWED_EGRESS_IPS`` and drops everything else except loopback,
established connections and DNS.

Config: ``~/.config/sandgate/network-allowlist.json``::

    {"enabled": true, "allowed_domains": ["api.anthropic.com", ...]}

If no config exists, the default allowlist is written and used.

Addresses are resolved fresh on every launch and never cached, since
CDN-backed domains rotate addresses.
"""

from __future__ import annotations

import asyncio
import json
import socket
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from sandgate.logger import logger
from sandgate.types import EgressPolicy, ResolvedEgress
from sandgate.utils import read_json, write_json_atomic

if TYPE_CHECKING:
    from sandgate.config import Settings

DEFAULT_ALLOWED_DOMAINS: tuple[str, ...] = (
    "api.anthropic.com",
    "cdn.anthropic.com",
    "sentry.io",
    "statsig.anthropic.com",
)

# Launch-argument contract with the container entrypoint
CAP_ADD_NET_ADMIN = "--cap-add=NET_ADMIN"
EGRESS_IPS_ENV = "ALLOWED_EGRESS_IPS"
EGRESS_DOMAINS_ENV = "ALLOWED_EGRESS_DOMAINS"
LIST_SEPARATOR = ","


def default_policy() -> EgressPolicy:
    return EgressPolicy(enabled=True, allowed_domains=list(DEFAULT_ALLOWED_DOMAINS))


def policy_from_dict(data: Any) -> EgressPolicy:
    """Build a policy from parsed JSON, correcting invalid fields one by one.

    ``enabled`` is only False when explicitly ``false``.  A missing or
    non-list ``allowed_domains`` falls back to the defaults; non-string
    and blank entries are dropped.
    """
    if not isinstance(data, dict):
        logger.warning("Network allowlist is not a JSON object, using defaults")
        return default_policy()

    enabled = data.get("enabled") is not False

    raw_domains = data.get("allowed_domains")
    if not isinstance(raw_domains, list):
        if raw_domains is not None:
            logger.warning(
                "Network allowlist 'allowed_domains' is not a list, using defaults",
                value_type=type(raw_domains).__name__,
            )
        return EgressPolicy(enabled=enabled, allowed_domains=list(DEFAULT_ALLOWED_DOMAINS))

    domains = [d.strip() for d in raw_domains if isinstance(d, str) and d.strip()]
    if len(domains) != len(raw_domains):
        logger.warning(
            "Ignoring invalid entries in network allowlist",
            dropped=len(raw_domains) - len(domains),
        )
    return EgressPolicy(enabled=enabled, allowed_domains=domains)


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class DomainResolver(Protocol):
    """Capability: resolve a domain name to its addresses.

    Both methods raise on failure (OSError, TimeoutError, ...); the
    policy resolver decides what a failure means.
    """

    async def resolve4(self, domain: str) -> list[str]: ...

    async def resolve6(self, domain: str) -> list[str]: ...


class SystemResolver:
    """DomainResolver using the event loop's getaddrinfo (system resolver)."""

    def __init__(self, timeout: float = 5.0) -> None:
        self.timeout = timeout

    async def _resolve(self, domain: str, family: socket.AddressFamily) -> list[str]:
        loop = asyncio.get_running_loop()
        infos = await asyncio.wait_for(
            loop.getaddrinfo(domain, None, family=family, type=socket.SOCK_STREAM),
            self.timeout,
        )
        return list(dict.fromkeys(str(info[4][0]) for info in infos if info[0] == family))

    async def resolve4(self, domain: str) -> list[str]:
        return await self._resolve(domain, socket.AF_INET)

    async def resolve6(self, domain: str) -> list[str]:
        return await self._resolve(domain, socket.AF_INET6)


_RESOLVE_ERRORS = (OSError, UnicodeError, ValueError, TimeoutError)


# ---------------------------------------------------------------------------
# Policy resolver
# ---------------------------------------------------------------------------


class EgressPolicyResolver:
    """Turns the domain allowlist into container launch arguments.

    Args:
        allowlist_path: JSON policy file (created with defaults if absent).
        resolver: DNS capability; a SystemResolver if omitted.
    """

    def __init__(self, allowlist_path: Path, resolver: DomainResolver | None = None) -> None:
        self.allowlist_path = allowlist_path
        self.resolver = resolver or SystemResolver()

    @classmethod
    def from_settings(cls, s: Settings) -> EgressPolicyResolver:
        return cls(s.allowlist_path, SystemResolver(timeout=s.egress.dns_timeout_seconds))

    def ensure_default_allowlist(self) -> bool:
        """Write the default allowlist if none exists. Returns True if written."""
        if self.allowlist_path.exists():
            return False
        write_json_atomic(self.allowlist_path, default_policy().to_dict(), indent=2)
        logger.info("Created default network allowlist", path=str(self.allowlist_path))
        return True

    def load_policy(self) -> EgressPolicy:
        """Read the allowlist, falling back to (and persisting) the defaults."""
        try:
            data = read_json(self.allowlist_path)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.warning(
                "Failed to parse network allowlist, using defaults",
                path=str(self.allowlist_path),
                err=str(exc),
            )
            return default_policy()

        if data is None:
            try:
                self.ensure_default_allowlist()
            except OSError as exc:
                logger.warning(
                    "Failed to write default network allowlist",
                    path=str(self.allowlist_path),
                    err=str(exc),
                )
            return default_policy()

        return policy_from_dict(data)

    async def _resolve_domain(self, domain: str) -> list[str]:
        addresses: list[str] = []
        try:
            addresses.extend(await self.resolver.resolve4(domain))
        except _RESOLVE_ERRORS as exc:
            logger.warning(
                "Failed to resolve domain for network allowlist",
                domain=domain,
                err=str(exc) or type(exc).__name__,
            )
        try:
            addresses.extend(await self.resolver.resolve6(domain))
        except _RESOLVE_ERRORS:
            pass  # many domains have no AAAA records
        return addresses

    async def resolve_addresses(self, domains: list[str]) -> list[str]:
        """Resolve all domains concurrently; failures only drop that domain/family.

        Returns a deduplicated list in first-seen order (domain order,
        IPv4 before IPv6).
        """
        unique_domains = list(dict.fromkeys(domains))
        results = await asyncio.gather(*(self._resolve_domain(d) for d in unique_domains))
        return list(dict.fromkeys(addr for addrs in results for addr in addrs))

    async def resolve(self) -> ResolvedEgress | None:
        """Load the policy and resolve it. None when restriction is disabled."""
        policy = self.load_policy()
        if not policy.enabled:
            return None
        addresses = await self.resolve_addresses(policy.allowed_domains)
        return ResolvedEgress(domains=list(policy.allowed_domains), addresses=addresses)

    async def build_launch_arguments(self) -> list[str]:
        """Build container run arguments for network egress restriction.

        Empty when the policy is disabled, or when nothing resolved (a
        policy with zero addresses would block every destination).
        """
        resolved = await self.resolve()
        if resolved is None:
            logger.info("Network egress restriction disabled", path=str(self.allowlist_path))
            return []

        if not resolved.addresses:
            logger.warning(
                "No IPs resolved for allowed domains, skipping network restriction",
                domains=resolved.domains,
                degraded=True,
            )
            return []

        logger.info(
            "Network egress whitelist active",
            domains=resolved.domains,
            resolved_ips=len(resolved.addresses),
        )
        return [
            CAP_ADD_NET_ADMIN,
            "-e",
            f"{EGRESS_IPS_ENV}={LIST_SEPARATOR.join(resolved.addresses)}",
            "-e",
            f"{EGRESS_DOMAINS_ENV}={LIST_SEPARATOR.join(resolved.domains)}",
        ]


def check_egress_support(
    container_cli: str = "docker",
    image: str = "sandgate-agent:latest",
    timeout: float = 15.0,
) -> bool:
    """Check whether the container image can apply iptables egress filtering."""
    try:
        result = subprocess.run(
            [container_cli, "run", "--rm", CAP_ADD_NET_ADMIN, image, "iptables", "-L", "-n"],
            capture_output=True,
            timeout=timeout,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
        logger.debug("Egress support check failed", image=image, err=str(exc))
        return False
    return result.returncode == 0


# ---------------------------------------------------------------------------
# Settings-backed helpers
# ---------------------------------------------------------------------------


async def get_network_args() -> list[str]:
    """Launch arguments for the next container, from the configured allowlist."""
    from sandgate.config import get_settings

    return await EgressPolicyResolver.from_settings(get_settings()).build_launch_arguments()
