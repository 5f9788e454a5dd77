"""Shared test fixtures for sandgate."""

from __future__ import annotations

import pytest

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures — importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset(
    {
        "project_root",
        "home_dir",
        "data_dir",
        "config_dir",
        "review_cache_dir",
        "allowlist_path",
    }
)


def make_settings(**overrides):
    """Create a Settings object with sensible defaults for testing.

    Accepts both model fields (review, egress, etc.) and cached property
    overrides (review_cache_dir, allowlist_path, etc.).

    Usage::

        s = make_settings(review_cache_dir=tmp_path / "cache")
        s = make_settings(egress=EgressConfig(dns_timeout_seconds=1.0))
    """
    from sandgate.config import (
        EgressConfig,
        LoggingConfig,
        ReviewConfig,
        SecretsConfig,
        Settings,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "review": ReviewConfig(),
        "egress": EgressConfig(),
        "logging": LoggingConfig(),
        "secrets": SecretsConfig(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Ensure each test starts with a clean Settings singleton.

    Built from pure defaults with all storage under tmp_path: no
    config.toml, no .env, and never the real ~/.config.
    """
    safe = make_settings(
        project_root=tmp_path,
        home_dir=tmp_path / "home",
        data_dir=tmp_path / "data",
        config_dir=tmp_path / "home" / ".config" / "sandgate",
        review_cache_dir=tmp_path / "data" / "skill-review-cache",
        allowlist_path=tmp_path / "home" / ".config" / "sandgate" / "network-allowlist.json",
    )
    monkeypatch.setattr("sandgate.config._settings", safe)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


# ---------------------------------------------------------------------------
# Fakes for the narrow external-call capabilities
# ---------------------------------------------------------------------------


class FakeClassifier:
    """SafetyClassifier returning canned replies and counting calls."""

    def __init__(self, reply: str = '{"safe": true, "issues": []}', *, error=None):
        self.reply = reply
        self.error = error
        self.calls: list[str] = []

    async def classify(self, content: str) -> str:
        self.calls.append(content)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeResolver:
    """DomainResolver backed by static tables; unknown names raise gaierror."""

    def __init__(
        self,
        v4: dict[str, list[str]] | None = None,
        v6: dict[str, list[str]] | None = None,
    ):
        self.v4 = v4 or {}
        self.v6 = v6 or {}
        self.calls: list[tuple[str, str]] = []

    @staticmethod
    def _lookup(table, domain):
        import socket

        if domain not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(table[domain])

    async def resolve4(self, domain: str) -> list[str]:
        self.calls.append(("A", domain))
        return self._lookup(self.v4, domain)

    async def resolve6(self, domain: str) -> list[str]:
        self.calls.append(("AAAA", domain))
        return self._lookup(self.v6, domain)
