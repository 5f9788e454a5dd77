"""Data models for sandgate."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ReviewVerdict:
    """Trust decision for one exact document content, keyed by its hash."""

    hash: str
    safe: bool
    issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"safe": self.safe, "issues": list(self.issues), "hash": self.hash}

    @classmethod
    def from_dict(cls, raw: Any) -> ReviewVerdict:
        """Build a verdict from a persisted record.

        Raises ValueError if the record does not have the expected shape.
        """
        if not isinstance(raw, dict):
            raise ValueError("verdict record must be an object")
        safe = raw.get("safe")
        issues = raw.get("issues")
        content_hash = raw.get("hash")
        if not isinstance(safe, bool):
            raise ValueError("verdict 'safe' must be a boolean")
        if not isinstance(issues, list) or not all(isinstance(i, str) for i in issues):
            raise ValueError("verdict 'issues' must be a list of strings")
        if not isinstance(content_hash, str) or not content_hash:
            raise ValueError("verdict 'hash' must be a non-empty string")
        return cls(hash=content_hash, safe=safe, issues=issues)


@dataclass(frozen=True)
class EgressPolicy:
    """Administrator-configured allow-list of egress domains."""

    enabled: bool
    allowed_domains: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"enabled": self.enabled, "allowed_domains": list(self.allowed_domains)}


@dataclass(frozen=True)
class ResolvedEgress:
    """Live address set backing a policy's domains. Never persisted."""

    domains: list[str]
    addresses: list[str]  # deduplicated, first-seen order
