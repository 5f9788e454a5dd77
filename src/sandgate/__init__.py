"""Sandgate: content trust and egress policy gates for agent containers."""

__version__ = "0.1.0"
