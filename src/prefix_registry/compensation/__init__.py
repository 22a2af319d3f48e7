"""Compensation subsystem — fee registry rules and the treasury escrow."""

from prefix_registry.compensation.treasury import Treasury

__all__ = ["Treasury"]
