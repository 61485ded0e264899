# Copyright (c) Syntropy Systems
"""Data models for chrome-ranger."""

from .base import FrozenModel, RangerBaseModel
from .run import PoolSummary, ResolvedRevision, RunRecord, RunSummary, Slot, utcnow

__all__ = [
    "FrozenModel",
    "PoolSummary",
    "RangerBaseModel",
    "ResolvedRevision",
    "RunRecord",
    "RunSummary",
    "Slot",
    "utcnow",
]
