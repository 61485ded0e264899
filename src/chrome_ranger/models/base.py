# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for chrome-ranger."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class RangerBaseModel(BaseModel):
    """Base model with shared config for chrome-ranger schemas."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
    )


class FrozenModel(BaseModel):
    """Immutable model for persisted facts."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        frozen=True,
    )
