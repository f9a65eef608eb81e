# -*- coding: utf-8 -*-
"""Skeleton placeholders created before any network activity."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable, List

from .session import Unit

KeyFn = Callable[[int], str]


def create_skeletons(count: int, key_fn: KeyFn, phases: int = 1) -> List[Unit]:
    """Build ``count`` loading units, split into ``phases`` consecutive equal-ish blocks."""
    if count < 1:
        raise ValueError("Skeleton count must be at least 1")
    if phases < 1 or phases > count:
        raise ValueError(f"Cannot split {count} units into {phases} phases")
    units: List[Unit] = []
    seen: set[str] = set()
    for position in range(count):
        key = key_fn(position)
        if key in seen:
            raise ValueError(f"Duplicate skeleton key: {key}")
        seen.add(key)
        units.append(Unit(key=key, position=position, phase=position * phases // count))
    return units


def ordinal_keys(offset: int = 0) -> KeyFn:
    def key_fn(index: int) -> str:
        return str(offset + index)

    return key_fn


def date_keys(start: date) -> KeyFn:
    def key_fn(index: int) -> str:
        return (start + timedelta(days=index)).isoformat()

    return key_fn
