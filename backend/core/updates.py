"""Partial updates with explicit field presence.

An update dataclass defaults every field to `UNSET`; only fields the caller
actually provided are applied, so `None` and `""` remain valid new values.
"""

from __future__ import annotations

from dataclasses import fields
from typing import Any


class _Unset:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def present_fields(changes) -> dict[str, Any]:
    return {f.name: getattr(changes, f.name) for f in fields(changes) if getattr(changes, f.name) is not UNSET}


def apply_present_fields(instance, changes) -> list[str]:
    """Sets every present field on `instance` and returns the changed field names."""

    changed = []
    for name, value in present_fields(changes).items():
        if getattr(instance, name) != value:
            setattr(instance, name, value)
            changed.append(name)
    return changed
