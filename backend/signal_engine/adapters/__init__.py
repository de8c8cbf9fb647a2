"""
Platform registry: platform key -> (adapter class, settings class).

Resolved statically at import time; add a platform by registering it here.
"""
from __future__ import annotations

from dataclasses import dataclass

from signal_engine.adapters.base import PlatformAdapter, ProcessResult
from signal_engine.adapters.discourse import DiscourseAdapter
from signal_engine.settings import DiscourseSettings, PlatformSettings


@dataclass(frozen=True)
class AdapterRegistration:
    adapter_cls: type[PlatformAdapter]
    settings_cls: type[PlatformSettings]


_ADAPTERS: dict[str, AdapterRegistration] = {
    "discourse": AdapterRegistration(adapter_cls=DiscourseAdapter, settings_cls=DiscourseSettings),
}


def get_adapter_registration(platform: str) -> AdapterRegistration | None:
    """Get the registration for a platform (case-insensitive)."""
    return _ADAPTERS.get(platform.strip().lower())


def list_platforms() -> list[str]:
    return list(_ADAPTERS.keys())


__all__ = [
    "AdapterRegistration",
    "DiscourseAdapter",
    "PlatformAdapter",
    "ProcessResult",
    "get_adapter_registration",
    "list_platforms",
]
