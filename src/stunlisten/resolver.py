"""Listener option resolution pipeline.

Raw options go through three layers: the defaults table, the validated
overrides, and the fields derived by :mod:`stunlisten.turn` and
:mod:`stunlisten.certfile`. A validation failure aborts the whole pipeline,
so a partial configuration never reaches the relay engine.
"""
from __future__ import annotations

from collections.abc import Mapping

from .collaborators import Collaborators
from .config import AppConfig, ListenerConfig
from .models import ResolvedConfig
from .options import build_listener_options
from .turn import prepare_turn_options


def resolve_listener(
    raw: Mapping[str, object],
    collaborators: Collaborators,
) -> ResolvedConfig:
    """Resolve the raw listener options *raw* into a :class:`ResolvedConfig`."""
    options = build_listener_options(raw)
    return prepare_turn_options(options, collaborators)


def resolve_listeners(
    config: AppConfig,
    collaborators: Collaborators | None = None,
) -> list[tuple[ListenerConfig, ResolvedConfig]]:
    """Resolve every listener declared in *config*."""
    lookups = collaborators or Collaborators.from_config(config)
    return [
        (listener, resolve_listener(listener.options, lookups))
        for listener in config.listeners
    ]


__all__ = ["resolve_listener", "resolve_listeners"]
