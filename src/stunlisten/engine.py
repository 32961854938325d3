"""Load the relay engine named in the service configuration.

The ``engine`` setting takes ``package.module:attribute``. When the attribute
is a class it is instantiated without arguments; otherwise it is used as the
engine object directly.
"""
from __future__ import annotations

import importlib
import logging
from typing import cast

from .collaborators import RelayEngine

LOGGER = logging.getLogger(__name__)


class EngineUnavailableError(RuntimeError):
    """Raised when no usable relay engine is available."""


def load_engine(target: str | None) -> RelayEngine:
    """Import and return the relay engine referenced by *target*."""
    if not target:
        LOGGER.critical(
            "STUN/TURN listeners are not available: no relay engine is configured"
        )
        raise EngineUnavailableError(
            "No relay engine configured; set 'engine' to 'package.module:attribute'."
        )
    module_path, sep, attribute = target.partition(":")
    if not sep or not module_path or not attribute:
        raise EngineUnavailableError(
            f"Invalid engine reference '{target}'; expected 'package.module:attribute'."
        )
    try:
        module = importlib.import_module(module_path)
        obj = getattr(module, attribute)
    except (ImportError, AttributeError) as exc:
        LOGGER.critical("STUN/TURN relay engine '%s' is not available: %s", target, exc)
        raise EngineUnavailableError(f"Failed to load relay engine '{target}': {exc}") from exc
    engine = obj() if isinstance(obj, type) else obj
    return cast(RelayEngine, engine)


__all__ = ["EngineUnavailableError", "load_engine"]
