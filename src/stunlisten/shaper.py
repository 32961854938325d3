"""Named traffic shaper lookups."""
from __future__ import annotations

import logging
import math
from collections.abc import Mapping

LOGGER = logging.getLogger(__name__)

NO_SHAPER = "none"
UNLIMITED_RATE = math.inf


class ConfiguredShapers:
    """Resolve shaper names from the ``shapers`` configuration section.

    The reserved name ``none`` always means "no rate limit". Names that are not
    configured fall back to the same unlimited rate, with a warning, so that a
    typo never blocks a listener from starting.
    """

    def __init__(self, rates: Mapping[str, float]) -> None:
        """Capture the configured maximum rates (bytes per second)."""
        self._rates = dict(rates)

    def rate_of(self, name: str) -> float:
        """Return the maximum rate configured for *name*."""
        if name == NO_SHAPER:
            return UNLIMITED_RATE
        try:
            return self._rates[name]
        except KeyError:
            LOGGER.warning("shaper '%s' is not configured, treating it as unlimited", name)
            return UNLIMITED_RATE


__all__ = ["NO_SHAPER", "UNLIMITED_RATE", "ConfiguredShapers"]
