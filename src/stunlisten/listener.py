"""Listener entry points called by the transport layer.

Each :class:`StunListener` resolves its options once per configuration load
and hands the cached result to the relay engine for every connection or
datagram. The engine itself is started lazily, exactly once, through a shared
:class:`EngineBootstrap`.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping

from .collaborators import Collaborators, RelayEngine
from .config import AppConfig, ListenerConfig
from .engine import load_engine
from .models import ResolvedConfig
from .resolver import resolve_listener

LOGGER = logging.getLogger(__name__)


class EngineBootstrap:
    """Start the relay engine on first use, once per process."""

    def __init__(self, factory: Callable[[], RelayEngine]) -> None:
        """Remember *factory*; nothing is started until :meth:`ensure_started`."""
        self._factory = factory
        self._lock = threading.Lock()
        self._engine: RelayEngine | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> EngineBootstrap:
        """Return a bootstrap loading the engine named by ``config.engine``."""
        return cls(lambda: load_engine(config.engine))

    @property
    def started(self) -> bool:
        """Return True once the engine has been started."""
        return self._engine is not None

    def ensure_started(self) -> RelayEngine:
        """Return the running engine, starting it if this is the first call."""
        engine = self._engine
        if engine is not None:
            return engine
        with self._lock:
            if self._engine is None:
                candidate = self._factory()
                candidate.start()
                self._engine = candidate
                LOGGER.info("relay engine started")
            return self._engine


class StunListener:
    """STUN/TURN listener bound to one set of raw options."""

    def __init__(
        self,
        options: Mapping[str, object],
        collaborators: Collaborators,
        bootstrap: EngineBootstrap,
    ) -> None:
        """Store the raw *options*; resolution happens on first use."""
        self._raw = dict(options)
        self._collaborators = collaborators
        self._bootstrap = bootstrap
        self._lock = threading.Lock()
        # (resolved, engine mapping), published together as one tuple.
        self._cache: tuple[ResolvedConfig, Mapping[str, object]] | None = None

    @property
    def resolved(self) -> ResolvedConfig:
        """Return the resolved configuration, computing it on first access."""
        return self._cached()[0]

    def reconfigure(self, options: Mapping[str, object]) -> ResolvedConfig:
        """Replace the raw options and resolve them immediately.

        The previous configuration stays active when *options* fail validation.
        """
        resolved = resolve_listener(options, self._collaborators)
        entry = (resolved, resolved.engine_options())
        with self._lock:
            self._raw = dict(options)
            self._cache = entry
        return resolved

    # Transport entry points ---------------------------------------------
    def tcp_init(self, sock: object) -> object:
        """Hand a freshly accepted stream socket to the engine."""
        options = self._options()
        return self._bootstrap.ensure_started().tcp_init(sock, options)

    def udp_init(self, sock: object) -> object:
        """Hand a bound datagram socket to the engine."""
        options = self._options()
        return self._bootstrap.ensure_started().udp_init(sock, options)

    def udp_recv(self, sock: object, addr: str, port: int, packet: bytes) -> object:
        """Forward one inbound datagram using the cached configuration."""
        options = self._options()
        return self._bootstrap.ensure_started().udp_recv(sock, addr, port, packet, options)

    def start(self, sock_mod: object, sock: object) -> object:
        """Start a supervised engine session for *sock*."""
        options = self._options()
        return self._bootstrap.ensure_started().start_session(sock_mod, sock, options)

    def start_link(self, sock_mod: object, sock: object) -> object:
        """Start an engine session linked to the caller."""
        options = self._options()
        return self._bootstrap.ensure_started().start_link(sock, options)

    def accept(self, handle: object) -> None:
        """Acknowledge an accepted session; the engine owns it from here."""

    def _options(self) -> Mapping[str, object]:
        return self._cached()[1]

    def _cached(self) -> tuple[ResolvedConfig, Mapping[str, object]]:
        cache = self._cache
        if cache is not None:
            return cache
        with self._lock:
            if self._cache is None:
                resolved = resolve_listener(self._raw, self._collaborators)
                self._cache = (resolved, resolved.engine_options())
            return self._cache


def build_listeners(
    config: AppConfig,
    *,
    collaborators: Collaborators | None = None,
    bootstrap: EngineBootstrap | None = None,
) -> list[tuple[ListenerConfig, StunListener]]:
    """Create a :class:`StunListener` for every configured listener.

    All listeners share one engine bootstrap, and each one is resolved
    immediately so that option errors surface before any socket is opened.
    """
    lookups = collaborators or Collaborators.from_config(config)
    guard = bootstrap or EngineBootstrap.from_config(config)
    listeners: list[tuple[ListenerConfig, StunListener]] = []
    for entry in config.listeners:
        listener = StunListener(entry.options, lookups, guard)
        _ = listener.resolved
        listeners.append((entry, listener))
    return listeners


__all__ = ["EngineBootstrap", "StunListener", "build_listeners"]
