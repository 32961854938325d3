"""Tests for listener entry points and engine bootstrap."""
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path

import pytest

from stunlisten.collaborators import Collaborators
from stunlisten.config import load_config
from stunlisten.engine import EngineUnavailableError
from stunlisten.listener import EngineBootstrap, StunListener, build_listeners
from stunlisten.models import ResolvedConfig
from stunlisten.options import ListenerOptionError

Factory = Callable[..., Collaborators]


class RecordingEngine:
    """Relay engine double recording every call."""

    def __init__(self) -> None:
        self.starts = 0
        self.calls: list[tuple[str, tuple[object, ...], Mapping[str, object]]] = []

    def start(self) -> None:
        time.sleep(0.01)
        self.starts += 1

    def tcp_init(self, sock: object, options: Mapping[str, object]) -> object:
        self.calls.append(("tcp_init", (sock,), options))
        return "tcp"

    def udp_init(self, sock: object, options: Mapping[str, object]) -> object:
        self.calls.append(("udp_init", (sock,), options))
        return "udp"

    def udp_recv(
        self,
        sock: object,
        addr: str,
        port: int,
        packet: bytes,
        options: Mapping[str, object],
    ) -> object:
        self.calls.append(("udp_recv", (sock, addr, port, packet), options))
        return "recv"

    def start_session(
        self,
        sock_mod: object,
        sock: object,
        options: Mapping[str, object],
    ) -> object:
        self.calls.append(("start_session", (sock_mod, sock), options))
        return "session"

    def start_link(self, sock: object, options: Mapping[str, object]) -> object:
        self.calls.append(("start_link", (sock,), options))
        return "link"


class CountingCollaborators:
    """Wrap collaborators and count how often the identity is consulted."""

    def __init__(self, inner: Collaborators) -> None:
        self.inner = inner
        self.count = 0

    def own_domain_name(self) -> str:
        self.count += 1
        return self.inner.identity.own_domain_name()

    def configured_domains(self) -> list[str]:
        return self.inner.identity.configured_domains()


@pytest.fixture
def engine() -> RecordingEngine:
    """Return a fresh recording engine."""
    return RecordingEngine()


@pytest.mark.mutation_timeout
def test_ensure_started_runs_once_across_threads(engine: RecordingEngine) -> None:
    """Concurrent first use collapses into a single engine start."""
    factory_calls: list[int] = []

    def factory() -> RecordingEngine:
        factory_calls.append(1)
        return engine

    bootstrap = EngineBootstrap(factory)
    barrier = threading.Barrier(8)
    results: list[object] = []

    def worker() -> None:
        barrier.wait()
        results.append(bootstrap.ensure_started())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert engine.starts == 1
    assert len(factory_calls) == 1
    assert all(result is engine for result in results)
    assert bootstrap.started is True


@pytest.mark.mutation_timeout
def test_concurrent_first_datagrams_share_complete_options(
    make_collaborators: Factory,
    engine: RecordingEngine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A datagram arriving mid-resolution waits for the finished mapping."""
    original = ResolvedConfig.engine_options

    def slow_engine_options(self: ResolvedConfig) -> Mapping[str, object]:
        time.sleep(0.2)
        return original(self)

    monkeypatch.setattr(ResolvedConfig, "engine_options", slow_engine_options)
    listener = StunListener({}, make_collaborators(), EngineBootstrap(lambda: engine))

    def receive(port: int) -> None:
        listener.udp_recv("sock", "198.51.100.1", port, b"\x00\x01")

    first = threading.Thread(target=receive, args=(40000,))
    second = threading.Thread(target=receive, args=(40001,))
    first.start()
    time.sleep(0.05)
    second.start()
    first.join()
    second.join()

    assert len(engine.calls) == 2
    options = [call[2] for call in engine.calls]
    assert all(isinstance(item, Mapping) for item in options)
    assert options[0] is options[1]
    assert options[0]["use_turn"] is False


def test_failed_start_can_be_retried() -> None:
    """A factory failure leaves the bootstrap unstarted."""
    attempts: list[int] = []
    engine = RecordingEngine()

    def factory() -> RecordingEngine:
        attempts.append(1)
        if len(attempts) == 1:
            raise EngineUnavailableError("not yet")
        return engine

    bootstrap = EngineBootstrap(factory)
    with pytest.raises(EngineUnavailableError):
        bootstrap.ensure_started()
    assert bootstrap.started is False

    assert bootstrap.ensure_started() is engine
    assert engine.starts == 1


def test_udp_listener_resolves_once(
    make_collaborators: Factory,
    engine: RecordingEngine,
) -> None:
    """Datagrams reuse the configuration resolved at initialisation."""
    base = make_collaborators(hosts=["example.org"])
    counter = CountingCollaborators(base)
    collaborators = Collaborators(
        identity=counter,
        credentials=base.credentials,
        shapers=base.shapers,
        pki=base.pki,
        domain_certs=base.domain_certs,
    )
    listener = StunListener(
        {"use_turn": True, "turn_ip": "203.0.113.7"},
        collaborators,
        EngineBootstrap(lambda: engine),
    )

    assert listener.udp_init("sock") == "udp"
    lookups_after_init = counter.count
    for index in range(5):
        listener.udp_recv("sock", "198.51.100.1", 40000 + index, b"\x00\x01")

    assert counter.count == lookups_after_init == 1
    assert engine.starts == 1
    names = [name for name, _, _ in engine.calls]
    assert names == ["udp_init"] + ["udp_recv"] * 5
    first_options = engine.calls[0][2]
    assert all(options is first_options for _, _, options in engine.calls)
    assert first_options["auth_realm"] == "example.org"
    assert engine.calls[1][1] == ("sock", "198.51.100.1", 40000, b"\x00\x01")


def test_stream_entry_points_forward_resolved_options(
    make_collaborators: Factory,
    engine: RecordingEngine,
) -> None:
    """tcp_init, start and start_link all receive the resolved mapping."""
    collaborators = make_collaborators(domain_certs={"example.org": Path("/legacy.pem")})
    listener = StunListener({"tls": True}, collaborators, EngineBootstrap(lambda: engine))

    assert listener.tcp_init("conn") == "tcp"
    assert listener.start("tcp", "conn") == "session"
    assert listener.start_link("tcp", "conn") == "link"
    assert listener.accept("pid") is None

    assert [name for name, _, _ in engine.calls] == ["tcp_init", "start_session", "start_link"]
    assert engine.calls[1][1] == ("tcp", "conn")
    assert engine.calls[2][1] == ("conn",)
    options = engine.calls[0][2]
    assert options["tls"] is True
    assert options["certfile"] == Path("/legacy.pem")
    with pytest.raises(TypeError):
        options["tls"] = False  # type: ignore[index]


def test_invalid_options_never_reach_engine(
    make_collaborators: Factory,
    engine: RecordingEngine,
) -> None:
    """Validation errors surface before the engine is started."""
    bootstrap = EngineBootstrap(lambda: engine)
    listener = StunListener({"turn_min_port": 80}, make_collaborators(), bootstrap)

    with pytest.raises(ListenerOptionError):
        listener.udp_init("sock")

    assert bootstrap.started is False
    assert engine.calls == []


def test_reconfigure_replaces_cached_resolution(
    make_collaborators: Factory,
    engine: RecordingEngine,
) -> None:
    """Reconfiguring swaps the cache; a bad reconfiguration keeps the old one."""
    listener = StunListener({}, make_collaborators(), EngineBootstrap(lambda: engine))
    assert listener.resolved.use_turn is False

    updated = listener.reconfigure({"use_turn": True, "turn_ip": "10.0.0.1"})
    assert updated.use_turn is True
    assert listener.resolved is updated

    with pytest.raises(ListenerOptionError):
        listener.reconfigure({"turn_max_allocations": 0})
    assert listener.resolved is updated

    listener.udp_init("sock")
    assert engine.calls[0][2]["use_turn"] is True


def test_build_listeners_shares_one_bootstrap(tmp_path: Path, engine: RecordingEngine) -> None:
    """Listeners built from configuration share the engine guard."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={
            "hosts": ["example.org"],
            "listeners": [
                {"port": 3478, "use_turn": True, "turn_ip": "10.0.0.1"},
                {"port": 3479, "transport": "tcp"},
            ],
        },
    )
    bootstrap = EngineBootstrap(lambda: engine)

    listeners = build_listeners(config, bootstrap=bootstrap)
    assert bootstrap.started is False

    (udp_entry, udp_listener), (tcp_entry, tcp_listener) = listeners
    assert (udp_entry.port, tcp_entry.port) == (3478, 3479)
    udp_listener.udp_init("udp-sock")
    tcp_listener.tcp_init("tcp-sock")

    assert engine.starts == 1
    assert engine.calls[0][2]["auth_realm"] == "example.org"
    assert "auth_realm" not in engine.calls[1][2]


def test_build_listeners_without_engine_fails_on_first_use(tmp_path: Path) -> None:
    """A missing engine setting surfaces when a listener is first used."""
    config = load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={"listeners": [{"port": 3478}]},
    )
    [(_, listener)] = build_listeners(config)

    with pytest.raises(EngineUnavailableError):
        listener.udp_init("sock")
