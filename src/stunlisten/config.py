"""Service configuration loader for stunlisten.

Settings come from four layers, later layers winning:

1. Built-in defaults (:data:`DEFAULTS`).
2. The YAML file at ``/etc/stunlisten/config.yml`` or an override path.
3. ``STUNLISTEN_*`` environment variables.
4. Programmatic overrides (used by tests and the CLI).

Environment variable names map onto nested keys with double underscores::

    export STUNLISTEN_MYNAME=example.org
    export STUNLISTEN_SHAPERS__NORMAL=8000

Variable values are parsed with ``yaml.safe_load`` so numbers, booleans and
flow-style lists keep their type. Every listener entry is checked against
:mod:`stunlisten.options` while loading, so a bad option is reported before
any socket is opened.
"""
from __future__ import annotations

import copy
import math
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml

from .options import ListenerOptionError, validate_options

ENV_PREFIX = "STUNLISTEN_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"

DEFAULT_STUN_PORT = 3478
UNLIMITED_RATE_TOKENS = frozenset({"unlimited", "infinity"})


class ConfigError(RuntimeError):
    """Raised when the service configuration cannot be loaded."""


@dataclass(frozen=True)
class ListenerConfig:
    """A single configured STUN/TURN listener."""

    port: int = DEFAULT_STUN_PORT
    ip: str = "0.0.0.0"
    transport: str = "udp"
    options: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "port": self.port,
            "ip": self.ip,
            "transport": self.transport,
            "options": {key: _plain(value) for key, value in self.options.items()},
        }


@dataclass(frozen=True)
class AuthConfig:
    """Long-term credentials keyed by realm, then user name."""

    users: Mapping[str, Mapping[str, str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with passwords masked."""
        return {
            "users": {
                realm: {user: "********" for user in users}
                for realm, users in self.users.items()
            }
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for stunlisten."""

    config_file: Path
    hosts: tuple[str, ...]
    myname: str
    log_level: str
    engine: str | None
    certfiles: tuple[Path, ...]
    domain_certfile: Mapping[str, Path]
    shapers: Mapping[str, float]
    auth: AuthConfig
    listeners: tuple[ListenerConfig, ...]

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly view of the loaded configuration."""
        return {
            "config_file": str(self.config_file),
            "hosts": list(self.hosts),
            "myname": self.myname,
            "log_level": self.log_level,
            "engine": self.engine,
            "certfiles": [str(path) for path in self.certfiles],
            "domain_certfile": {
                domain: str(path) for domain, path in self.domain_certfile.items()
            },
            "shapers": {name: _plain(rate) for name, rate in self.shapers.items()},
            "auth": self.auth.to_dict(),
            "listeners": [listener.to_dict() for listener in self.listeners],
        }


class ConfigIdentity:
    """Service identity backed by :class:`AppConfig`."""

    def __init__(self, config: AppConfig) -> None:
        """Capture the configured host list and primary name."""
        self._myname = config.myname
        self._hosts = list(config.hosts)

    def own_domain_name(self) -> str:
        """Return the primary domain this service answers for."""
        return self._myname

    def configured_domains(self) -> list[str]:
        """Return every configured virtual host."""
        return list(self._hosts)


class DomainCertfiles:
    """Per-domain ``certfile`` lookups from the ``domain_certfile`` section."""

    def __init__(self, mapping: Mapping[str, Path]) -> None:
        """Index *mapping* by lower-cased domain."""
        self._mapping = {domain.lower(): path for domain, path in mapping.items()}

    def cert_for(self, realm: str) -> Path | None:
        """Return the configured certificate for *realm*, if any."""
        return self._mapping.get(realm.lower())


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/stunlisten/config.yml",
    "hosts": ["localhost"],
    "myname": None,  # first host when unset
    "log_level": "info",
    "engine": None,
    "certfiles": [],
    "domain_certfile": {},
    "shapers": {},
    "auth": {
        "users": {},
    },
    "listeners": [],
}

ALLOWED_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}
ALLOWED_TRANSPORTS = {"udp", "tcp"}
AUTH_KEYS = {"users"}
LISTENER_PLACEMENT_KEYS = {"port", "ip", "transport"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Merge every configuration layer and return the validated result."""
    environ = os.environ if env is None else env
    if config_file:
        path = Path(config_file)
    else:
        path = Path(environ.get(CONFIG_ENV_VAR) or str(DEFAULTS["config_file"]))

    raw = copy.deepcopy(DEFAULTS)
    for layer in (_read_file(path), _env_layer(environ), overrides or {}):
        _merge_into(raw, layer)
    raw["config_file"] = str(path)

    unknown = sorted(set(raw) - set(DEFAULTS))
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}.")
    return _build(raw)


def _read_file(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _mapping(data, str(path))


def _env_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for name, text in sorted(environ.items()):
        if not name.startswith(ENV_PREFIX) or name == CONFIG_ENV_VAR:
            continue
        keys = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not keys:
            continue
        node = layer
        for key in keys[:-1]:
            child = node.setdefault(key, {})
            if not isinstance(child, dict):
                raise ConfigError(f"{name} conflicts with another {ENV_PREFIX}* variable.")
            node = child
        node[keys[-1]] = _env_value(text)
    return layer


def _env_value(text: str) -> object:
    try:
        return yaml.safe_load(text.strip())
    except yaml.YAMLError:
        return text.strip()


def _merge_into(base: dict[str, object], layer: Mapping[str, object]) -> None:
    for key, value in layer.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, value)
        else:
            base[key] = copy.deepcopy(value)


def _build(raw: Mapping[str, object]) -> AppConfig:
    hosts = tuple(
        _string(host, f"hosts[{index}]").strip().lower()
        for index, host in enumerate(_sequence(raw.get("hosts"), "hosts"))
    )
    if not hosts:
        raise ConfigError("At least one host must be configured.")
    if not all(hosts):
        raise ConfigError("hosts entries must be non-empty strings.")

    log_level = str(raw.get("log_level") or "info").lower()
    if log_level not in ALLOWED_LOG_LEVELS:
        allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log level '{raw.get('log_level')}'. Allowed: {allowed}.")

    myname = raw.get("myname")
    engine = raw.get("engine")
    domains = _mapping(raw.get("domain_certfile"), "domain_certfile")
    shapers = _mapping(raw.get("shapers"), "shapers")

    return AppConfig(
        config_file=_path(raw.get("config_file"), "config_file"),
        hosts=hosts,
        myname=_string(myname, "myname").strip().lower() if myname else hosts[0],
        log_level=log_level,
        engine=_string(engine, "engine").strip() if engine else None,
        certfiles=tuple(
            _path(item, f"certfiles[{index}]")
            for index, item in enumerate(_sequence(raw.get("certfiles"), "certfiles"))
        ),
        domain_certfile=MappingProxyType(
            {
                domain.lower(): _path(item, f"domain_certfile.{domain}")
                for domain, item in domains.items()
            }
        ),
        shapers=MappingProxyType(
            {name: _rate(value, f"shapers.{name}") for name, value in shapers.items()}
        ),
        auth=_auth(raw.get("auth")),
        listeners=tuple(
            _listener(entry, index)
            for index, entry in enumerate(_sequence(raw.get("listeners"), "listeners"))
        ),
    )


def _auth(value: object) -> AuthConfig:
    section = _mapping(value, "auth")
    unknown = sorted(set(section) - AUTH_KEYS)
    if unknown:
        raise ConfigError(f"Unknown auth configuration keys: {', '.join(unknown)}.")
    users: dict[str, Mapping[str, str]] = {}
    for realm, entries in _mapping(section.get("users"), "auth.users").items():
        label = f"auth.users.{realm}"
        users[realm.lower()] = MappingProxyType(
            {
                user: _string(password, f"{label}.{user}")
                for user, password in _mapping(entries, label).items()
            }
        )
    return AuthConfig(users=MappingProxyType(users))


def _listener(entry: object, index: int) -> ListenerConfig:
    label = f"listeners[{index}]"
    mapping = _mapping(entry, label)

    transport = str(mapping.get("transport", "udp")).lower()
    if transport not in ALLOWED_TRANSPORTS:
        allowed = ", ".join(sorted(ALLOWED_TRANSPORTS))
        raise ConfigError(
            f"Unsupported transport '{mapping.get('transport')}' for {label}. "
            f"Allowed: {allowed}."
        )

    port = mapping.get("port", DEFAULT_STUN_PORT)
    if isinstance(port, bool) or not isinstance(port, int):
        raise ConfigError(f"{label}.port must be an integer. Got {port!r}.")
    if not 0 < port < 65536:
        raise ConfigError(f"{label}.port must be between 1 and 65535.")

    options = {
        key: value for key, value in mapping.items() if key not in LISTENER_PLACEMENT_KEYS
    }
    try:
        validate_options(options)
    except ListenerOptionError as exc:
        raise ConfigError(f"Invalid options for {label}: {exc}") from exc

    return ListenerConfig(
        port=port,
        ip=str(mapping.get("ip", "0.0.0.0")),
        transport=transport,
        options=MappingProxyType(options),
    )


def _mapping(value: object, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    for key in value:
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
    return dict(value)


def _sequence(value: object, label: str) -> Sequence[object]:
    if value is None:
        return ()
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a list. Got {type(value).__name__}.")
    return value


def _string(value: object, label: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"Expected {label} to be a string. Got {value!r}.")
    return value


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, os.PathLike)):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _rate(value: object, label: str) -> float:
    """Return a shaper rate in bytes per second.

    Accepts a bare number, a ``{"rate": ...}`` mapping, or ``unlimited``.
    """
    if isinstance(value, Mapping):
        value = value.get("rate")
    if isinstance(value, str):
        text = value.strip().lower()
        if text in UNLIMITED_RATE_TOKENS:
            return math.inf
        try:
            value = float(text)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"Expected {label} to be a number. Got {value!r}.")
    if value <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {value}.")
    return float(value)


def _plain(value: object) -> object:
    if isinstance(value, float) and math.isinf(value):
        return "infinity"
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


__all__ = [
    "AppConfig",
    "AuthConfig",
    "ConfigError",
    "ConfigIdentity",
    "DomainCertfiles",
    "ListenerConfig",
    "load_config",
]
