"""Listener option schema and defaults for STUN/TURN listeners.

Every recognised option key maps to exactly one validator in
:data:`OPTION_VALIDATORS`. A validator accepts a raw value (as produced by
PyYAML, environment coercion, or a programmatic caller) and returns the
normalised value, raising :class:`ListenerOptionError` otherwise.

Validators never apply defaults; :data:`LISTEN_DEFAULTS` and
:func:`build_listener_options` own that step.
"""
from __future__ import annotations

import ipaddress
import math
import os
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path

UNBOUNDED = math.inf
"""Sentinel for unbounded relay limits (``unlimited`` / ``infinity``)."""

DEFAULT_SERVER_NAME = "stunlisten"
MIN_RELAY_PORT_EXCLUSIVE = 1024
MAX_RELAY_PORT_EXCLUSIVE = 65536
UNBOUNDED_TOKENS = frozenset({"unlimited", "infinity"})


class ListenerOptionError(ValueError):
    """Raised when a listener option fails its type or range check."""

    def __init__(self, key: str, value: object, reason: str) -> None:
        """Record the offending *key*/*value* pair and a human readable reason."""
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value {value!r} for listener option '{key}': {reason}")


class ListenerOptionsError(ListenerOptionError):
    """Aggregate of several :class:`ListenerOptionError` failures."""

    def __init__(self, errors: list[ListenerOptionError]) -> None:
        """Store *errors* and build a combined message."""
        self.errors = errors
        first = errors[0]
        ValueError.__init__(
            self,
            "Listener option validation failed:\n"
            + "\n".join(f"  - {error}" for error in errors),
        )
        self.key = first.key
        self.value = first.value
        self.reason = first.reason


class AuthType(Enum):
    """Authentication modes understood by the relay engine."""

    ANONYMOUS = "anonymous"
    USER = "user"


Validator = Callable[[object], object]


def _validate_bool(key: str) -> Validator:
    def validator(value: object) -> bool:
        if isinstance(value, bool):
            return value
        raise ListenerOptionError(key, value, "expected a boolean")

    return validator


def _validate_ipv4(value: object) -> ipaddress.IPv4Address:
    if isinstance(value, ipaddress.IPv4Address):
        return value
    if isinstance(value, bytes):
        try:
            value = value.decode("ascii")
        except UnicodeDecodeError as exc:
            raise ListenerOptionError("turn_ip", value, "not an IPv4 address") from exc
    if not isinstance(value, str):
        raise ListenerOptionError("turn_ip", value, "expected a dotted-quad IPv4 address")
    try:
        return ipaddress.IPv4Address(value.strip())
    except ipaddress.AddressValueError as exc:
        raise ListenerOptionError("turn_ip", value, "not an IPv4 address") from exc


def _validate_auth_type(value: object) -> AuthType:
    if isinstance(value, AuthType):
        return value
    if isinstance(value, str):
        try:
            return AuthType(value.strip())
        except ValueError:
            pass
    allowed = ", ".join(member.value for member in AuthType)
    raise ListenerOptionError("auth_type", value, f"expected one of: {allowed}")


def _flatten_text(value: object) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 255:
        return bytes((value,))
    if isinstance(value, Iterable) and not isinstance(value, Mapping):
        return b"".join(_flatten_text(item) for item in value)
    raise TypeError(type(value).__name__)


def _validate_text(key: str) -> Validator:
    def validator(value: object) -> str:
        if isinstance(value, str):
            return value
        if isinstance(value, (int, bool)):
            raise ListenerOptionError(key, value, "expected a string")
        try:
            return _flatten_text(value).decode("utf-8")
        except TypeError as exc:
            raise ListenerOptionError(key, value, "expected a string") from exc
        except UnicodeDecodeError as exc:
            raise ListenerOptionError(key, value, "not valid UTF-8") from exc

    return validator


def _validate_port(key: str) -> Validator:
    def validator(value: object) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ListenerOptionError(key, value, "expected an integer port")
        if not MIN_RELAY_PORT_EXCLUSIVE < value < MAX_RELAY_PORT_EXCLUSIVE:
            raise ListenerOptionError(
                key,
                value,
                f"must be greater than {MIN_RELAY_PORT_EXCLUSIVE} "
                f"and less than {MAX_RELAY_PORT_EXCLUSIVE}",
            )
        return value

    return validator


def _validate_limit(key: str) -> Validator:
    def validator(value: object) -> int | float:
        if isinstance(value, bool):
            raise ListenerOptionError(key, value, "expected a positive integer or 'unlimited'")
        if isinstance(value, int):
            if value > 0:
                return value
            raise ListenerOptionError(key, value, "must be greater than zero")
        if isinstance(value, float) and value == math.inf:
            return UNBOUNDED
        if isinstance(value, str) and value.strip().lower() in UNBOUNDED_TOKENS:
            return UNBOUNDED
        raise ListenerOptionError(key, value, "expected a positive integer or 'unlimited'")

    return validator


def _validate_shaper(value: object) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ListenerOptionError("shaper", value, "expected a shaper name")


def _validate_certfile(value: object) -> Path:
    if isinstance(value, (str, os.PathLike)) and str(value).strip():
        return Path(value).expanduser()
    raise ListenerOptionError("certfile", value, "expected a certificate file path")


OPTION_VALIDATORS: dict[str, Validator] = {
    "use_turn": _validate_bool("use_turn"),
    "turn_ip": _validate_ipv4,
    "auth_type": _validate_auth_type,
    "auth_realm": _validate_text("auth_realm"),
    "turn_min_port": _validate_port("turn_min_port"),
    "turn_max_port": _validate_port("turn_max_port"),
    "turn_max_allocations": _validate_limit("turn_max_allocations"),
    "turn_max_permissions": _validate_limit("turn_max_permissions"),
    "server_name": _validate_text("server_name"),
    # Options shared with every listener.
    "shaper": _validate_shaper,
    "tls": _validate_bool("tls"),
    "certfile": _validate_certfile,
}

LISTEN_DEFAULTS: dict[str, object] = {
    "shaper": "none",
    "use_turn": False,
    "turn_ip": None,
    "auth_type": AuthType.USER,
    "auth_realm": None,
    "tls": False,
    "certfile": None,
    "turn_min_port": 49152,
    "turn_max_port": 65535,
    "turn_max_allocations": 10,
    "turn_max_permissions": 10,
    "server_name": DEFAULT_SERVER_NAME,
}


def listen_options() -> dict[str, object]:
    """Return a fresh copy of the listener defaults."""
    return dict(LISTEN_DEFAULTS)


def validate_option(key: str, value: object) -> object:
    """Validate and normalise a single listener option."""
    try:
        validator = OPTION_VALIDATORS[key]
    except KeyError:
        raise ListenerOptionError(key, value, "unknown listener option") from None
    return validator(value)


def validate_options(raw: Mapping[str, object]) -> dict[str, object]:
    """Validate every entry of *raw*, reporting all failures at once.

    ``None`` values are treated as "not supplied" and dropped so that a YAML
    ``auth_realm: ~`` behaves like an omitted key.
    """
    validated: dict[str, object] = {}
    errors: list[ListenerOptionError] = []
    for key, value in raw.items():
        if value is None:
            if key not in OPTION_VALIDATORS:
                errors.append(ListenerOptionError(key, value, "unknown listener option"))
            continue
        try:
            validated[key] = validate_option(key, value)
        except ListenerOptionError as exc:
            errors.append(exc)
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise ListenerOptionsError(errors)
    return validated


def build_listener_options(raw: Mapping[str, object]) -> dict[str, object]:
    """Layer validated *raw* overrides over :data:`LISTEN_DEFAULTS`.

    The relay port range is only cross-checked when *raw* sets both ends;
    a single bound is checked on its own, like every other key.
    """
    overrides = validate_options(raw)
    min_port = overrides.get("turn_min_port")
    max_port = overrides.get("turn_max_port")
    if isinstance(min_port, int) and isinstance(max_port, int) and min_port > max_port:
        raise ListenerOptionError(
            "turn_min_port",
            min_port,
            f"must not exceed turn_max_port ({max_port})",
        )
    options = listen_options()
    options.update(overrides)
    return options


__all__ = [
    "DEFAULT_SERVER_NAME",
    "LISTEN_DEFAULTS",
    "OPTION_VALIDATORS",
    "UNBOUNDED",
    "AuthType",
    "ListenerOptionError",
    "ListenerOptionsError",
    "build_listener_options",
    "listen_options",
    "validate_option",
    "validate_options",
]
