"""Data structures describing a fully resolved listener."""
from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from ipaddress import IPv4Address
from pathlib import Path
from types import MappingProxyType

from .options import LISTEN_DEFAULTS, AuthType

AuthFun = Callable[[str, str], "str | None"]

_OPTIONAL_FIELDS = ("turn_ip", "auth_realm", "certfile", "auth_fun")


@dataclass(frozen=True)
class ResolvedConfig:
    """Validated listener configuration handed to the relay engine.

    ``shaper`` keeps the symbolic shaper name unless relay mode is enabled, in
    which case it carries the numeric maximum rate. Optional fields are
    ``None`` when absent and are omitted from :meth:`engine_options`.
    """

    use_turn: bool
    turn_ip: IPv4Address | None
    auth_type: AuthType
    auth_realm: str | None
    tls: bool
    certfile: Path | None
    shaper: str | float
    turn_min_port: int
    turn_max_port: int
    turn_max_allocations: int | float
    turn_max_permissions: int | float
    server_name: str
    auth_fun: AuthFun | None = None

    @classmethod
    def from_options(
        cls,
        options: Mapping[str, object],
        *,
        shaper: str | float | None = None,
        auth_realm: str | None = None,
        auth_fun: AuthFun | None = None,
    ) -> ResolvedConfig:
        """Build a configuration from validated *options*.

        Keyword arguments carry derived values and take precedence over the
        entries of *options*; keys missing from *options* fall back to
        :data:`~stunlisten.options.LISTEN_DEFAULTS`.
        """

        def pick(key: str) -> object:
            return options.get(key, LISTEN_DEFAULTS[key])

        return cls(
            use_turn=bool(pick("use_turn")),
            turn_ip=pick("turn_ip"),  # type: ignore[arg-type]
            auth_type=pick("auth_type"),  # type: ignore[arg-type]
            auth_realm=auth_realm if auth_realm is not None else pick("auth_realm"),  # type: ignore[arg-type]
            tls=bool(pick("tls")),
            certfile=pick("certfile"),  # type: ignore[arg-type]
            shaper=shaper if shaper is not None else pick("shaper"),  # type: ignore[arg-type]
            turn_min_port=pick("turn_min_port"),  # type: ignore[arg-type]
            turn_max_port=pick("turn_max_port"),  # type: ignore[arg-type]
            turn_max_allocations=pick("turn_max_allocations"),  # type: ignore[arg-type]
            turn_max_permissions=pick("turn_max_permissions"),  # type: ignore[arg-type]
            server_name=pick("server_name"),  # type: ignore[arg-type]
            auth_fun=auth_fun,
        )

    def engine_options(self) -> Mapping[str, object]:
        """Return the read-only option mapping passed to the relay engine."""
        options: dict[str, object] = {
            "use_turn": self.use_turn,
            "turn_ip": self.turn_ip,
            "auth_type": self.auth_type,
            "auth_realm": self.auth_realm,
            "tls": self.tls,
            "certfile": self.certfile,
            "shaper": self.shaper,
            "turn_min_port": self.turn_min_port,
            "turn_max_port": self.turn_max_port,
            "turn_max_allocations": self.turn_max_allocations,
            "turn_max_permissions": self.turn_max_permissions,
            "server_name": self.server_name,
            "auth_fun": self.auth_fun,
        }
        for key in _OPTIONAL_FIELDS:
            if options[key] is None:
                del options[key]
        return MappingProxyType(options)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "use_turn": self.use_turn,
            "turn_ip": str(self.turn_ip) if self.turn_ip is not None else None,
            "auth_type": self.auth_type.value,
            "auth_realm": self.auth_realm,
            "tls": self.tls,
            "certfile": str(self.certfile) if self.certfile is not None else None,
            "shaper": _render_number(self.shaper),
            "turn_min_port": self.turn_min_port,
            "turn_max_port": self.turn_max_port,
            "turn_max_allocations": _render_number(self.turn_max_allocations),
            "turn_max_permissions": _render_number(self.turn_max_permissions),
            "server_name": self.server_name,
            "auth_fun": _describe_callable(self.auth_fun),
        }


def _render_number(value: object) -> object:
    if isinstance(value, float) and math.isinf(value):
        return "infinity"
    return value


def _describe_callable(func: AuthFun | None) -> str | None:
    if func is None:
        return None
    owner = getattr(func, "__self__", None)
    name = getattr(func, "__qualname__", None) or repr(func)
    if owner is not None and "." not in name:
        name = f"{type(owner).__qualname__}.{name}"
    module = getattr(func, "__module__", None)
    return f"{module}.{name}" if module else name


__all__ = ["AuthFun", "ResolvedConfig"]
