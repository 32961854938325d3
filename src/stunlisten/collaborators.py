"""Interfaces consumed by listener resolution and their default wiring."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .auth import StaticCredentialStore
from .config import AppConfig, ConfigIdentity, DomainCertfiles
from .pki import PKIStore
from .shaper import ConfiguredShapers


class CredentialStore(Protocol):
    """Long-term credential lookups."""

    def verify(self, user: str, realm: str) -> str | None:
        """Return the stored credential for *user* in *realm*, or ``None``."""


class ShaperRegistry(Protocol):
    """Named shaper lookups."""

    def rate_of(self, name: str) -> float:
        """Return the maximum rate for the shaper called *name*."""


class CertificateStore(Protocol):
    """Certificate file lookups keyed by realm."""

    def cert_for(self, realm: str) -> Path | None:
        """Return a certificate path for *realm*, or ``None``."""


class ServiceIdentity(Protocol):
    """Identity of the service hosting the listeners."""

    def own_domain_name(self) -> str:
        """Return the primary domain name."""

    def configured_domains(self) -> list[str]:
        """Return every configured virtual host."""


class RelayEngine(Protocol):
    """Backing STUN/TURN protocol engine."""

    def start(self) -> None:
        """Start process-wide engine services."""

    def tcp_init(self, sock: object, options: Mapping[str, object]) -> object:
        """Take over a freshly accepted stream socket."""

    def udp_init(self, sock: object, options: Mapping[str, object]) -> object:
        """Prepare a datagram socket for incoming packets."""

    def udp_recv(
        self,
        sock: object,
        addr: str,
        port: int,
        packet: bytes,
        options: Mapping[str, object],
    ) -> object:
        """Handle one inbound datagram."""

    def start_session(
        self,
        sock_mod: object,
        sock: object,
        options: Mapping[str, object],
    ) -> object:
        """Start a supervised session for a stream socket."""

    def start_link(self, sock: object, options: Mapping[str, object]) -> object:
        """Start a session linked to the calling listener."""


@dataclass(frozen=True)
class Collaborators:
    """Lookups the resolution pipeline reads from."""

    identity: ServiceIdentity
    credentials: CredentialStore
    shapers: ShaperRegistry
    pki: CertificateStore
    domain_certs: CertificateStore

    @classmethod
    def from_config(cls, config: AppConfig) -> Collaborators:
        """Build the default collaborators from the service configuration."""
        return cls(
            identity=ConfigIdentity(config),
            credentials=StaticCredentialStore(config.auth.users),
            shapers=ConfiguredShapers(config.shapers),
            pki=PKIStore(config.certfiles),
            domain_certs=DomainCertfiles(config.domain_certfile),
        )


__all__ = [
    "CertificateStore",
    "Collaborators",
    "CredentialStore",
    "RelayEngine",
    "ServiceIdentity",
    "ShaperRegistry",
]
