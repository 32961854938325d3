"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from stunlisten.auth import StaticCredentialStore
from stunlisten.collaborators import Collaborators
from stunlisten.config import DomainCertfiles
from stunlisten.shaper import ConfiguredShapers


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class StaticIdentity:
    """Service identity with a fixed host list."""

    def __init__(self, hosts: Iterable[str]) -> None:
        self._hosts = list(hosts)

    def own_domain_name(self) -> str:
        return self._hosts[0]

    def configured_domains(self) -> list[str]:
        return list(self._hosts)


class MappingCertStore:
    """Certificate store answering from a plain mapping and recording lookups."""

    def __init__(self, mapping: Mapping[str, Path] | None = None) -> None:
        self._mapping = dict(mapping or {})
        self.lookups: list[str] = []

    def cert_for(self, realm: str) -> Path | None:
        self.lookups.append(realm)
        return self._mapping.get(realm)


CollaboratorFactory = Callable[..., Collaborators]


@pytest.fixture
def make_collaborators() -> CollaboratorFactory:
    """Return a factory building collaborators from simple in-memory data."""

    def factory(
        *,
        hosts: Iterable[str] = ("example.org",),
        pki: Mapping[str, Path] | None = None,
        domain_certs: Mapping[str, Path] | None = None,
        shapers: Mapping[str, float] | None = None,
        users: Mapping[str, Mapping[str, str]] | None = None,
    ) -> Collaborators:
        return Collaborators(
            identity=StaticIdentity(hosts),
            credentials=StaticCredentialStore(users or {}),
            shapers=ConfiguredShapers(shapers or {}),
            pki=MappingCertStore(pki),
            domain_certs=DomainCertfiles(domain_certs or {}),
        )

    return factory


def write_certificate(
    directory: Path,
    *,
    names: Iterable[str],
    common_name: str | None = None,
    valid_to: datetime | None = None,
    filename: str | None = None,
    der: bool = False,
) -> Path:
    """Write a self-signed certificate covering *names* and return its path."""
    names = list(names)
    now = datetime.now(UTC)
    valid_to = valid_to or (now + timedelta(days=90))
    valid_from = min(now, valid_to) - timedelta(days=30)
    key = ec.generate_private_key(ec.SECP256R1())
    cn = common_name or (names[0] if names else "unnamed.test")
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(valid_from)
        .not_valid_after(valid_to)
    )
    if names:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in names]),
            critical=False,
        )
    cert = builder.sign(key, hashes.SHA256())
    target = directory / (filename or f"{cn.replace('*', 'wildcard').replace('.', '_')}.pem")
    encoding = serialization.Encoding.DER if der else serialization.Encoding.PEM
    target.write_bytes(cert.public_bytes(encoding))
    return target


@pytest.fixture
def make_certificate(tmp_path: Path) -> Callable[..., Path]:
    """Return a helper writing self-signed certificates under ``tmp_path``."""

    def factory(**kwargs: object) -> Path:
        return write_certificate(tmp_path, **kwargs)  # type: ignore[arg-type]

    return factory
