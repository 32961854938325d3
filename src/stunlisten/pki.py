"""Certificate store indexed by the domains each certificate covers."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509
from cryptography.x509.oid import NameOID

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PKIEntry:
    """A loaded certificate file and the names it is valid for."""

    path: Path
    domains: tuple[str, ...]
    not_valid_after: datetime

    def matches(self, domain: str) -> bool:
        """Return True when this certificate covers *domain*."""
        return any(_domain_matches(pattern, domain) for pattern in self.domains)

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "domains": list(self.domains),
            "not_valid_after": self.not_valid_after.isoformat(),
        }


class PKIStore:
    """Look up certificate files by domain.

    Certificates are parsed once at construction. Files that cannot be read or
    parsed, and certificates that have already expired, are skipped with a
    warning. When several certificates cover the same domain the one expiring
    last wins.
    """

    def __init__(self, certfiles: Iterable[Path], *, now: datetime | None = None) -> None:
        """Load every file in *certfiles*."""
        moment = now or datetime.now(UTC)
        entries: list[PKIEntry] = []
        for path in certfiles:
            entry = _load_entry(path)
            if entry is None:
                continue
            if entry.not_valid_after <= moment:
                LOGGER.warning(
                    "certificate %s expired on %s, ignoring it",
                    path,
                    entry.not_valid_after.isoformat(),
                )
                continue
            entries.append(entry)
        self._entries = tuple(entries)

    @property
    def entries(self) -> tuple[PKIEntry, ...]:
        """Return the usable certificate entries."""
        return self._entries

    def cert_for(self, realm: str) -> Path | None:
        """Return the certificate file registered for *realm*, if any."""
        domain = realm.strip().lower().rstrip(".")
        candidates = [entry for entry in self._entries if entry.matches(domain)]
        if not candidates:
            return None
        best = max(candidates, key=lambda entry: entry.not_valid_after)
        return best.path


def _load_entry(path: Path) -> PKIEntry | None:
    try:
        certificate = _load_certificate(path)
    except (OSError, ValueError) as exc:
        LOGGER.warning("failed to load certificate %s: %s", path, exc)
        return None
    domains = _certificate_domains(certificate)
    if not domains:
        LOGGER.warning("certificate %s does not name any domain, ignoring it", path)
        return None
    return PKIEntry(
        path=path,
        domains=domains,
        not_valid_after=_not_valid_after(certificate),
    )


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _certificate_domains(certificate: x509.Certificate) -> tuple[str, ...]:
    try:
        san = certificate.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        names: list[str] = []
    else:
        names = list(san.value.get_values_for_type(x509.DNSName))
    if not names:
        names = [
            str(attribute.value)
            for attribute in certificate.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
        ]
    normalized: list[str] = []
    for name in names:
        value = name.strip().lower().rstrip(".")
        if value and value not in normalized:
            normalized.append(value)
    return tuple(normalized)


def _not_valid_after(certificate: x509.Certificate) -> datetime:
    value = getattr(certificate, "not_valid_after_utc", None)
    if isinstance(value, datetime):
        return value
    legacy = certificate.not_valid_after  # pragma: no cover - compatibility fallback
    return legacy.replace(tzinfo=UTC)  # pragma: no cover


def _domain_matches(pattern: str, domain: str) -> bool:
    if pattern == domain:
        return True
    if pattern.startswith("*."):
        suffix = pattern[1:]
        head, _, _ = domain.partition(".")
        return bool(head) and domain.endswith(suffix) and domain.count(".") == pattern.count(".")
    return False


__all__ = ["PKIEntry", "PKIStore"]
