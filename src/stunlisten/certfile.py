"""Fill in a listener ``certfile`` when none was configured explicitly."""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from .collaborators import Collaborators
from .models import ResolvedConfig

LOGGER = logging.getLogger(__name__)


def set_certfile(config: ResolvedConfig, collaborators: Collaborators) -> ResolvedConfig:
    """Return *config* with a certificate injected when one can be found.

    An explicit ``certfile`` always wins and *config* is returned untouched.
    Otherwise the lookup realm is ``auth_realm`` (or the service's own domain)
    and two sources are consulted in order: the PKI store, then the
    per-domain ``domain_certfile`` setting. When neither knows the realm the
    configuration is returned without a certificate.
    """
    if config.certfile is not None:
        return config
    realm = config.auth_realm
    if realm is None:
        realm = collaborators.identity.own_domain_name()
    certfile = find_certfile(realm, collaborators)
    if certfile is None:
        return config
    return dataclasses.replace(config, certfile=certfile)


def find_certfile(realm: str, collaborators: Collaborators) -> Path | None:
    """Look up a certificate for *realm* in the PKI store, then domain settings."""
    certfile = collaborators.pki.cert_for(realm)
    if certfile is not None:
        LOGGER.debug("using certificate %s from the PKI store for %s", certfile, realm)
        return certfile
    certfile = collaborators.domain_certs.cert_for(realm)
    if certfile is not None:
        LOGGER.debug("using domain_certfile %s for %s", certfile, realm)
        return certfile
    LOGGER.debug("no certificate found for %s", realm)
    return None


__all__ = ["find_certfile", "set_certfile"]
