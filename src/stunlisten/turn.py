"""Derive TURN authentication and relay settings for a listener."""
from __future__ import annotations

import logging
from collections.abc import Mapping

from .certfile import set_certfile
from .collaborators import Collaborators, ServiceIdentity
from .models import ResolvedConfig
from .options import AuthType
from .shaper import NO_SHAPER

LOGGER = logging.getLogger(__name__)


def prepare_turn_options(
    options: Mapping[str, object],
    collaborators: Collaborators,
) -> ResolvedConfig:
    """Turn validated listener *options* into a :class:`ResolvedConfig`.

    Without ``use_turn`` only the certificate is resolved. With it, the
    credential lookup, the numeric shaper rate and the authentication realm
    are derived as well.
    """
    if options.get("use_turn") is True:
        config = _prepare_relay(options, collaborators)
    else:
        config = ResolvedConfig.from_options(options)
    return set_certfile(config, collaborators)


def _prepare_relay(options: Mapping[str, object], collaborators: Collaborators) -> ResolvedConfig:
    if options.get("turn_ip") is None:
        LOGGER.warning(
            "option 'turn_ip' is undefined, more likely the TURN relay "
            "won't be working properly"
        )
    shaper_name = options.get("shaper") or NO_SHAPER
    max_rate = collaborators.shapers.rate_of(str(shaper_name))
    auth_type = options.get("auth_type") or AuthType.USER
    realm = options.get("auth_realm")
    if realm is None and auth_type is AuthType.USER:
        realm = _fallback_realm(collaborators.identity)
    return ResolvedConfig.from_options(
        options,
        shaper=max_rate,
        auth_realm=realm,  # type: ignore[arg-type]
        auth_fun=collaborators.credentials.verify,
    )


def _fallback_realm(identity: ServiceIdentity) -> str:
    myname = identity.own_domain_name()
    if len(identity.configured_domains()) > 1:
        LOGGER.warning(
            "you have several virtual hosts configured, but option 'auth_realm' "
            "is undefined and 'auth_type' is set to 'user', more likely the "
            "TURN relay won't be working properly. Using %s as a fallback",
            myname,
        )
    return myname


__all__ = ["prepare_turn_options"]
