"""Stateless helpers that live alongside the cache worker."""

from price_cache.integrations.onramp import (
    OnrampError,
    OnrampErrorKind,
    OnrampTokenResult,
    fetch_onramp_session_token,
    generate_jwt,
)
from price_cache.integrations.prometheus import PrometheusQuery

__all__ = [
    "OnrampError",
    "OnrampErrorKind",
    "OnrampTokenResult",
    "fetch_onramp_session_token",
    "generate_jwt",
    "PrometheusQuery",
]
