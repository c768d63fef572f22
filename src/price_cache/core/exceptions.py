"""Custom exception hierarchy for price-cache."""

from typing import Any


class PriceCacheError(Exception):
    """Base exception for all price-cache errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(PriceCacheError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class SourceUnavailable(PriceCacheError):
    """Price feed or asset ranking unreachable, timed out, or incomplete.

    Policy: fail the current refresh cycle without writing anything.
    The scheduler waits for the next tick.

    Context keys:
        assets: list[str] — keys that could not be priced, if known
        url: str — the endpoint that was being fetched
        timeout_ms: int — the bound that expired, on timeouts
        reason: str — "missing_quotes" when the feed answered but left
            tracked assets unpriced
    """


class StoreUnavailable(PriceCacheError):
    """Time-series store connection or write failure.

    Distinct from "no data": reads that find nothing return None, reads
    that cannot reach the store raise this.

    Context keys:
        operation: str — "connect", "multi_write", "range_read", etc.
        keys: list[str] — series keys that failed, when the store reports them
    """


class UnknownAsset(PriceCacheError):
    """Read requested for a key outside the tracked universe.

    Context keys:
        asset: str — the requested key
    """


class PartialInitFailure(PriceCacheError):
    """Some assets failed to initialize during startup.

    Only raised on request (InitReport.raise_if_partial); the engine itself
    keeps serving the assets that did initialize.

    Context keys:
        failures: dict[str, str] — asset key to failure kind
    """


class StartupError(PriceCacheError):
    """Cache initialization failed on every attempt.

    Policy: abort the process. Serving with no cache is worse than not
    serving.

    Context keys:
        attempts: int — number of initialization attempts made
        last_error: str — message of the final failure
    """
