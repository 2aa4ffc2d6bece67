from __future__ import annotations


class LogIndexerError(Exception):
    """Base class for every error raised by the log indexer."""


class ConfigurationError(LogIndexerError):
    """
    Required configuration is missing or invalid.

    Only raised while wiring the application at startup.
    """


class StorageError(LogIndexerError):
    """
    Durable insertion or checkpoint persistence failed.

    Never absorbed by the scanner: a pass that hits this must stop without
    advancing the checkpoint.
    """


class UpstreamError(LogIndexerError):
    """Any failure talking to the block-explorer API."""


class RateLimitedError(UpstreamError):
    """The explorer reported a rate limit (after retries were exhausted)."""


class TransportError(UpstreamError):
    """Non-2xx status, unparseable body or a response of unexpected shape."""


class UpstreamRejectedError(UpstreamError):
    """
    The explorer answered NOTOK with a diagnostic message.

    Typical causes are query timeouts or result windows that are too large,
    so retrying the same window is pointless; the scanner shrinks instead.
    """
