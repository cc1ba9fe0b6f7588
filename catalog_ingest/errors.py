# catalog_ingest/errors.py

"""Exception taxonomy for the ingestion pipeline.

Provider-level errors (``ProviderError``, ``ProviderTimeout``) are caught
by the fetch orchestrator and turned into empty results.  ``UpstreamBlocked``
and ``PersistenceFailure`` are logged by the batch runner and never abort a
job.  Only ``InvalidArgument`` and store failures reach the caller.
"""


class IngestError(Exception):
    """Base class for all catalog_ingest errors."""


class ProviderError(IngestError):
    """A provider call failed with a network or parse error."""

    def __init__(self, platform: str, message: str) -> None:
        super().__init__(f"[{platform}] {message}")
        self.platform = platform


class ProviderTimeout(ProviderError):
    """A provider call did not settle within its timeout."""

    def __init__(self, platform: str, timeout: float) -> None:
        super().__init__(platform, f"timed out after {timeout:.0f}s")
        self.timeout = timeout


class InvalidArgument(IngestError, ValueError):
    """Caller misuse, e.g. an unsupported platform selector."""


class UpstreamBlocked(IngestError):
    """Consecutive fallback responses indicate the upstream is blocking us."""

    def __init__(self, consecutive: int) -> None:
        super().__init__(
            f"{consecutive} consecutive fallback responses"
        )
        self.consecutive = consecutive


class PersistenceFailure(IngestError):
    """Writing durable job state failed."""
