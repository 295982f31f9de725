# auction_pipeline/errors.py
"""Exception types raised by the pipeline and mapped to HTTP status codes in the routes."""


class PipelineError(Exception):
    """Base class for pipeline errors."""
    status_code = 500


class ValidationError(PipelineError):
    """Malformed request; raised before any I/O and never retried."""
    status_code = 400


class NoDataError(PipelineError):
    """The record store has nothing matching the request."""
    status_code = 404


class UpstreamError(PipelineError):
    """The auction API failed or returned a non-2xx status."""
    status_code = 502

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.upstream_status = status_code

    @property
    def transient(self):
        # network failures carry no status; only 5xx is worth one more try, never 4xx
        return self.upstream_status is None or self.upstream_status >= 500


class CancelledError(PipelineError):
    """A long-running operation observed its cancellation signal."""
    status_code = 499


class CollectionBusyError(PipelineError):
    """Another collection job is already running."""
    status_code = 409


class StoreUnavailableError(PipelineError):
    """The record store could not be read at all."""
    status_code = 503
