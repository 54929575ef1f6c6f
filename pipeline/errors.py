"""
Pipeline Errors

Failure taxonomy shared by adapters, storage, the predictor and the API.
Per-record errors are counted and skipped; request-level errors surface
as `{success: false, error}` envelopes.
"""

from typing import Optional


class CatalystPipelineError(Exception):
    """Base class for all pipeline errors."""


class UpstreamFetchError(CatalystPipelineError):
    """Network failure or error status from an external source."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class RateLimitedError(UpstreamFetchError):
    """HTTP 429 that persisted through every retry."""


class CredentialMissingError(CatalystPipelineError):
    """A required credential is not present in the credential store."""

    def __init__(self, service_name: str):
        super().__init__(f"Credential not found for service: {service_name}")
        self.service_name = service_name


class EntityResolutionMiss(CatalystPipelineError):
    """No entity mapping for a raw identifier. Non-fatal, record dropped."""

    def __init__(self, raw_identifier: str):
        super().__init__(f"No mapping found for: {raw_identifier}")
        self.raw_identifier = raw_identifier


class CatalystValidationError(CatalystPipelineError):
    """Malformed record (missing ticker, unparseable date). Non-fatal."""


class PersistenceError(CatalystPipelineError):
    """Store write failed; the current batch write is lost."""


class PredictionError(CatalystPipelineError):
    """Feature extraction or scoring failed for a prediction request."""


class CatalystNotFoundError(PredictionError):
    """Requested catalyst id does not exist."""

    def __init__(self, catalyst_id):
        super().__init__(f"Catalyst not found: {catalyst_id}")
        self.catalyst_id = catalyst_id
