"""Domain errors and failure typing."""


class PipelineError(Exception):
    """Base class for pipeline failures."""

    error_code = "PIPELINE_ERROR"


class ConfigurationError(PipelineError):
    """Raised for invalid or missing configuration, including territory data."""

    error_code = "CONFIG_ERROR"


class StageError(PipelineError):
    """Raised for stage failures that should halt in strict mode."""

    error_code = "STAGE_ERROR"


class GeometryError(PipelineError):
    """Raised when a polygon cannot be used for a containment test."""

    error_code = "GEOMETRY_ERROR"


class StoreError(StageError):
    error_code = "STORE_ERROR"


class RetryableStoreError(StoreError):
    pass


class RepairConflict(StageError):
    """Raised when a repair target changed since the finding was computed."""

    error_code = "REPAIR_CONFLICT"


class ProviderError(StageError):
    """Geocoder failure that is not worth retrying on the same address."""

    error_code = "PROVIDER_ERROR"


class ProviderTransientError(ProviderError):
    """Geocoder failure that may succeed if the same query is retried."""

    error_code = "PROVIDER_TRANSIENT"


class RateLimited(ProviderTransientError):
    error_code = "PROVIDER_RATE_LIMITED"


class ProviderTimeout(ProviderTransientError):
    error_code = "PROVIDER_TIMEOUT"


class ProviderSemanticError(PipelineError):
    """The provider answered, but the answer is not usable."""

    error_code = "PROVIDER_SEMANTIC"


class NoMatch(ProviderSemanticError):
    error_code = "PROVIDER_NO_MATCH"
