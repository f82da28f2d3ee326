"""Domain errors and failure typing."""


class CarParkError(Exception):
    """Base class for car park failures."""

    error_code = "CARPARK_ERROR"


class ConfigError(CarParkError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class ValidationError(CarParkError):
    """Raised for caller-correctable input, before any I/O."""

    error_code = "VALIDATION_ERROR"


class InvalidCoordinatesError(ValidationError):
    error_code = "INVALID_COORDINATES"


class InvalidPageParametersError(ValidationError):
    error_code = "INVALID_PAGE_PARAMETERS"


class ParseFailure(CarParkError):
    """Raised for a single malformed row or feed record."""

    error_code = "PARSE_FAILURE"


class CoordinateConversionError(ParseFailure):
    error_code = "COORDINATE_CONVERSION_FAILED"


class CoordinateOutOfBoundsError(ParseFailure):
    error_code = "COORDINATE_OUT_OF_BOUNDS"


class UpstreamUnavailableError(CarParkError):
    """Raised when an external feed cannot be reached in time."""

    error_code = "UPSTREAM_UNAVAILABLE"


class StoreError(CarParkError):
    """Raised for backing store read or write failures."""

    error_code = "STORE_FAILURE"


class BulkSourceError(CarParkError):
    """Raised when the bulk attribute source cannot be read at all."""

    error_code = "BULK_SOURCE_ERROR"


class LookupFailedError(CarParkError):
    """Raised when a nearest lookup fails, as opposed to finding nothing."""

    error_code = "LOOKUP_FAILED"


class IngestionInProgressError(CarParkError):
    error_code = "INGESTION_IN_PROGRESS"
