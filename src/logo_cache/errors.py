"""Exception types raised across the logo pipeline."""


class LogoCacheError(Exception):
    """Base class for all logo pipeline errors."""


class InvalidInputError(LogoCacheError, ValueError):
    """Raised when a caller passes an empty or malformed domain."""


class ConfigurationError(LogoCacheError):
    """Raised when settings are inconsistent."""


class ImageAnalysisError(LogoCacheError):
    """Raised when an image cannot be decoded or fails metadata validation."""

    BAD_FORMAT = "bad_format"
    BAD_DIMENSIONS = "bad_dimensions"
    CODEC_FAILURE = "codec_failure"

    def __init__(self, message: str, kind: str = CODEC_FAILURE):
        super().__init__(message)
        self.kind = kind


class CoalescerFullError(LogoCacheError):
    """Raised when the in-flight request table is at capacity."""

    def __init__(self, key: str, limit: int):
        super().__init__(f"Too many in-flight requests ({limit}); rejected {key}")
        self.key = key
        self.limit = limit
