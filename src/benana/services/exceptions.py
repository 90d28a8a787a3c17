"""Service error hierarchy for generation, spend control and artifact storage.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- PermanentError: Non-retryable errors (validation, spend limits, bad payloads)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Invalid API key (400, 401, 403)
    - Model returned no image
    - Spend limit reached
    """

    pass


# Gemini-specific errors
class GeminiHttpError(ServiceError):
    """Non-success response (or timeout) from the Gemini API.

    Retryability follows the status: 429 and 5xx are transient, everything else is
    permanent. Timeouts are reported with status 504 so they classify as retryable.
    """

    def __init__(self, message: str, status: int):
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class NoImageReturnedError(PermanentError):
    """The API call succeeded but the response carried no image part."""

    pass


class MissingApiKeyError(PermanentError):
    """No Gemini API key is configured."""

    def __init__(self, message: str = "No Gemini API key configured"):
        super().__init__(message)


# Spend control
class SpendLimitExceededError(PermanentError):
    """Admitting more work would push spend past a configured ceiling."""

    def __init__(
        self,
        limit_name: str,
        limit: float,
        current_spend: float,
        reserved_spend: float,
        additional_cost: float,
    ):
        self.limit_name = limit_name
        self.limit = limit
        self.current_spend = current_spend
        self.reserved_spend = reserved_spend
        self.additional_cost = additional_cost
        self.shortfall = current_spend + reserved_spend + additional_cost - limit
        super().__init__(
            f"{limit_name} limit reached: current ${current_spend:.3f}, "
            f"reserved ${reserved_spend:.3f}, planned ${additional_cost:.3f}, "
            f"limit ${limit:.3f} (short by ${self.shortfall:.3f}). "
            "Adjust the limit in settings."
        )


# Artifact storage errors
class ArtifactError(PermanentError):
    """Base exception for artifact persistence errors."""

    pass


class PayloadDecodeError(ArtifactError):
    """Transport-encoded payload is malformed or empty."""

    pass


class PayloadTooLargeError(ArtifactError):
    """Decoded payload exceeds the size ceiling."""

    pass
