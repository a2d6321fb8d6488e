"""Request-level errors. Each one maps to an HTTP status in main.py."""
from typing import Optional


class DisputeAssistantError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class InputError(DisputeAssistantError):
    """Missing file, empty breakdown, missing required field."""
    status_code = 400


class ExtractionInsufficientError(DisputeAssistantError):
    """No usable text even after OCR."""
    status_code = 422


class ConfigurationError(DisputeAssistantError):
    """Operator-side problem, e.g. the inference token is not set."""
    status_code = 500


class ServerError(DisputeAssistantError):
    status_code = 500
