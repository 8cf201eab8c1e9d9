"""
FundedDesk – Error taxonomy.
Services raise these; main.py turns them into the JSON error envelope.
"""
from typing import Any, Optional

class DeskError(RuntimeError):
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, details: Any = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

class BadRequestError(DeskError):
    status_code = 400
    default_message = "Bad request"

class UnauthorizedError(DeskError):
    status_code = 401
    default_message = "Unauthorized"

class ForbiddenError(DeskError):
    status_code = 403
    default_message = "Forbidden"

class NotFoundError(DeskError):
    status_code = 404
    default_message = "Resource not found"

class ValidationFailedError(DeskError):
    status_code = 422
    default_message = "Invalid request payload"

class UpstreamError(DeskError):
    status_code = 502
    default_message = "Broker request failed"

# Broker-side failures; routes translate them before they reach HTTP callers.
class BrokerAuthError(RuntimeError): pass
class BrokerUnavailableError(RuntimeError): pass
