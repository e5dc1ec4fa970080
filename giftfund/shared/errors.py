# giftfund/shared/errors.py

# Domain exceptions raised by the feature services.
# The API layer turns them into {"success": False, "message": ..., "reasons": ...} responses.

from typing import Any, Dict, List, Optional


class GiftFundError(Exception):
    """Base class for every error a service reports back to the caller."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        reasons: Optional[List[str]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.reasons = reasons
        self.extra = extra or {}

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message}
        if self.reasons is not None:
            body["reasons"] = self.reasons
        body.update(self.extra)
        return body


class ValidationError(GiftFundError):
    status_code = 400


class AuthorizationError(GiftFundError):
    status_code = 403


class NotFoundError(GiftFundError):
    status_code = 404


class ConflictError(GiftFundError):
    status_code = 409


class ExternalServiceError(GiftFundError):
    status_code = 502


class ServiceUnavailableError(GiftFundError):
    status_code = 503
