from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status


class ConversionError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "unexpected"

    def __init__(self, detail: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail)
        self.details = details or {}


class NotFoundError(ConversionError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class AlreadyConvertedError(ConversionError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_converted"


class LeadRejectedError(ConversionError):
    status_code = status.HTTP_409_CONFLICT
    code = "lead_rejected"


class PreconditionMissingError(ConversionError):
    status_code = status.HTTP_412_PRECONDITION_FAILED
    code = "precondition_missing"


class ApprovalConflictError(ConversionError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "retry_approval"

    def __init__(self, detail: str = "concurrent conflict while approving lead, retry the approval", details: dict[str, Any] | None = None) -> None:
        super().__init__(detail, details)


class UnexpectedConversionError(ConversionError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "unexpected"

    def __init__(self, detail: str = "unexpected error while approving lead", details: dict[str, Any] | None = None) -> None:
        super().__init__(detail, details)
