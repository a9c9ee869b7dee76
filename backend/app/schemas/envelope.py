"""JSON response envelope shared by every endpoint."""

from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope: ``{"ok": true, "data": ...}``."""

    ok: bool = True
    data: T


class ApiError(BaseModel):
    code: str
    message: str


class ApiErrorResponse(BaseModel):
    """Failure envelope: ``{"ok": false, "error": {"code", "message"}}``."""

    ok: bool = False
    error: ApiError


def ok(data: T) -> ApiResponse[T]:
    return ApiResponse(data=data)


def error_body(code: str, message: str) -> dict:
    return ApiErrorResponse(error=ApiError(code=code, message=message)).model_dump()


class DeletedResponse(BaseModel):
    id: UUID
    deleted: bool = True
