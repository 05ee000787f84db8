from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


def ok(data: T) -> ApiResponse[T]:
    return ApiResponse(data=data)


__all__ = ["ApiResponse", "ok"]
