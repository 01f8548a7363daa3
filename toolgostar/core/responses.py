from __future__ import annotations

import math
from typing import Generic, TypeVar

from pydantic import BaseModel


T = TypeVar("T")


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> Pagination:
        return cls(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if limit else 0)


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None
    pagination: Pagination | None = None


def ok(data: T, message: str | None = None, pagination: Pagination | None = None) -> ApiResponse[T]:
    return ApiResponse[T](data=data, message=message, pagination=pagination)
