"""
Schemas compartidos: sobre de respuesta y paginación.
"""

import math
from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Sobre estándar {success, message?, data}."""
    success: bool = True
    message: str | None = None
    data: T | None = None


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = max(1, math.ceil(total / limit)) if limit > 0 else 1
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page * limit < total,
            has_prev_page=page > 1,
        )


class PaginatedResponse(BaseModel, Generic[T]):
    """Listado paginado {items[], pagination}."""
    items: list[T]
    pagination: PaginationMeta
