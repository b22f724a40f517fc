"""Page envelope for operator listings such as parked payments."""

from __future__ import annotations

from typing import Callable, Generic, Iterable, Sequence, TypeVar

from pydantic import BaseModel, Field, computed_field

ItemT = TypeVar("ItemT")


class PaginatedResponse(BaseModel, Generic[ItemT]):
    """One window of a listing plus the offsets an operator console pages with."""

    items: Sequence[ItemT]
    total: int = Field(..., ge=0)
    skip: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def has_more(self) -> bool:
        return self.skip + len(self.items) < self.total

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[object],
        total: int,
        *,
        skip: int,
        limit: int,
        convert: Callable[[object], ItemT],
    ):
        return cls(items=[convert(row) for row in rows], total=total, skip=skip, limit=limit)
