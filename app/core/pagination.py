"""Limit/offset paging shared by the bet and transaction listings."""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field

T = TypeVar("T")

DEFAULT_LIMIT = 50
MAX_LIMIT = 200


class Page(BaseModel, Generic[T]):
    items: list[T]
    limit: int
    offset: int
    total: int | None = None

    @computed_field
    @property
    def next_offset(self) -> int | None:
        end = self.offset + len(self.items)
        if self.total is not None:
            return end if end < self.total else None
        return end if len(self.items) == self.limit else None


def paginate(limit: int, offset: int, max_limit: int = MAX_LIMIT) -> tuple[int, int]:
    limit = max(1, min(limit, max_limit))
    offset = max(0, offset)
    return limit, offset
