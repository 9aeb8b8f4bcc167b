"""Common/shared schemas."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model that serializes snake_case fields as camelCase.

    ``from_attributes`` lets routes validate service dataclasses directly.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class PaginatedResponse(CamelModel, Generic[T]):
    total: int
    limit: int
    offset: int
    items: list[T]


class HealthResponse(BaseModel):
    status: str
