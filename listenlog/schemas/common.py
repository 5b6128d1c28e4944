"""Shared response envelope and base models."""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys for the upload/Spotify APIs."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ApiResponse(BaseModel, Generic[T]):
    ok: bool = True
    data: T
    error: None = None


def envelope(data: T) -> ApiResponse[T]:
    return ApiResponse(data=data)


__all__ = ["ApiResponse", "CamelModel", "envelope"]
