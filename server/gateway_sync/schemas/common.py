from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ItemT = TypeVar("ItemT")


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class Timestamped(ORMModel):
    created_at: datetime
    updated_at: datetime


class MirrorRead(Timestamped):
    """Fields every mirror view carries."""

    id: str
    is_active: bool
    metadata: dict[str, Any] | None = Field(
        default=None,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )
    # True only when a fresh remote snapshot was merged for this row.
    synced: bool = False
    culqi_data: dict[str, Any] | None = None


class MirrorList(BaseModel, Generic[ItemT]):
    """List page; rows past ``reconciled_through`` come from the local mirror as of their last sync."""

    items: list[ItemT]
    total: int
    reconciled_through: int


class DeleteResult(BaseModel):
    deleted: bool
    message: str | None = None
