"""
Pydantic models for channel messages and REST responses.

Inbound messages are validated here before they reach the reducer;
outbound messages are serialized with model_dump(by_alias=True) so the
wire keeps the backend's camelCase field names.
"""
import json
from typing import Any, Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from storesync.config import config

# Normalized marker for an open-ended `total`
UNBOUNDED = "unbounded"


# ═══════════════════════════════════════════════════════════════════════════════
# CHANNEL MESSAGES
# ═══════════════════════════════════════════════════════════════════════════════

class ProgressEventMessage(BaseModel):
    """Progress update streamed by the backend for one job family."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    stage: str = Field(description="Free-form stage tag, e.g. 'calculating'")
    message: str = Field("", description="Human-readable status line")
    progress: float = Field(0, ge=0, le=100, description="Percent complete")
    current: Optional[int] = Field(None, ge=0, description="Items processed so far")
    total: Optional[Union[int, str]] = Field(
        None, description="Total items, or 'unbounded' for an open-ended count"
    )
    payload: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("payload", "data"),
        description="JSON-encoded stage result",
    )
    store_id: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("storeId", "store_id", "partitionKey"),
        description="Partition the event belongs to",
    )
    params: Optional[Dict[str, Any]] = Field(
        None, description="Echo of the launch parameters"
    )
    kind: Optional[str] = Field(None, description="Job kind, when the emitter declares it")

    @field_validator("stage")
    @classmethod
    def _normalize_stage(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("stage must not be empty")
        return value

    @field_validator("total", mode="before")
    @classmethod
    def _normalize_total(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip().lower()
            if text in config.progress.unbounded_sentinels:
                return UNBOUNDED
            if text.isdigit():
                return int(text)
            raise ValueError(f"total must be a number or 'unbounded', got {value!r}")
        if isinstance(value, float):
            return int(value)
        return value

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_as_text(cls, value: Any) -> Any:
        # Some emitters send the result already decoded
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)


class JobStartMessage(BaseModel):
    """Client request to start a backend job."""

    kind: str
    params: Dict[str, Any] = Field(default_factory=dict)
    roomKey: Optional[str] = Field(None, description="Partition the job runs for")


class PartitionSelectMessage(BaseModel):
    """Client announcement of the partition (store) it wants events for."""

    partitionKey: str


# ═══════════════════════════════════════════════════════════════════════════════
# REST RESPONSES
# ═══════════════════════════════════════════════════════════════════════════════

class PaginationMeta(BaseModel):
    """Pagination block returned by table endpoints."""

    model_config = ConfigDict(extra="ignore")

    currentPage: int = Field(1, ge=1)
    pageSize: Optional[int] = Field(None, ge=1)
    totalPages: int = Field(0, ge=0)
    totalItems: int = Field(0, ge=0)


class TablePageResponse(BaseModel):
    """One page of table rows."""

    model_config = ConfigDict(extra="ignore")

    data: List[Dict[str, Any]] = Field(default_factory=list)
    pagination: PaginationMeta = Field(default_factory=PaginationMeta)


class DailyMetricsRow(BaseModel):
    """One day of the analytics series returned by /analytics/daily."""

    model_config = ConfigDict(extra="allow")

    date: str
