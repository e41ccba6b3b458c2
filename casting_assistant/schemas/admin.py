from typing import Any, Optional

from pydantic import BaseModel, Field


class RetentionCleanupRequest(BaseModel):
    now_ms: Optional[int] = Field(default=None, ge=0)


class RetentionCleanupResponse(BaseModel):
    removed_logs: int
    removed_dedupe_records: int
    swept_at: str
    remaining_logs: int


class EscalationListResponse(BaseModel):
    count: int
    total_escalated: int
    items: list[dict[str, Any]]


class ProfilesSyncRequest(BaseModel):
    profiles: list[dict[str, Any]] = Field(default_factory=list)
    knowledge: list[dict[str, Any]] = Field(default_factory=list)


class ProfilesSyncResponse(BaseModel):
    source: str
    profiles_upserted: int
    profiles_skipped: int
    knowledge_upserted: int = 0
    knowledge_skipped: int = 0


class CatalogReloadResponse(BaseModel):
    talents: int
    contracts: int
    experts: int
