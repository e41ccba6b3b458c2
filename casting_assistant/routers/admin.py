"""Admin API endpoints for retention, escalations and data sync."""

from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request

from casting_assistant.container import Container
from casting_assistant.logging_config import get_logger
from casting_assistant.schemas.admin import (
    CatalogReloadResponse,
    EscalationListResponse,
    ProfilesSyncRequest,
    ProfilesSyncResponse,
    RetentionCleanupRequest,
    RetentionCleanupResponse,
)
from casting_assistant.services.casting_service import load_csv
from casting_assistant.services.errors import StorageError

logger = get_logger("admin")

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _require_admin_token(container: Container, x_admin_token: Optional[str], authorization: Optional[str]) -> None:
    expected = container.settings.admin_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="ADMIN_API_KEY not configured")
    provided = x_admin_token or _bearer_token(authorization)
    if not provided or provided != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")


@router.post("/retention-cleanup", response_model=RetentionCleanupResponse)
async def retention_cleanup(
    request: Request,
    payload: Optional[RetentionCleanupRequest] = None,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    authorization: Optional[str] = Header(default=None),
) -> RetentionCleanupResponse:
    """Purge expired conversation logs and dedupe records."""
    container: Container = request.app.state.container
    _require_admin_token(container, x_admin_token, authorization)

    now_ms = payload.now_ms if payload else None
    try:
        report = container.retention.cleanup(now_ms)
        remaining = container.memory.count()
    except StorageError as e:
        logger.error(f"Retention cleanup failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return RetentionCleanupResponse(**report.to_dict(), remaining_logs=remaining)


@router.get("/escalations", response_model=EscalationListResponse)
async def list_escalations(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    authorization: Optional[str] = Header(default=None),
) -> EscalationListResponse:
    container: Container = request.app.state.container
    _require_admin_token(container, x_admin_token, authorization)

    items = container.repository.list_escalations(limit)
    return EscalationListResponse(
        count=len(items),
        total_escalated=container.orchestrator.escalation_count,
        items=[item.to_dict() for item in items],
    )


@router.post("/profiles/sync", response_model=ProfilesSyncResponse)
async def sync_profiles(
    request: Request,
    payload: Optional[ProfilesSyncRequest] = None,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    authorization: Optional[str] = Header(default=None),
) -> ProfilesSyncResponse:
    """Upsert profiles (and knowledge items) from the body, or from PROFILES_CSV_PATH when the body is empty."""
    container: Container = request.app.state.container
    _require_admin_token(container, x_admin_token, authorization)

    if payload and (payload.profiles or payload.knowledge):
        source = "body"
        profile_rows = payload.profiles
        knowledge_rows = payload.knowledge
    else:
        csv_path = container.settings.profiles_csv_path
        if not csv_path:
            raise HTTPException(status_code=400, detail="Empty body and PROFILES_CSV_PATH not configured")
        source = "csv"
        profile_rows = load_csv(Path(csv_path))
        knowledge_rows = []

    profiles = container.repository.upsert_profiles(profile_rows)
    knowledge = container.repository.upsert_knowledge(knowledge_rows)
    logger.info(
        "Profiles synced",
        extra={"context": {"source": source, "profiles": profiles, "knowledge": knowledge}},
    )
    return ProfilesSyncResponse(
        source=source,
        profiles_upserted=profiles["upserted"],
        profiles_skipped=profiles["skipped"],
        knowledge_upserted=knowledge["upserted"],
        knowledge_skipped=knowledge["skipped"],
    )


@router.post("/catalog/reload", response_model=CatalogReloadResponse)
async def reload_catalog(
    request: Request,
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    authorization: Optional[str] = Header(default=None),
) -> CatalogReloadResponse:
    container: Container = request.app.state.container
    _require_admin_token(container, x_admin_token, authorization)
    return CatalogReloadResponse(**container.catalog.reload())
