"""Tenant system settings endpoints (stored inside the tenant schema)."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, HTTPException

from schema_tenancy.api.deps import RepositoriesDep
from schema_tenancy.api.schemas import SystemSettingResponse, SystemSettingUpdateRequest
from schema_tenancy.storage.orm import SystemSetting

logger = structlog.get_logger()

router = APIRouter(tags=["settings"])


@router.get("/tenant/settings")
async def list_settings(
    repos: RepositoriesDep,
    limit: int = 50,
    offset: int = 0,
) -> list[SystemSettingResponse]:
    """List the tenant's system settings."""
    repo = repos.get(SystemSetting)
    settings = await repo.list_all(limit=limit, offset=offset)
    return [SystemSettingResponse.model_validate(s) for s in settings]


@router.get("/tenant/settings/{key}")
async def get_setting(key: str, repos: RepositoriesDep) -> SystemSettingResponse:
    """Get one system setting by key."""
    setting = await repos.get(SystemSetting).get(key)
    if setting is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return SystemSettingResponse.model_validate(setting)


@router.put("/tenant/settings/{key}")
async def put_setting(
    key: str,
    body: SystemSettingUpdateRequest,
    repos: RepositoriesDep,
) -> SystemSettingResponse:
    """Create or replace a system setting."""
    repo = repos.get(SystemSetting)
    setting = await repo.get(key)
    if setting is None:
        setting = await repo.add(SystemSetting(key=key, value=body.value))
    else:
        setting.value = body.value
    await repo.commit()
    logger.info("system_setting_updated", key=key)
    return SystemSettingResponse.model_validate(setting)
