"""Admin API for the platform settings singleton."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from bazaarmkt.api.deps import DB, Cache, require_admin_token
from bazaarmkt.schemas.platform_settings import PlatformSettingsResponse, PlatformSettingsUpdate
from bazaarmkt.services.platform_settings_service import (
    PlatformSettingsService,
    PlatformSettingsError,
)

logger = logging.getLogger(__name__)


router = APIRouter(tags=["Platform Settings"], dependencies=[Depends(require_admin_token)])


@router.get("", response_model=PlatformSettingsResponse)
async def get_platform_settings(db: DB, cache: Cache):
    """Effective settings (overrides merged over environment defaults)."""
    return await PlatformSettingsService(db, cache).get_effective()


@router.put("", response_model=PlatformSettingsResponse)
async def update_platform_settings(data: PlatformSettingsUpdate, db: DB, cache: Cache):
    """Update overrides. Only fields present in the body are changed."""
    service = PlatformSettingsService(db, cache)
    try:
        values = await service.update(data.model_dump(exclude_unset=True))
    except PlatformSettingsError as e:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": e.message, **e.details}
        )

    await db.commit()
    # A read between update and commit could have cached the old values
    await service.invalidate()
    return values
