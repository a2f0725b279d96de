"""Settings API router for polling and timeout tunables.

Changes are stored immediately but take effect on the next server start,
when the Helper reads its Timings from the table.
"""

import logging
import sqlite3
from typing import Any, Dict

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from ...db.settings import DEFAULT_SETTINGS, get_all_settings, get_setting, set_setting

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["settings"])

# Every tunable is numeric; counts must be whole numbers
KNOWN_KEYS = {key for key, _, _ in DEFAULT_SETTINGS}
INTEGER_KEYS = {"startup_poll_attempts", "job_poll_attempts", "log_buffer_size"}


class SettingValue(BaseModel):
    """Request model for updating a setting value."""
    value: str = Field(..., description="Setting value")
    description: str | None = Field(None, description="Optional description")


class SettingsResponse(BaseModel):
    """Response model for settings."""
    settings: Dict[str, str] = Field(..., description="All settings as key-value pairs")


def validate_value(key: str, value: str) -> None:
    """Raise ValueError unless value is a positive number of the right kind."""
    if key in INTEGER_KEYS:
        number: float = int(value)
    else:
        number = float(value)
    if number <= 0:
        raise ValueError(f"'{key}' must be greater than zero")


def _not_found(key: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail={"code": "SETTING_NOT_FOUND", "message": f"Setting '{key}' not found"},
    )


@router.get("/settings", response_model=SettingsResponse)
async def get_settings() -> SettingsResponse:
    """
    Get all application settings.

    Returns:
        All settings as key-value pairs
    """
    try:
        return SettingsResponse(settings=get_all_settings())
    except sqlite3.Error as e:
        logger.error(f"Error getting settings: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={
                "code": "SETTINGS_ERROR",
                "message": f"Failed to get settings: {str(e)}"
            }
        )


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(update: SettingsResponse) -> SettingsResponse:
    """Update several settings at once; nothing is written if any value is invalid."""
    for key, value in update.settings.items():
        if key not in KNOWN_KEYS:
            raise _not_found(key)
        try:
            validate_value(key, value)
        except ValueError as e:
            raise HTTPException(
                status_code=400,
                detail={"code": "INVALID_SETTING", "message": f"Invalid value for '{key}': {e}"},
            )

    try:
        for key, value in update.settings.items():
            set_setting(key, value)
        settings = get_all_settings()
    except sqlite3.Error as e:
        logger.error(f"Error updating settings: {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={"code": "UPDATE_ERROR", "message": f"Failed to update settings: {str(e)}"},
        )

    logger.info(f"Updated settings: {', '.join(sorted(update.settings))}")
    return SettingsResponse(settings=settings)


@router.put("/settings/{key}")
async def update_setting(key: str, setting: SettingValue) -> Dict[str, Any]:
    """
    Update a setting value.

    Args:
        key: Setting key to update
        setting: New value and optional description

    Returns:
        Success message with updated value
    """
    if key not in KNOWN_KEYS:
        raise _not_found(key)

    try:
        validate_value(key, setting.value)
    except ValueError as e:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_SETTING", "message": f"Invalid value for '{key}': {e}"},
        )

    try:
        set_setting(key, setting.value, setting.description)
    except sqlite3.Error as e:
        logger.error(f"Error updating setting '{key}': {e}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail={
                "code": "UPDATE_ERROR",
                "message": f"Failed to update setting: {str(e)}"
            }
        )

    logger.info(f"Updated setting '{key}' to '{setting.value}'")
    return {
        "success": True,
        "key": key,
        "value": setting.value,
        "message": f"Setting '{key}' updated; restart the helper to apply it",
    }


@router.get("/settings/{key}")
async def get_setting_value(key: str) -> Dict[str, Any]:
    """Get a specific setting value."""
    value = get_setting(key)
    if value is None:
        raise _not_found(key)
    return {"key": key, "value": value}
