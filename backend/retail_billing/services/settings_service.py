# Overview: Store-wide settings (single row).

from __future__ import annotations

from ..extensions import db
from ..models import StoreSetting
from .activity_service import log_activity
from .concurrency import run_with_retry

SETTINGS_ROW_ID = 1


def ensure_settings() -> StoreSetting:
    """
    Return the settings row, creating it with defaults on first use.

    Safe to call repeatedly (idempotent). Flushes, does not commit.
    """
    settings = db.session.get(StoreSetting, SETTINGS_ROW_ID)
    if settings is None:
        settings = StoreSetting(id=SETTINGS_ROW_ID)
        db.session.add(settings)
        db.session.flush()
    return settings


def get_settings() -> dict:
    settings = db.session.get(StoreSetting, SETTINGS_ROW_ID)
    if settings is None:
        return StoreSetting(store_name="My Store", currency="USD", default_tax_rate_bps=0).to_dict()
    return settings.to_dict()


def update_settings(*, patch: dict, user_id: int | None = None) -> StoreSetting:
    def _op():
        settings = ensure_settings()
        for k, v in patch.items():
            setattr(settings, k, v)
        settings.updated_by_user_id = user_id
        log_activity(
            user_id=user_id,
            action="UPDATE_SETTINGS",
            entity_type="settings",
            entity_id=settings.id,
            details={"fields": sorted(patch)},
        )
        db.session.commit()
        return settings

    return run_with_retry(_op)
