from __future__ import annotations
"""Versioned single-row system settings.

Readers always go to the store (no process-wide cache); writers compare-and-set on `version`.
"""
from typing import Optional
from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from fieldops import get_db
from fieldops.errors import ConcurrentUpdateError
from fieldops.models.setting import SystemSetting
from fieldops.services.audit import add_audit


def _ensure_row(session) -> SystemSetting:
    row = session.get(SystemSetting, SystemSetting.SINGLETON_ID, populate_existing=True)
    if row is None:
        row = SystemSetting(
            id=SystemSetting.SINGLETON_ID,
            auto_assign_enabled=bool(current_app.config.get('AUTO_ASSIGN_DEFAULT', False)),
            version=1,
        )
        session.add(row)
        try:
            session.commit()
        except IntegrityError:
            # another worker created it first
            session.rollback()
            row = session.get(SystemSetting, SystemSetting.SINGLETON_ID, populate_existing=True)
    return row


def read_settings(session=None) -> SystemSetting:
    """Fresh read of the settings record."""
    session = session or get_db()
    return _ensure_row(session)


def auto_assign_enabled(session=None) -> bool:
    return bool(read_settings(session).auto_assign_enabled)


def set_auto_assign(admin_id: int, enabled: bool, expected_version: Optional[int] = None) -> SystemSetting:
    session = get_db()
    current = _ensure_row(session)
    seen = current.version if expected_version is None else int(expected_version)
    result = session.execute(
        update(SystemSetting)
        .where(SystemSetting.id == SystemSetting.SINGLETON_ID, SystemSetting.version == seen)
        .values(auto_assign_enabled=bool(enabled), version=seen + 1, updated_by=admin_id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        session.rollback()
        raise ConcurrentUpdateError(f'Settings changed since version {seen}; reload and retry')
    add_audit('SETTINGS.AUTO_ASSIGN', 'SystemSetting', SystemSetting.SINGLETON_ID,
              {'enabled': bool(enabled), 'version': seen + 1}, actor_id=admin_id)
    session.commit()
    current_app.logger.info('Auto-assign %s by admin %s (settings v%s)', 'enabled' if enabled else 'disabled', admin_id, seen + 1)
    return read_settings(session)


def settings_json(row: SystemSetting) -> dict:
    return {
        'auto_assign_enabled': row.auto_assign_enabled,
        'version': row.version,
        'updated_by': row.updated_by,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }
