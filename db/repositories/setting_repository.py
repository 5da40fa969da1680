"""
Repository for key/value application settings.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from db.models.app_setting import AppSetting


class SettingRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_value(self, key: str) -> dict[str, Any] | None:
        setting = self._session.get(AppSetting, key)
        return dict(setting.value) if setting is not None else None

    def put_value(self, key: str, value: dict[str, Any]) -> AppSetting:
        setting = self._session.get(AppSetting, key)
        if setting is None:
            setting = AppSetting(key=key, value=value)
            self._session.add(setting)
        else:
            setting.value = value
        self._session.flush()
        return setting
