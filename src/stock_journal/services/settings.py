from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Mapping

from stock_journal.errors import AuthenticationError, ValidationError
from stock_journal.models import UserContext, UserSettings
from stock_journal.storage.sqlite_store import JournalStore

logger = logging.getLogger(__name__)

_EDITABLE = {
    item.name for item in fields(UserSettings) if item.name not in {"user_id", "created_at", "updated_at"}
}
_NOT_NULL = {"starting_cash", "automated_trade_logging", "performance_alerts"}


def require_user(user: UserContext | None) -> UserContext:
    if user is None or not user.user_id:
        raise AuthenticationError("No authenticated user.")
    return user


class SettingsService:
    def __init__(self, store: JournalStore, default_starting_cash: float = 0.0) -> None:
        self._store = store
        self._default_starting_cash = default_starting_cash

    def get_settings(self, user: UserContext | None) -> UserSettings:
        """Return the user's settings, creating the default row on first access."""
        user = require_user(user)
        settings = self._store.get_settings(user.user_id)
        if settings is not None:
            return settings
        logger.info("Creating default settings for user %s", user.user_id)
        return self._store.upsert_settings(
            UserSettings(
                user_id=user.user_id,
                starting_cash=self._default_starting_cash,
                email=user.email,
            )
        )

    def update_settings(self, user: UserContext | None, changes: Mapping[str, Any]) -> UserSettings:
        unknown = set(changes) - _EDITABLE
        if unknown:
            raise ValidationError(f"Unknown settings fields: {', '.join(sorted(unknown))}")
        cleared = sorted(name for name in _NOT_NULL if name in changes and changes[name] is None)
        if cleared:
            raise ValidationError(f"Settings fields cannot be null: {', '.join(cleared)}")
        if "starting_cash" in changes and changes["starting_cash"] < 0:
            raise ValidationError("Starting cash cannot be negative.")
        current = self.get_settings(user)
        return self._store.upsert_settings(replace(current, **dict(changes)))

    def adjust_starting_cash(self, user: UserContext | None, delta: float) -> UserSettings:
        current = self.get_settings(user)
        return self._store.upsert_settings(replace(current, starting_cash=current.starting_cash + delta))
