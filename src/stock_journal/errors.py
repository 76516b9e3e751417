from __future__ import annotations


class JournalError(Exception):
    """Base exception for journal operations."""


class AuthenticationError(JournalError):
    """Raised when an operation runs without a user context."""


class NotFoundError(JournalError):
    """Raised when a single-row lookup has no match."""


class NoCapitalDataError(NotFoundError):
    def __init__(self, user_id: str, day) -> None:
        self.user_id = user_id
        self.day = day
        super().__init__(f"No capital data for {day}")


class ValidationError(JournalError, ValueError):
    """Raised when a trade action or request is rejected."""


class MarketDataError(JournalError, RuntimeError):
    """Raised when a market data endpoint fails or returns an error payload."""
