# =============================================
# File: farm2table/utils/errors.py
# Purpose: Error taxonomy shared by providers, repositories and services
# =============================================
from __future__ import annotations


class Farm2TableError(Exception):
    """Base class for every error raised by the core."""


class ProviderUnavailable(Farm2TableError):
    """The AI backend is not configured (missing SDK, key or model)."""


class ProviderError(Farm2TableError):
    """The AI backend call failed or returned unusable content."""


class DimensionMismatch(Farm2TableError):
    """Two vectors of different length were compared or stored."""


class NotFound(Farm2TableError):
    """A repository lookup found nothing."""


class ValidationError(Farm2TableError):
    """A required request field is missing or invalid."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        self.message = message or f"{field} is required"
        super().__init__(self.message)
