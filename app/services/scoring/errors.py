"""Shared error classes for the scoring engine, repositories and pipelines."""

from __future__ import annotations


class ScoringEngineError(RuntimeError):
    """Base exception raised by the discovery scoring engine."""

    def __init__(self, message: str, code: str = "SCORING_ENGINE_ERROR") -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(ScoringEngineError):
    """Raised when a required collaborator or rule table is not configured."""

    def __init__(self, message: str, code: str = "CONFIG_MISSING_KEY") -> None:
        super().__init__(message, code=code)


class TransientProviderError(ScoringEngineError):
    """Raised when an upstream collaborator fails in a retryable way."""


class MalformedInputError(ScoringEngineError):
    """Raised when a candidate text cannot produce a discovery."""


class PersistenceError(ScoringEngineError):
    """Raised when the repository fails to save or retrieve records."""


class NotFoundError(ScoringEngineError):
    """Raised when a discovery, prospect or run does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="404_NOT_FOUND")


class InvalidTransitionError(ScoringEngineError):
    """Raised at the API boundary when a review transition is not allowed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="409_INVALID_TRANSITION")
