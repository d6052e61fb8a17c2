"""Keyword rule and signal-match models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class KeywordCategory(str, Enum):
    """Why a phrase indicates buying intent."""

    SIGNAL = "signal"
    REGULATORY = "regulatory"
    COST = "cost"
    COMPETITOR = "competitor"


class CapabilityTag(str, Enum):
    """Product capability a matched phrase points at."""

    CAPTCHA_REPLACEMENT = "captcha_replacement"
    VOICE_CAPTCHA = "voice_captcha"
    AGE_VERIFICATION = "age_verification"


class KeywordRule(BaseModel):
    """Single weighted phrase in the keyword table."""

    model_config = ConfigDict(frozen=True)

    phrase: str = Field(..., min_length=1)
    category: KeywordCategory
    weight: int = Field(..., ge=1, le=5)
    tags: frozenset[CapabilityTag] = Field(default_factory=frozenset)

    @field_validator("phrase")
    @classmethod
    def _normalize_phrase(cls, value: str) -> str:
        cleaned = " ".join(value.split()).lower()
        if not cleaned:
            raise ValueError("phrase must not be blank")
        return cleaned


class SignalMatch(BaseModel):
    """Result of scanning one text blob against the keyword table."""

    matched_keywords: list[str] = Field(default_factory=list)
    tags: list[CapabilityTag] = Field(default_factory=list)
    categories: dict[KeywordCategory, int] = Field(default_factory=dict)
    total_weight: int = 0
    score: int = Field(default=0, ge=0, le=100)
    primary_category: KeywordCategory | None = None

    @computed_field  # type: ignore[misc]
    @property
    def has_signal(self) -> bool:
        return bool(self.matched_keywords)
