from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.scoring.engine import ScoringEngine
from app.services.scoring.keyword_rules import KeywordRuleTable, load_rules
from app.services.scoring.repositories import InMemoryProspectingRepository

RULES_PATH = Path(__file__).resolve().parents[1] / "configs" / "keyword_rules.v1.yaml"


@pytest.fixture
def client():
    """API client without lifespan startup; engines are injected per test."""
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def rules_table() -> KeywordRuleTable:
    return load_rules(RULES_PATH)


@pytest.fixture
def repository() -> InMemoryProspectingRepository:
    return InMemoryProspectingRepository()


@pytest.fixture
def engine(rules_table, repository) -> ScoringEngine:
    """Engine over an empty in-memory repository with the default promotion threshold."""
    return ScoringEngine(rules_table, repository, auto_promote_threshold=70, min_text_length=20)
