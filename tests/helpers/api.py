from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from app.main import app
from app.services.scoring.engine import ScoringEngine, get_scoring_engine


@contextmanager
def override_engine(engine: ScoringEngine) -> Iterator[None]:
    """Serve API requests from ``engine`` instead of the process-wide one."""
    app.dependency_overrides[get_scoring_engine] = lambda: engine
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_scoring_engine, None)
