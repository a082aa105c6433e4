"""Pytest configuration and fixtures for backend tests."""

from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from sqlalchemy import Engine, create_engine, select
from sqlalchemy.orm import Session

from app.core.database import get_session_factory, init_db
from app.models import (
    Analysis,
    AnalysisParameter,
    AnalysisReferenceRange,
    LegacyParameter,
    LegacyReferenceRange,
    Study,
)


class CatalogSeeder:
    """Inserts catalog rows through the ORM for test setup."""

    def __init__(self, session: Session):
        self.session = session

    def _add(self, obj):
        self.session.add(obj)
        self.session.flush()
        return obj

    def analysis(self, name: str, code: str | None = None, **kwargs) -> Analysis:
        return self._add(Analysis(name=name, code=code, **kwargs))

    def parameter(self, analysis: Analysis, name: str, **kwargs) -> AnalysisParameter:
        return self._add(AnalysisParameter(analysis_id=analysis.id, name=name, **kwargs))

    def range(
        self,
        parameter: AnalysisParameter,
        sex: str | None = "Ambos",
        age_min: float | None = 0,
        age_max: float | None = 120,
        **kwargs,
    ) -> AnalysisReferenceRange:
        return self._add(
            AnalysisReferenceRange(
                parameter_id=parameter.id,
                sex=sex,
                age_min=age_min,
                age_max=age_max,
                age_min_unit="años",
                **kwargs,
            )
        )

    def study(self, name: str, **kwargs) -> Study:
        return self._add(Study(name=name, **kwargs))

    def legacy_parameter(self, study: Study, name: str, **kwargs) -> LegacyParameter:
        return self._add(LegacyParameter(study_id=study.id, name=name, **kwargs))

    def legacy_range(
        self,
        parameter: LegacyParameter,
        sex: str | None = "Ambos",
        age_min: float | None = 0,
        age_max: float | None = 120,
        **kwargs,
    ) -> LegacyReferenceRange:
        return self._add(
            LegacyReferenceRange(
                parameter_id=parameter.id,
                sex=sex,
                age_min=age_min,
                age_max=age_max,
                **kwargs,
            )
        )

    def commit(self) -> None:
        self.session.commit()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite database file."""
    return f"sqlite:///{tmp_path / 'lab.db'}"


@pytest.fixture
def engine(db_url: str) -> Generator[Engine, None, None]:
    """SQLite engine with all tables created from the ORM metadata."""
    test_engine = create_engine(db_url, future=True)
    init_db(test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Database session bound to the test engine."""
    session = get_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def seed(db_session: Session) -> CatalogSeeder:
    """Catalog seeding helper."""
    return CatalogSeeder(db_session)


@pytest.fixture
def ranges_of(db_session: Session) -> Callable[[AnalysisParameter], list[AnalysisReferenceRange]]:
    """Reload the current range rows of a parameter, ordered by sex and age."""

    def fetch(parameter: AnalysisParameter) -> list[AnalysisReferenceRange]:
        db_session.expire_all()
        return list(
            db_session.scalars(
                select(AnalysisReferenceRange)
                .where(AnalysisReferenceRange.parameter_id == parameter.id)
                .order_by(
                    AnalysisReferenceRange.sex,
                    AnalysisReferenceRange.age_min,
                    AnalysisReferenceRange.age_max,
                )
            )
        )

    return fetch
