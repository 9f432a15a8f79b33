"""Shared pytest fixtures for Lyon transit ingestion tests."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from lyon_transit.database import Database
from lyon_transit.models import ProviderConfig
from lyon_transit.schema import metadata


@pytest.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    """A SQLite-backed store with every table created."""
    database = Database.from_url(f"sqlite+aiosqlite:///{tmp_path / 'transit.db'}")
    async with database.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield database
    await database.close()


@pytest.fixture
def provider() -> ProviderConfig:
    """Default endpoint catalog with fast retries."""
    return ProviderConfig.model_validate(
        {
            "defaults": {
                "timeout_seconds": 5,
                "retry": {"max_attempts": 2, "backoff_base": 0.1, "backoff_max": 1.0},
            }
        }
    )


@pytest.fixture
def line_icons_csv(tmp_path: Path) -> Path:
    """A pictogram CSV with a header, a blank line and an SVG name to rewrite."""
    path = tmp_path / "Liste_pictogrammes_lignes.csv"
    path.write_text(
        "code_ligne;picto_mode;picto_ligne\n"
        "C3;bus.png;C3.svg\n"
        "\n"
        "A;metro.png;A.png\n",
        encoding="utf-8",
    )
    return path
