"""Root test configuration for courier tests."""

from __future__ import annotations

from pathlib import Path
from collections.abc import Iterator

import pytest
from dotenv import load_dotenv

from courier.core.codec.serde import clear_codec_caches

# Load test environment before any test module imports
load_dotenv(dotenv_path=Path(__file__).parent.parent / '.env.test')


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line('markers', 'unit: Unit tests (no database)')
    config.addinivalue_line(
        'markers', 'integration: Integration tests (requires database)'
    )


@pytest.fixture(autouse=True)
def _fresh_decoder_cache() -> Iterator[None]:
    yield
    clear_codec_caches()
