import sys, os
sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import datetime as dt

import pytest

from settings import CatalogConfig, Config, EngineConfig, RedisConfig


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start=None):
        self.now = start or dt.datetime(2024, 3, 1, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return Config(
        engine=EngineConfig(
            session_timeout_seconds=1800,
            state_db_path=str(tmp_path / "engine_state.duckdb"),
            autosave=True,
            default_limit=10,
        ),
        catalog=CatalogConfig(),
        redis=RedisConfig(),
        output_dir=str(tmp_path),
    )
