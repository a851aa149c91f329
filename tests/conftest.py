import pytest

from config_utils import Region, Settings, SyncSettings
from store import Store

from payloads import BASE_URL


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        db_url=f"sqlite:///{tmp_path / 'test.sqlite'}",
        base_url=BASE_URL,
        sync_secret="s3cret",
        sync=SyncSettings(
            request_delay_seconds=0,
            backfill_pause_seconds=0,
            max_concurrency=2,
        ),
        regions=[Region("4482", "Falcón"), Region("4491", "Lara"), Region("4503", "Miranda")],
    )


@pytest.fixture
def store(settings) -> Store:
    return Store(settings.db_url)
