import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ADMIN_TOKEN", "test")
os.environ.setdefault("STORE_BACKEND", "json")
os.environ["SPORT_API_KEY"] = ""


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def store(tmp_path, clock):
    from app.data.store import JsonFileStore

    return JsonFileStore(tmp_path / "store.json", clock=clock)


@pytest.fixture(autouse=True)
def _no_api_key(monkeypatch):
    from app.core.config import settings

    monkeypatch.setattr(settings, "sport_api_key", "")
    monkeypatch.setattr(settings, "prune_all_on_empty_fetch", False)
