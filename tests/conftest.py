import pytest

from webwatcher.config import Settings
from webwatcher.db import IncidentStore
from webwatcher.incidents import IncidentService
from webwatcher.learning import FlagWeightLearning

from fakes import FIXED_NOW


@pytest.fixture
def settings(tmp_path):
    return Settings(database_url=f"sqlite:///{tmp_path / 'webwatcher.db'}", feed_dir=str(tmp_path / "feeds"))


@pytest.fixture
def store(settings):
    return IncidentStore(settings.database_url)


@pytest.fixture
def service(store, settings):
    return IncidentService(store, FlagWeightLearning(store), settings, clock=lambda: FIXED_NOW)
