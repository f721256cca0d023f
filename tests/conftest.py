from pathlib import Path

import pytest

from preview_service.conversion.engine import EngineLoader
from preview_service.conversion.resources import ResourceManager

from .fakes import FakeEngine, ScriptedInitializer


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def loader(engine: FakeEngine) -> EngineLoader:
    return EngineLoader(ScriptedInitializer(engine))


@pytest.fixture
def resources(tmp_path: Path) -> ResourceManager:
    return ResourceManager(tmp_path)
