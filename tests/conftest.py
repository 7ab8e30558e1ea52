import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def catalog():
    from skill_catalog import SkillCatalog

    return SkillCatalog()


@pytest.fixture
def curriculum(catalog):
    from curriculum import CurriculumGraph

    return CurriculumGraph.default(catalog=catalog)


@pytest.fixture
def user_model(catalog):
    from user_model import UserModel

    return UserModel.create_default("learner-1", catalog)


@pytest.fixture
def sqlite_store(tmp_path, catalog):
    from store import SQLiteStore

    store = SQLiteStore(str(tmp_path / "tutor.db"), catalog=catalog)
    yield store
    store.close()


@pytest.fixture
def engine(catalog, curriculum):
    from env_validation import EngineSettings
    from tutor_engine import TutoringEngine

    instance = TutoringEngine.in_memory(EngineSettings(), catalog=catalog, curriculum=curriculum)
    yield instance
    instance.close()
