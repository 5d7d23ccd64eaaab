import pytest
import pytest_asyncio

from database import init_models, make_engine, make_session_factory
from store import Stores


class FakeGenerator:
    def __init__(self):
        self.requests = []
        self.response = {"summary": "Festival summary"}
        self.error = None

    async def generate(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'festival.db'}"


@pytest_asyncio.fixture
async def session_factory(database_url):
    engine = make_engine(database_url)
    await init_models(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def stores(session_factory):
    return Stores.from_session_factory(session_factory)


@pytest.fixture
def generator():
    return FakeGenerator()
