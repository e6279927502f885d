import pytest
from httpx import ASGITransport, AsyncClient

from src.emr.config import Settings
from src.emr.context import AppContext
from src.emr.infra.db.bootstrap import in_memory_repositories
from src.emr.main import create_app
from src.emr.services.ai.completion import DemoCompletionBackend
from src.emr.services.fax.service import DemoFaxCarrier
from src.emr.services.transcription.backends import DemoASRBackend


@pytest.fixture
def make_ctx():
    """Factory for isolated in-memory contexts with demo backends.

    Keyword arguments override Settings fields. Every context built through
    the factory is disposed at teardown.
    """

    created = []

    def _make(repositories=None, completion_backend=None, fax_carrier=None, **overrides) -> AppContext:
        overrides.setdefault("enable_api_auth", False)
        overrides.setdefault("use_sql_repos", False)
        context = AppContext(
            Settings(**overrides),
            repositories=repositories or in_memory_repositories(),
            asr_backend=DemoASRBackend(),
            completion_backend=completion_backend or DemoCompletionBackend(),
            fax_carrier=fax_carrier or DemoFaxCarrier(),
        )
        context.initialize()
        created.append(context)
        return context

    yield _make
    for context in created:
        context.dispose()


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()


@pytest.fixture
async def client(ctx):
    async with AsyncClient(transport=ASGITransport(app=create_app(ctx)), base_url="http://test") as ac:
        yield ac
