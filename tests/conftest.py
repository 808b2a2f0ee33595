import pytest

from helpers.fakes import FakeClock
from recordeval.catalog import CatalogStore
from recordeval.ids import SequentialIdGenerator
from recordeval.pipeline import EvaluationPipeline
from recordeval.session_store import InMemorySessionStore


@pytest.fixture(scope="session")
def catalog():
    """Load the packaged catalog once for the entire test session."""
    c = CatalogStore()
    c.load()
    return c


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    """Fresh in-memory store on the fake clock with predictable ids."""
    return InMemorySessionStore(clock=clock, id_generator=SequentialIdGenerator())


@pytest.fixture
def make_pipeline(store, catalog, clock):
    """Factory: build a pipeline around a given evaluator."""

    def _make(evaluator, **kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("id_generator", SequentialIdGenerator())
        return EvaluationPipeline(store, catalog, evaluator, **kwargs)

    return _make
