"""Shared pytest fixtures for the flagboard test suite.

Every test gets its own SQLite file under pytest's tmp_path, so tests never
share ledger state.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio

from flagboard.attribution import AttributionResolver
from flagboard.catalog import ChallengeCatalog
from flagboard.config import FlagboardConfig
from flagboard.leaderboard import LeaderboardAggregator
from flagboard.ledger import SubmissionLedger
from flagboard.models import Challenge, Event, Identity, Question
from flagboard.scoring import ScoringEngine
from flagboard.store import DocumentStore

ALICE = Identity(user_id="u1", username="alice")
BOB = Identity(user_id="u2", username="bob")
CAROL = Identity(user_id="u3", username="carol")


@pytest.fixture
def config() -> FlagboardConfig:
    return FlagboardConfig(config_path=None)


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[DocumentStore, None]:
    document_store = DocumentStore(str(tmp_path / "flagboard.db"))
    await document_store.init_db()
    yield document_store


@pytest.fixture
def catalog(store) -> ChallengeCatalog:
    return ChallengeCatalog(store)


@pytest.fixture
def ledger(store) -> SubmissionLedger:
    return SubmissionLedger(store)


@pytest.fixture
def resolver(ledger) -> AttributionResolver:
    return AttributionResolver(ledger)


@pytest.fixture
def engine(store, catalog, ledger, resolver, config) -> ScoringEngine:
    return ScoringEngine(store, catalog, ledger, resolver, config)


@pytest.fixture
def leaderboard(store, catalog, ledger, config) -> LeaderboardAggregator:
    return LeaderboardAggregator(store, catalog, ledger, config)


@pytest_asyncio.fixture
async def seeded(catalog) -> ChallengeCatalog:
    """Catalog with practice, multi-question, inactive and event challenges.

    - c1: practice, 100 points, flag FLAG{x}
    - c2: practice, 200 points, flag FLAG{y}
    - m1: practice, questions q1 (50, FLAG{one}) and q2 (75, FLAG{two})
    - off: inactive practice challenge
    - e1: live event with participants u1 and u2
    - ec1: e1 challenge, 100 points, flag FLAG{event}
    - ec2: e1 challenge, 300 points, flag FLAG{event2}
    """
    await catalog.add_event(
        Event(id="e1", title="Spring CTF", status="live", participants=["u1", "u2"])
    )
    await catalog.add_event(Event(id="e2", title="Autumn CTF", status="upcoming"))

    await catalog.add_challenge(
        Challenge(id="c1", title="Warmup", points=100, flag="FLAG{x}")
    )
    await catalog.add_challenge(
        Challenge(id="c2", title="Caesar", points=200, flag="FLAG{y}")
    )
    await catalog.add_challenge(
        Challenge(
            id="m1",
            title="Forensics trio",
            questions=(
                Question(id="q1", flag="FLAG{one}", points=50),
                Question(id="q2", flag="FLAG{two}", points=75),
            ),
        )
    )
    await catalog.add_challenge(
        Challenge(id="off", title="Retired", points=10, flag="FLAG{off}", active=False)
    )
    await catalog.add_challenge(
        Challenge(
            id="ec1",
            title="Event opener",
            points=100,
            flag="FLAG{event}",
            scope="live",
            event_id="e1",
        )
    )
    await catalog.add_challenge(
        Challenge(
            id="ec2",
            title="Event closer",
            points=300,
            flag="FLAG{event2}",
            scope="live",
            event_id="e1",
        )
    )

    for identity in (ALICE, BOB, CAROL):
        await catalog.ensure_user(identity)

    return catalog
