"""
Challenge and event catalog backed by the document store.
"""

import logging
from typing import Any, List, Optional, Union

from .errors import NotFound
from .models import Challenge, Event, Identity, Scope, UserRecord
from .store import ArrayUnion, DocumentStore, Transaction

logger = logging.getLogger(__name__)

CHALLENGES = "challenges"
EVENTS = "events"
USERS = "users"

Reader = Union[DocumentStore, Transaction]


class ChallengeCatalog:
    """Reads challenges, events and player records; writes admin changes."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def get_challenge(
        self,
        challenge_id: str,
        txn: Optional[Transaction] = None,
    ) -> Challenge:
        """
        Load a challenge with its answer key and point schedule.

        @param challenge_id: Challenge identifier
        @param txn: Read inside this transaction when given
        @return: The validated challenge
        @raise NotFound: If no such challenge exists
        """
        reader: Reader = txn or self.store
        snapshot = await reader.get(CHALLENGES, challenge_id)
        if snapshot is None:
            raise NotFound("Challenge", challenge_id)
        return Challenge.from_document(snapshot.id, snapshot.data)

    async def list_challenges(
        self,
        event_id: Optional[str] = None,
        active_only: bool = False,
    ) -> List[Challenge]:
        filters: List[Any] = []
        if event_id is not None:
            filters.append(("event_id", "==", event_id))

        challenges = [
            Challenge.from_document(snap.id, snap.data)
            for snap in await self.store.query(CHALLENGES, filters)
        ]
        if active_only:
            challenges = [c for c in challenges if c.active]
        return challenges

    async def challenges_for_scope(self, scope: Scope) -> List[Challenge]:
        """
        Challenges whose solves count within a scope.

        @param scope: Global scope selects every active challenge; an event
            scope selects the challenges tied to that event
        @return: Challenges in catalog order
        """
        if scope.is_global:
            return await self.list_challenges(active_only=True)
        return await self.list_challenges(event_id=scope.event_id)

    async def get_event(
        self,
        event_id: str,
        txn: Optional[Transaction] = None,
    ) -> Event:
        reader: Reader = txn or self.store
        snapshot = await reader.get(EVENTS, event_id)
        if snapshot is None:
            raise NotFound("Event", event_id)
        return Event.from_document(snapshot.id, snapshot.data)

    async def list_events(self) -> List[Event]:
        return [
            Event.from_document(snap.id, snap.data)
            for snap in await self.store.query(EVENTS)
        ]

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        snapshot = await self.store.get(USERS, user_id)
        if snapshot is None:
            return None
        return UserRecord.from_document(snapshot.id, snapshot.data)

    async def list_users(self) -> List[UserRecord]:
        return [
            UserRecord.from_document(snap.id, snap.data)
            for snap in await self.store.query(USERS)
        ]

    async def ensure_user(
        self,
        identity: Identity,
        txn: Optional[Transaction] = None,
    ) -> None:
        """Create the player record on first contact; keep the name current."""
        if txn is None:
            async with self.store.transaction() as own_txn:
                await self.ensure_user(identity, own_txn)
            return

        existing = await txn.get(USERS, identity.user_id)
        if existing is None:
            await txn.set(
                USERS,
                identity.user_id,
                {
                    "username": identity.display_name,
                    "total_points": 0,
                    "challenges_solved": [],
                },
            )
        elif identity.username and existing.get("username") != identity.username:
            await txn.update(USERS, identity.user_id, {"username": identity.username})

    # Administration

    async def add_challenge(self, challenge: Challenge) -> str:
        if challenge.event_id is not None:
            await self.get_event(challenge.event_id)
        await self.store.set(CHALLENGES, challenge.id, challenge.to_document())
        logger.info("Saved challenge %s (%s)", challenge.id, challenge.scope.value)
        return challenge.id

    async def set_active(
        self,
        challenge_id: str,
        active: bool,
    ) -> None:
        await self.store.update(CHALLENGES, challenge_id, {"active": active})

    async def add_event(self, event: Event) -> str:
        await self.store.set(EVENTS, event.id, event.to_document())
        logger.info("Saved event %s (%s)", event.id, event.status.value)
        return event.id

    async def add_participant(
        self,
        event_id: str,
        identity: Identity,
    ) -> None:
        """Register a user for an event (idempotent)."""
        async with self.store.transaction() as txn:
            await self.get_event(event_id, txn)
            await self.ensure_user(identity, txn)
            await txn.update(EVENTS, event_id, {"participants": ArrayUnion(identity.user_id)})
        logger.info("Registered %s for event %s", identity.user_id, event_id)
