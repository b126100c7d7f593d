"""
Append-only submission ledger.

Every flag attempt is recorded exactly once, correct or not. Records are
never updated or deleted; scoring corrections are new records.
"""

import logging
import sqlite3
from typing import Any, List, Optional, Union

from .errors import StorageUnavailable, SubmissionFailed
from .models import Scope, Submission
from .store import DocumentStore, Transaction

logger = logging.getLogger(__name__)

SUBMISSIONS = "submissions"


def scope_filters(scope: Optional[Scope]) -> List[Any]:
    """Filters selecting records of a scope; None matches every scope."""
    if scope is None:
        return []
    return [("event_id", "==", scope.event_id)]


class SubmissionLedger:
    """Append-only log of flag submissions."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def append(
        self,
        submission: Submission,
        txn: Optional[Transaction] = None,
    ) -> str:
        """
        Record a submission.

        @param submission: Record to store; its id is assigned here
        @param txn: Write inside this transaction when given
        @return: New submission id
        @raise SubmissionFailed: If the store rejects the write
        """
        writer: Union[DocumentStore, Transaction] = txn or self.store
        try:
            submission_id = await writer.add(SUBMISSIONS, submission.to_document())
        except (StorageUnavailable, sqlite3.Error) as e:
            raise SubmissionFailed(f"Could not record submission: {e}", cause=e) from e

        logger.debug(
            "Recorded submission %s: user=%s challenge=%s scope=%s correct=%s points=%s",
            submission_id,
            submission.user_id,
            submission.challenge_id,
            submission.scope,
            submission.is_correct,
            submission.points_awarded,
        )
        return submission_id

    async def query(
        self,
        challenge_id: Optional[str] = None,
        user_id: Optional[str] = None,
        scope: Optional[Scope] = None,
        is_correct: Optional[bool] = None,
        question_id: Optional[str] = None,
        newest_first: bool = False,
        txn: Optional[Transaction] = None,
    ) -> List[Submission]:
        """
        Query records matching every given criterion.

        @param challenge_id: Restrict to one challenge
        @param user_id: Restrict to one user
        @param scope: Restrict to one scope; None matches every scope
        @param is_correct: Restrict on correctness
        @param question_id: Restrict to one sub-question
        @param newest_first: Order by submitted_at descending
        @param txn: Read inside this transaction when given
        @return: Matching submissions, oldest first unless newest_first
        """
        filters: List[Any] = scope_filters(scope)
        if challenge_id is not None:
            filters.append(("challenge_id", "==", challenge_id))
        if user_id is not None:
            filters.append(("user_id", "==", user_id))
        if is_correct is not None:
            filters.append(("is_correct", "==", is_correct))
        if question_id is not None:
            filters.append(("question_id", "==", question_id))

        reader: Union[DocumentStore, Transaction] = txn or self.store
        snapshots = await reader.query(
            SUBMISSIONS,
            filters,
            order_by="submitted_at",
            descending=newest_first,
        )
        return [Submission.from_document(snap.id, snap.data) for snap in snapshots]

    async def history(
        self,
        user_id: str,
        challenge_id: str,
        scope: Optional[Scope] = None,
    ) -> List[Submission]:
        """A user's attempts at a challenge, newest first."""
        return await self.query(
            challenge_id=challenge_id,
            user_id=user_id,
            scope=scope,
            newest_first=True,
        )

    async def count(self) -> int:
        return len(await self.store.query(SUBMISSIONS))
