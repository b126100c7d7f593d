"""
Flag scoring.

``ScoringEngine.submit`` decides correctness, checks prior credit, records
the attempt and updates running totals. The credit check and every write
that depends on it happen inside one store transaction, so two concurrent
submissions for the same user, challenge and scope cannot both be credited.
"""

import logging
from typing import Optional

from .attribution import AttributionResolver
from .catalog import CHALLENGES, USERS, ChallengeCatalog
from .config import FlagboardConfig
from .errors import (
    AlreadyCredited,
    ClaimNotAllowed,
    InactiveChallenge,
    NotFound,
    NotRegistered,
    StorageUnavailable,
    SubmissionFailed,
)
from .ledger import SubmissionLedger
from .models import (
    Challenge,
    Identity,
    Question,
    QuestionProgress,
    Scope,
    Submission,
    SubmissionResult,
)
from .store import ArrayUnion, DocumentStore, Increment, Transaction

logger = logging.getLogger(__name__)


class ScoringEngine:
    """Validates submitted flags and awards points."""

    def __init__(
        self,
        store: DocumentStore,
        catalog: ChallengeCatalog,
        ledger: SubmissionLedger,
        resolver: AttributionResolver,
        config: Optional[FlagboardConfig] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.ledger = ledger
        self.resolver = resolver
        self.config = config or FlagboardConfig(config_path=None)

    async def submit(
        self,
        identity: Identity,
        challenge_id: str,
        submitted_value: str,
        scope: Scope = Scope.GLOBAL,
    ) -> SubmissionResult:
        """
        Score a flag submission.

        @param identity: Authenticated submitter
        @param challenge_id: Challenge being answered
        @param submitted_value: Flag as typed by the player
        @param scope: Global (practice) or the event the attempt counts for
        @return: Correctness, points awarded and whether credit already existed
        @raise NotFound: If the challenge or event does not exist, or the
            challenge does not belong to the event
        @raise InactiveChallenge: If the challenge is disabled
        @raise NotRegistered: If registration is required and missing
        @raise SubmissionFailed: If the store fails while recording
        """
        try:
            async with self.store.transaction() as txn:
                challenge = await self._load_answerable(identity, challenge_id, scope, txn)

                question: Optional[Question] = None
                if challenge.is_multi_question:
                    question = challenge.match(submitted_value)
                    is_correct = question is not None
                else:
                    is_correct = challenge.check_flag(submitted_value)

                question_id = question.id if question else None

                already_credited = False
                if is_correct:
                    already_credited = await self.resolver.has_credit(
                        identity.user_id, challenge.id, scope, question_id, txn
                    )

                points = 0
                if is_correct and not already_credited:
                    points = question.points if question else challenge.points

                submission = Submission(
                    challenge_id=challenge.id,
                    user_id=identity.user_id,
                    username=identity.display_name,
                    submitted_value=submitted_value,
                    is_correct=is_correct,
                    points_awarded=points,
                    event_id=scope.event_id,
                    question_id=question_id,
                    question_index=challenge.question_index(question_id)
                    if question_id
                    else None,
                )
                submission_id = await self.ledger.append(submission, txn)

                if is_correct:
                    await self._credit(identity, challenge, points, txn)

                progress: Optional[QuestionProgress] = None
                if challenge.is_multi_question:
                    progress = await self.resolver.question_progress(
                        identity.user_id, challenge, scope, txn
                    )
        except SubmissionFailed:
            raise
        except StorageUnavailable as e:
            raise SubmissionFailed(f"Submission could not be recorded: {e}", cause=e) from e

        if points > 0:
            logger.info(
                "%s solved %s (%s, %s): +%d points",
                identity.user_id,
                challenge_id,
                scope,
                question_id or "flag",
                points,
            )
        elif is_correct:
            logger.info(
                "%s re-submitted a solved flag for %s (%s)",
                identity.user_id,
                challenge_id,
                scope,
            )
        else:
            logger.debug("%s submitted a wrong flag for %s", identity.user_id, challenge_id)

        return SubmissionResult(
            is_correct=is_correct,
            points_awarded=points,
            already_credited=already_credited,
            submission_id=submission_id,
            question_id=question_id,
            question_progress=progress,
        )

    async def claim_for_event(
        self,
        identity: Identity,
        challenge_id: str,
        event_id: str,
    ) -> SubmissionResult:
        """
        Count an already known flag toward an event.

        The user must already have solved the challenge in some scope. The
        stored answer key is then replayed as an event submission; nothing
        proves the user solved it for the event.

        @param identity: Authenticated claimant
        @param challenge_id: Single-flag challenge belonging to the event
        @param event_id: Event to credit
        @return: Result with the challenge's points awarded
        @raise ClaimNotAllowed: If claims are disabled, the challenge has
            questions, or the user has not solved it in any scope
        @raise AlreadyCredited: If the user already solved it for this event
        """
        if not self.config.is_enabled("scoring", "allow_event_claims"):
            raise ClaimNotAllowed("Event claims are disabled")

        scope = Scope.event(event_id)

        try:
            async with self.store.transaction() as txn:
                challenge = await self._load_answerable(identity, challenge_id, scope, txn)

                if challenge.is_multi_question:
                    raise ClaimNotAllowed(
                        f"Challenge '{challenge_id}' has questions and must be solved directly"
                    )

                previous = await self.ledger.query(
                    challenge_id=challenge.id,
                    user_id=identity.user_id,
                    scope=scope,
                    is_correct=True,
                    txn=txn,
                )
                if previous:
                    raise AlreadyCredited(
                        f"Challenge '{challenge_id}' is already solved for event '{event_id}'"
                    )

                # solved_by covers zero-point and legacy solves that carry no credit
                solved = identity.user_id in challenge.solved_by
                if not solved:
                    solved = await self.resolver.has_any_credit(
                        identity.user_id, challenge.id, txn
                    )
                if not solved:
                    raise ClaimNotAllowed(
                        f"Challenge '{challenge_id}' must be solved before it can be claimed"
                    )

                points = challenge.points
                submission_id = await self.ledger.append(
                    Submission(
                        challenge_id=challenge.id,
                        user_id=identity.user_id,
                        username=identity.display_name,
                        submitted_value=challenge.flag or "",
                        is_correct=True,
                        points_awarded=points,
                        event_id=event_id,
                    ),
                    txn,
                )
                await self._credit(identity, challenge, points, txn)
        except SubmissionFailed:
            raise
        except StorageUnavailable as e:
            raise SubmissionFailed(f"Claim could not be recorded: {e}", cause=e) from e

        logger.warning(
            "%s claimed %s for event %s from the stored flag: +%d points",
            identity.user_id,
            challenge_id,
            event_id,
            points,
        )
        return SubmissionResult(
            is_correct=True,
            points_awarded=points,
            already_credited=False,
            submission_id=submission_id,
        )

    async def _load_answerable(
        self,
        identity: Identity,
        challenge_id: str,
        scope: Scope,
        txn: Transaction,
    ) -> Challenge:
        challenge = await self.catalog.get_challenge(challenge_id, txn)
        if not challenge.active:
            raise InactiveChallenge(challenge_id)

        if not scope.is_global:
            event = await self.catalog.get_event(scope.event_id, txn)
            if challenge.event_id != event.id:
                raise NotFound(f"Challenge in event '{event.id}'", challenge_id)
            if (
                self.config.is_enabled("scoring", "require_registration")
                and identity.user_id not in event.participants
            ):
                raise NotRegistered(identity.user_id, event.id)

        await self.catalog.ensure_user(identity, txn)
        return challenge

    async def _credit(
        self,
        identity: Identity,
        challenge: Challenge,
        points: int,
        txn: Transaction,
    ) -> None:
        if identity.user_id not in challenge.solved_by:
            await txn.update(CHALLENGES, challenge.id, {"solved_by": ArrayUnion(identity.user_id)})

        if points > 0:
            await txn.update(
                USERS,
                identity.user_id,
                {
                    "total_points": Increment(points),
                    "challenges_solved": ArrayUnion(challenge.id),
                },
            )

