"""
Attribution rules: who already holds credit for what, in which scope.

Credit is derived from the ledger: a prior submission for the same user,
challenge and scope (and question, for multi-question challenges) that is
correct and carried points. A correct submission that awarded nothing is an
audit record, not credit.
"""

from typing import Optional

from .ledger import SubmissionLedger
from .models import Challenge, QuestionProgress, Scope
from .store import Transaction


class AttributionResolver:
    """Answers credit questions from the submission ledger."""

    def __init__(self, ledger: SubmissionLedger) -> None:
        self.ledger = ledger

    async def has_credit(
        self,
        user_id: str,
        challenge_id: str,
        scope: Scope,
        question_id: Optional[str] = None,
        txn: Optional[Transaction] = None,
    ) -> bool:
        """
        Check whether points were already granted.

        @param user_id: User to check
        @param challenge_id: Challenge to check
        @param scope: Global or event scope; the two are tracked separately
        @param question_id: Sub-question, for multi-question challenges
        @param txn: Read inside this transaction when given
        @return: True if a credit-bearing submission exists
        """
        records = await self.ledger.query(
            challenge_id=challenge_id,
            user_id=user_id,
            scope=scope,
            is_correct=True,
            question_id=question_id,
            txn=txn,
        )
        return any(record.is_credit_bearing for record in records)

    async def has_any_credit(
        self,
        user_id: str,
        challenge_id: str,
        txn: Optional[Transaction] = None,
    ) -> bool:
        """Credit held in any scope at all."""
        records = await self.ledger.query(
            challenge_id=challenge_id,
            user_id=user_id,
            is_correct=True,
            txn=txn,
        )
        return any(record.is_credit_bearing for record in records)

    async def question_progress(
        self,
        user_id: str,
        challenge: Challenge,
        scope: Scope,
        txn: Optional[Transaction] = None,
    ) -> QuestionProgress:
        """
        Per-question credit for a multi-question challenge.

        @param user_id: User to check
        @param challenge: Challenge whose questions are counted
        @param scope: Scope in which credit is counted
        @param txn: Read inside this transaction when given
        @return: Solved and total question counts, in catalog order
        """
        records = await self.ledger.query(
            challenge_id=challenge.id,
            user_id=user_id,
            scope=scope,
            is_correct=True,
            txn=txn,
        )
        credited = {
            record.question_id
            for record in records
            if record.is_credit_bearing and record.question_id is not None
        }
        solved = tuple(q.id for q in challenge.questions if q.id in credited)
        return QuestionProgress(
            solved=len(solved),
            total=len(challenge.questions),
            solved_question_ids=solved,
        )
