"""Tests for the submission ledger and attribution resolver."""

from datetime import datetime, timedelta, timezone

import pytest

from flagboard.models import Challenge, Question, Scope, Submission

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_submission(**overrides) -> Submission:
    fields = dict(
        challenge_id="c1",
        user_id="u1",
        submitted_value="FLAG{x}",
        is_correct=True,
        points_awarded=100,
        submitted_at=T0,
    )
    fields.update(overrides)
    return Submission(**fields)


class TestSubmissionLedger:
    @pytest.mark.asyncio
    async def test_append_assigns_ids(self, ledger):
        first = await ledger.append(make_submission())
        second = await ledger.append(make_submission())

        assert first != second
        assert await ledger.count() == 2

    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, ledger):
        for minutes in (0, 10, 5):
            await ledger.append(
                make_submission(submitted_at=T0 + timedelta(minutes=minutes))
            )

        history = await ledger.history("u1", "c1")

        assert [s.submitted_at for s in history] == [
            T0 + timedelta(minutes=10),
            T0 + timedelta(minutes=5),
            T0,
        ]

    @pytest.mark.asyncio
    async def test_scope_filter(self, ledger):
        await ledger.append(make_submission())
        await ledger.append(make_submission(event_id="e1"))
        await ledger.append(make_submission(event_id="e2"))

        assert len(await ledger.query(scope=Scope.GLOBAL)) == 1
        assert len(await ledger.query(scope=Scope.event("e1"))) == 1
        assert len(await ledger.query()) == 3

    @pytest.mark.asyncio
    async def test_conjunctive_query(self, ledger):
        await ledger.append(make_submission())
        await ledger.append(make_submission(is_correct=False, points_awarded=0))
        await ledger.append(make_submission(user_id="u2"))

        results = await ledger.query(challenge_id="c1", user_id="u1", is_correct=True)

        assert len(results) == 1
        assert results[0].points_awarded == 100


class TestAttributionResolver:
    @pytest.mark.asyncio
    async def test_no_history_means_no_credit(self, resolver):
        assert not await resolver.has_credit("u1", "c1", Scope.GLOBAL)

    @pytest.mark.asyncio
    async def test_zero_point_correct_submission_is_not_credit(self, ledger, resolver):
        await ledger.append(make_submission(points_awarded=0))

        assert not await resolver.has_credit("u1", "c1", Scope.GLOBAL)

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, ledger, resolver):
        await ledger.append(make_submission())

        assert await resolver.has_credit("u1", "c1", Scope.GLOBAL)
        assert not await resolver.has_credit("u1", "c1", Scope.event("e1"))

        await ledger.append(make_submission(event_id="e1"))

        assert await resolver.has_credit("u1", "c1", Scope.event("e1"))

    @pytest.mark.asyncio
    async def test_any_scope_credit(self, ledger, resolver):
        await ledger.append(make_submission(event_id="e1"))

        assert await resolver.has_any_credit("u1", "c1")
        assert not await resolver.has_any_credit("u2", "c1")

    @pytest.mark.asyncio
    async def test_question_credit_and_progress(self, ledger, resolver):
        challenge = Challenge(
            id="m1",
            questions=(
                Question(id="q1", flag="FLAG{one}", points=50),
                Question(id="q2", flag="FLAG{two}", points=75),
            ),
        )
        await ledger.append(
            make_submission(challenge_id="m1", question_id="q2", points_awarded=75)
        )

        assert await resolver.has_credit("u1", "m1", Scope.GLOBAL, "q2")
        assert not await resolver.has_credit("u1", "m1", Scope.GLOBAL, "q1")

        progress = await resolver.question_progress("u1", challenge, Scope.GLOBAL)

        assert progress.solved == 1
        assert progress.total == 2
        assert progress.solved_question_ids == ("q2",)
        assert not progress.complete
