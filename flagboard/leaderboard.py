"""
Leaderboard aggregation.

Rankings are recomputed in full from the submission ledger on every call;
there is no incremental state to drift out of sync.
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .catalog import USERS, ChallengeCatalog
from .config import FlagboardConfig
from .ledger import SUBMISSIONS, SubmissionLedger, scope_filters
from .models import Challenge, LeaderboardEntry, Scope, Submission
from .store import Change, DocumentStore

logger = logging.getLogger(__name__)

LeaderboardCallback = Callable[[List[LeaderboardEntry]], Union[None, Awaitable[None]]]

_NEVER = datetime.max.replace(tzinfo=timezone.utc)


@dataclass
class _Tally:
    user_id: str
    username: str
    order: int
    solved: Dict[Tuple[str, Optional[str]], Tuple[int, datetime]] = field(default_factory=dict)

    @property
    def score(self) -> int:
        return sum(points for points, _ in self.solved.values())

    @property
    def last_solve_at(self) -> Optional[datetime]:
        times = [solved_at for points, solved_at in self.solved.values() if points > 0]
        return max(times) if times else None


@dataclass(frozen=True)
class RecalculationSummary:
    total_users: int
    correct_submissions: int
    total_points: int
    top_users: List[LeaderboardEntry]


def _record_points(
    record: Submission,
    challenge: Challenge,
) -> int:
    # Records written before points were stored fall back to the current value
    if record.points_awarded is None:
        return challenge.points_for(record.question_id)
    return record.points_awarded


def _rank(
    tallies: List[_Tally],
    tie_break: str,
) -> List[LeaderboardEntry]:
    if tie_break == "earliest_solve":
        key = lambda t: (-t.score, t.last_solve_at or _NEVER, t.order)  # noqa: E731
    else:
        key = lambda t: (-t.score, t.order)  # noqa: E731

    return [
        LeaderboardEntry(
            user_id=tally.user_id,
            username=tally.username,
            score=tally.score,
            solved_count=len(tally.solved),
            rank=index + 1,
            last_solve_at=tally.last_solve_at,
        )
        for index, tally in enumerate(sorted(tallies, key=key))
    ]


class LeaderboardAggregator:
    """Builds ranked views of global and per-event scores."""

    def __init__(
        self,
        store: DocumentStore,
        catalog: ChallengeCatalog,
        ledger: SubmissionLedger,
        config: Optional[FlagboardConfig] = None,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.ledger = ledger
        self.config = config or FlagboardConfig(config_path=None)

    @property
    def tie_break(self) -> str:
        return self.config.get("leaderboard", "tie_break") or "earliest_solve"

    async def compute_leaderboard(
        self,
        scope: Scope = Scope.GLOBAL,
        limit: Optional[int] = None,
    ) -> List[LeaderboardEntry]:
        """
        Rank participants of a scope by points earned in that scope.

        Each (challenge, question) target counts once per participant no
        matter how many correct submissions it has.

        @param scope: Global ranks every user over active challenges; an
            event scope ranks the event's participants over its challenges
        @param limit: Maximum number of entries; capped by leaderboard.max_entries
        @return: Entries sorted by descending score with 1-based ranks
        @raise NotFound: If the event does not exist
        """
        users = {user.id: user for user in await self.catalog.list_users()}

        if scope.is_global:
            participants = list(users)
        else:
            event = await self.catalog.get_event(scope.event_id)
            participants = list(dict.fromkeys(event.participants))

        challenges = {c.id: c for c in await self.catalog.challenges_for_scope(scope)}

        tallies: Dict[str, _Tally] = {}
        for order, user_id in enumerate(participants):
            user = users.get(user_id)
            tallies[user_id] = _Tally(
                user_id=user_id,
                username=user.username if user else f"user_{user_id[:8]}",
                order=order,
            )

        for record in await self.ledger.query(scope=scope, is_correct=True):
            tally = tallies.get(record.user_id)
            challenge = challenges.get(record.challenge_id)
            if tally is None or challenge is None:
                continue

            points = _record_points(record, challenge)
            target = (record.challenge_id, record.question_id)
            previous = tally.solved.get(target)
            if previous is not None and previous[0] >= points:
                continue
            tally.solved[target] = (points, record.submitted_at)

        entries = _rank(list(tallies.values()), self.tie_break)

        max_entries = self.config.get("leaderboard", "max_entries")
        cap = min(limit, max_entries) if limit and max_entries else (limit or max_entries)
        if cap:
            entries = entries[:cap]

        logger.debug("Computed %s leaderboard with %d entries", scope, len(entries))
        return entries

    async def recalculate_user_totals(self) -> RecalculationSummary:
        """
        Rebuild every user's running total from the ledger.

        Totals become the sum of points awarded across all scopes, and the
        solved list the challenges with at least one credited submission.
        Records without stored points are valued the same way the
        leaderboard values them, so totals never fall below its scores.

        @return: Summary with the top five users after recalculation
        """
        submissions = await self.ledger.query(is_correct=True)
        challenges = {c.id: c for c in await self.catalog.list_challenges()}
        totals: Dict[str, Dict[str, Any]] = {}

        for record in submissions:
            entry = totals.setdefault(
                record.user_id,
                {"username": record.username, "targets": {}, "solved": [], "last": None},
            )
            challenge = challenges.get(record.challenge_id)
            if challenge is not None:
                points = _record_points(record, challenge)
            else:
                points = record.points_awarded or 0
            if points <= 0:
                continue

            # One award per (scope, challenge, question) target
            target = (record.event_id, record.challenge_id, record.question_id)
            entry["targets"][target] = max(points, entry["targets"].get(target, 0))
            if record.challenge_id not in entry["solved"]:
                entry["solved"].append(record.challenge_id)
            if entry["last"] is None or record.submitted_at > entry["last"]:
                entry["last"] = record.submitted_at

        for entry in totals.values():
            entry["points"] = sum(entry.pop("targets").values())

        async with self.store.transaction() as txn:
            for snapshot in await txn.query(USERS):
                entry = totals.setdefault(
                    snapshot.id,
                    {"username": None, "points": 0, "solved": [], "last": None},
                )
                if snapshot.get("username"):
                    entry["username"] = snapshot.get("username")

            for user_id, entry in totals.items():
                fields: Dict[str, Any] = {
                    "total_points": entry["points"],
                    "challenges_solved": entry["solved"],
                }
                if entry["username"]:
                    fields["username"] = entry["username"]
                await txn.set(USERS, user_id, fields, merge=True)

        ranked = sorted(
            enumerate(totals.items()),
            key=lambda item: (-item[1][1]["points"], item[1][1]["last"] or _NEVER, item[0]),
        )
        top_users = [
            LeaderboardEntry(
                user_id=user_id,
                username=entry["username"] or f"user_{user_id[:8]}",
                score=entry["points"],
                solved_count=len(entry["solved"]),
                rank=index + 1,
                last_solve_at=entry["last"],
            )
            for index, (_, (user_id, entry)) in enumerate(ranked[:5])
        ]

        summary = RecalculationSummary(
            total_users=len(totals),
            correct_submissions=len(submissions),
            total_points=sum(entry["points"] for entry in totals.values()),
            top_users=top_users,
        )
        logger.info(
            "Recalculated totals for %d users from %d correct submissions",
            summary.total_users,
            summary.correct_submissions,
        )
        return summary

    def watch(
        self,
        scope: Scope,
        callback: LeaderboardCallback,
    ) -> Callable[[], None]:
        """
        Recompute a leaderboard whenever a correct submission lands in a scope.

        @param scope: Scope to follow
        @param callback: Receives the fresh entries; may be a coroutine function
        @return: Function that stops watching
        """

        async def on_change(change: Change) -> None:
            if change.type != "added":
                return
            entries = await self.compute_leaderboard(scope)
            outcome = callback(entries)
            if inspect.isawaitable(outcome):
                await outcome

        filters = scope_filters(scope) + [("is_correct", "==", True)]
        return self.store.subscribe(SUBMISSIONS, on_change, filters)
