"""
Domain models shared by the catalog, ledger, scoring and leaderboard layers.

Every model converts to and from the plain dictionaries kept in the
document store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Set, Tuple

from .errors import InvalidChallenge, InvalidEvent


def utcnow() -> datetime:
    """Return the current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored ISO timestamp.

    @param value: ISO-8601 string, datetime or None
    @return: Timezone-aware datetime, or None when value is empty
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def normalize_flag(value: Optional[str]) -> str:
    """Flags compare after trimming leading and trailing whitespace only."""
    return (value or "").strip()


class ChallengeScope(str, Enum):
    PRACTICE = "practice"
    LIVE = "live"
    PAST_EVENT = "past_event"
    UPCOMING = "upcoming"


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    PAST = "past"


@dataclass(frozen=True)
class Scope:
    """
    Context under which credit is tracked: global (practice) or one event.

    Use ``Scope.GLOBAL`` or ``Scope.event(event_id)``.
    """

    event_id: Optional[str] = None

    GLOBAL: ClassVar["Scope"]

    @classmethod
    def event(cls, event_id: str) -> "Scope":
        if not event_id:
            raise ValueError("event scope requires an event id")
        return cls(event_id=event_id)

    @classmethod
    def from_event_id(cls, event_id: Optional[str]) -> "Scope":
        return cls.event(event_id) if event_id else cls.GLOBAL

    @property
    def is_global(self) -> bool:
        return self.event_id is None

    def __str__(self) -> str:
        return "global" if self.is_global else f"event:{self.event_id}"


Scope.GLOBAL = Scope()


@dataclass(frozen=True)
class Identity:
    """An already-authenticated caller."""

    user_id: str
    username: str = ""

    @property
    def display_name(self) -> str:
        return self.username or f"user_{self.user_id[:8]}"


@dataclass(frozen=True)
class Question:
    """One sub-question of a multi-question challenge."""

    id: str
    flag: str
    points: int

    def to_document(self) -> Dict[str, Any]:
        return {"id": self.id, "flag": self.flag, "points": self.points}

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Question":
        return cls(
            id=str(data["id"]),
            flag=data.get("flag") or "",
            points=int(data.get("points") or 0),
        )


@dataclass
class Challenge:
    """
    A challenge with either a single flag or an ordered list of questions.

    Construction validates the answer key so that a flag can never match
    more than one question.
    """

    id: str
    title: str = ""
    points: int = 0
    flag: Optional[str] = None
    questions: Tuple[Question, ...] = ()
    scope: ChallengeScope = ChallengeScope.PRACTICE
    event_id: Optional[str] = None
    active: bool = True
    category: str = ""
    difficulty: str = ""
    solved_by: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.questions = tuple(self.questions)
        try:
            self.scope = ChallengeScope(self.scope)
        except ValueError:
            raise InvalidChallenge(
                f"Challenge '{self.id}' has unknown scope '{self.scope}'"
            ) from None
        self._validate()

    def _validate(self) -> None:
        has_flag = self.flag is not None and normalize_flag(self.flag) != ""

        if has_flag and self.questions:
            raise InvalidChallenge(
                f"Challenge '{self.id}' defines both a flag and questions"
            )
        if not has_flag and not self.questions:
            raise InvalidChallenge(
                f"Challenge '{self.id}' defines neither a flag nor questions"
            )
        if self.points < 0:
            raise InvalidChallenge(f"Challenge '{self.id}' has negative points")

        seen_ids: Set[str] = set()
        seen_flags: Set[str] = set()

        for question in self.questions:
            secret = normalize_flag(question.flag)

            if not secret:
                raise InvalidChallenge(
                    f"Question '{question.id}' of challenge '{self.id}' has no flag"
                )
            if question.points < 0:
                raise InvalidChallenge(
                    f"Question '{question.id}' of challenge '{self.id}' has negative points"
                )
            if question.id in seen_ids:
                raise InvalidChallenge(
                    f"Challenge '{self.id}' repeats question id '{question.id}'"
                )
            if secret in seen_flags:
                raise InvalidChallenge(
                    f"Challenge '{self.id}' repeats a question flag ('{question.id}')"
                )
            seen_ids.add(question.id)
            seen_flags.add(secret)

    @property
    def is_multi_question(self) -> bool:
        return bool(self.questions)

    @property
    def total_points(self) -> int:
        if self.questions:
            return sum(q.points for q in self.questions)
        return self.points

    def match(self, submitted_value: str) -> Optional[Question]:
        """
        Find the question answered by a submitted value.

        @param submitted_value: Raw value typed by the player
        @return: First question in catalog order whose flag matches, or None
        """
        candidate = normalize_flag(submitted_value)
        for question in self.questions:
            if normalize_flag(question.flag) == candidate:
                return question
        return None

    def check_flag(self, submitted_value: str) -> bool:
        if self.questions:
            return self.match(submitted_value) is not None
        return normalize_flag(self.flag) == normalize_flag(submitted_value)

    def question_index(self, question_id: str) -> Optional[int]:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        return None

    def points_for(self, question_id: Optional[str] = None) -> int:
        """Current point value of the challenge or one of its questions."""
        if question_id is None:
            return self.points
        for question in self.questions:
            if question.id == question_id:
                return question.points
        return 0

    def to_document(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "points": self.points,
            "flag": self.flag,
            "questions": [q.to_document() for q in self.questions],
            "scope": self.scope.value,
            "event_id": self.event_id,
            "active": self.active,
            "category": self.category,
            "difficulty": self.difficulty,
            "solved_by": sorted(self.solved_by),
        }

    @classmethod
    def from_document(
        cls,
        challenge_id: str,
        data: Dict[str, Any],
    ) -> "Challenge":
        """
        Build a challenge from a stored document.

        Older documents may lack ``active`` or ``scope``; they are treated as
        active practice challenges.
        """
        return cls(
            id=challenge_id,
            title=data.get("title") or "",
            points=int(data.get("points") or 0),
            flag=data.get("flag"),
            questions=tuple(
                Question.from_document(q) for q in data.get("questions") or []
            ),
            scope=data.get("scope") or ChallengeScope.PRACTICE.value,
            event_id=data.get("event_id"),
            active=data.get("active", True) is not False,
            category=data.get("category") or "",
            difficulty=data.get("difficulty") or "",
            solved_by=set(data.get("solved_by") or []),
        )


@dataclass
class Event:
    id: str
    title: str = ""
    status: EventStatus = EventStatus.UPCOMING
    participants: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        try:
            self.status = EventStatus(self.status)
        except ValueError:
            raise InvalidEvent(
                f"Event '{self.id}' has unknown status '{self.status}'"
            ) from None

    def to_document(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "status": self.status.value,
            "participants": list(self.participants),
        }

    @classmethod
    def from_document(
        cls,
        event_id: str,
        data: Dict[str, Any],
    ) -> "Event":
        # Older events kept registrations under "registered_users"
        participants = data.get("participants") or data.get("registered_users") or []
        return cls(
            id=event_id,
            title=data.get("title") or "",
            status=data.get("status") or EventStatus.UPCOMING.value,
            participants=list(participants),
        )


@dataclass(frozen=True)
class Submission:
    """One immutable ledger record."""

    challenge_id: str
    user_id: str
    submitted_value: str
    is_correct: bool
    points_awarded: Optional[int] = 0
    username: str = ""
    event_id: Optional[str] = None
    question_id: Optional[str] = None
    question_index: Optional[int] = None
    submitted_at: datetime = field(default_factory=utcnow)
    id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.points_awarded is not None:
            if self.points_awarded < 0:
                raise ValueError("points_awarded must not be negative")
            if self.points_awarded > 0 and not self.is_correct:
                raise ValueError("points can only be awarded to a correct submission")

    @property
    def scope(self) -> Scope:
        return Scope.from_event_id(self.event_id)

    @property
    def is_credit_bearing(self) -> bool:
        return self.is_correct and (self.points_awarded or 0) > 0

    def to_document(self) -> Dict[str, Any]:
        return {
            "challenge_id": self.challenge_id,
            "user_id": self.user_id,
            "username": self.username,
            "submitted_value": self.submitted_value,
            "is_correct": self.is_correct,
            "points_awarded": self.points_awarded,
            "event_id": self.event_id,
            "question_id": self.question_id,
            "question_index": self.question_index,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_document(
        cls,
        submission_id: str,
        data: Dict[str, Any],
    ) -> "Submission":
        points = data.get("points_awarded")
        return cls(
            id=submission_id,
            challenge_id=data["challenge_id"],
            user_id=data["user_id"],
            username=data.get("username") or "",
            submitted_value=data.get("submitted_value") or "",
            is_correct=bool(data.get("is_correct")),
            points_awarded=int(points) if points is not None else None,
            event_id=data.get("event_id"),
            question_id=data.get("question_id"),
            question_index=data.get("question_index"),
            submitted_at=parse_timestamp(data.get("submitted_at")) or utcnow(),
        )


@dataclass(frozen=True)
class QuestionProgress:
    solved: int
    total: int
    solved_question_ids: Tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.solved >= self.total


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of a flag submission, returned for user feedback."""

    is_correct: bool
    points_awarded: int
    already_credited: bool
    submission_id: Optional[str] = None
    question_id: Optional[str] = None
    question_progress: Optional[QuestionProgress] = None

    @property
    def message(self) -> str:
        if not self.is_correct:
            return "Incorrect flag. Please try again."
        if self.already_credited:
            return "Flag is correct! (Already solved - no additional points)"
        return f"Flag is correct! +{self.points_awarded} points awarded!"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "is_correct": self.is_correct,
            "points_awarded": self.points_awarded,
            "already_credited": self.already_credited,
            "submission_id": self.submission_id,
            "question_id": self.question_id,
            "message": self.message,
        }
        if self.question_progress is not None:
            payload["question_progress"] = {
                "solved": self.question_progress.solved,
                "total": self.question_progress.total,
                "complete": self.question_progress.complete,
            }
        return payload


@dataclass
class UserRecord:
    id: str
    username: str = ""
    total_points: int = 0
    challenges_solved: List[str] = field(default_factory=list)

    @classmethod
    def from_document(
        cls,
        user_id: str,
        data: Dict[str, Any],
    ) -> "UserRecord":
        return cls(
            id=user_id,
            username=data.get("username") or f"user_{user_id[:8]}",
            total_points=int(data.get("total_points") or 0),
            challenges_solved=list(data.get("challenges_solved") or []),
        )


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    username: str
    score: int
    solved_count: int
    rank: int
    last_solve_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "user_id": self.user_id,
            "username": self.username,
            "score": self.score,
            "solved_count": self.solved_count,
            "last_solve_at": self.last_solve_at.isoformat()
            if self.last_solve_at
            else None,
        }
