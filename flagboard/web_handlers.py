"""
Web route handlers for the flagboard JSON API.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web

from .catalog import ChallengeCatalog
from .config import FlagboardConfig
from .errors import FlagboardError, InvalidRequest
from .leaderboard import LeaderboardAggregator
from .ledger import SubmissionLedger
from .models import Challenge, Identity, Scope, Submission
from .scoring import ScoringEngine

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_NAME_HEADER = "X-User-Name"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def error_response(
    message: str,
    status: int,
    retryable: bool = False,
) -> web.Response:
    return web.json_response(
        {"error": message, "retryable": retryable},
        status=status,
    )


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Handler,
) -> web.StreamResponse:
    """
    Translate core errors into JSON responses.

    @param request: Incoming request
    @param handler: Route handler
    @return: Handler response, or a JSON error with the error's status
    """
    try:
        return await handler(request)
    except FlagboardError as e:
        if e.status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, e)
        return error_response(str(e), e.status, e.retryable)


def challenge_summary(challenge: Challenge) -> Dict[str, Any]:
    """Public view of a challenge; answer keys never leave the server."""
    return {
        "id": challenge.id,
        "title": challenge.title,
        "category": challenge.category,
        "difficulty": challenge.difficulty,
        "points": challenge.points,
        "total_points": challenge.total_points,
        "scope": challenge.scope.value,
        "event_id": challenge.event_id,
        "active": challenge.active,
        "solves": len(challenge.solved_by),
        "questions": [
            {"id": q.id, "index": index, "points": q.points}
            for index, q in enumerate(challenge.questions)
        ],
    }


def submission_summary(submission: Submission) -> Dict[str, Any]:
    return {
        "id": submission.id,
        "challenge_id": submission.challenge_id,
        "flag": submission.submitted_value,
        "is_correct": submission.is_correct,
        "points_awarded": submission.points_awarded,
        "event_id": submission.event_id,
        "question_id": submission.question_id,
        "question_index": submission.question_index,
        "submitted_at": submission.submitted_at.isoformat(),
    }


class WebHandlers:
    """Handles web routes and responses."""

    def __init__(
        self,
        catalog: ChallengeCatalog,
        ledger: SubmissionLedger,
        engine: ScoringEngine,
        leaderboard: LeaderboardAggregator,
        config: FlagboardConfig,
    ) -> None:
        self.catalog = catalog
        self.ledger = ledger
        self.engine = engine
        self.leaderboard = leaderboard
        self.config = config

    def register_routes(self, app: web.Application) -> None:
        app.router.add_get("/api", self.web_api_info)
        app.router.add_get("/api/challenges", self.web_api_challenges)
        app.router.add_get("/api/challenges/{challenge_id}", self.web_api_challenge)
        app.router.add_post(
            "/api/challenges/{challenge_id}/submit", self.web_api_submit
        )
        app.router.add_get(
            "/api/challenges/{challenge_id}/submissions", self.web_api_submissions
        )
        app.router.add_get("/api/events", self.web_api_events)
        app.router.add_post(
            "/api/events/{event_id}/challenges/{challenge_id}/claim",
            self.web_api_claim,
        )
        app.router.add_get(
            "/api/events/{event_id}/leaderboard", self.web_api_event_leaderboard
        )
        app.router.add_get("/api/leaderboard", self.web_api_leaderboard)
        app.router.add_get("/api/users/{user_id}", self.web_api_user)

    def _identity(self, request: web.Request) -> Identity:
        """
        Read the caller identity set by the authenticating proxy.

        @param request: HTTP request carrying the identity headers
        @return: Identity of the caller
        @raise web.HTTPUnauthorized: If no user id header is present
        """
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            raise web.HTTPUnauthorized(
                text='{"error": "Missing user identity"}',
                content_type="application/json",
            )
        return Identity(
            user_id=user_id,
            username=request.headers.get(USER_NAME_HEADER, "").strip(),
        )

    def _limit(self, request: web.Request) -> Optional[int]:
        raw = request.query.get("limit")
        if raw is None:
            return None
        try:
            limit = int(raw)
        except ValueError:
            raise InvalidRequest("limit must be an integer") from None
        if limit <= 0:
            raise InvalidRequest("limit must be positive")
        return limit

    async def _json_body(self, request: web.Request) -> Dict[str, Any]:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequest("Request body must be JSON") from None
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object")
        return body

    async def web_api_info(
        self,
        _: web.Request,
    ) -> web.Response:
        return web.json_response(
            {
                "name": self.config.get("portal_name"),
                "event_claims": self.config.is_enabled("scoring", "allow_event_claims"),
                "registration_required": self.config.is_enabled(
                    "scoring", "require_registration"
                ),
            }
        )

    async def web_api_challenges(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint listing challenges.

        @param request: HTTP request with optional ``event`` query parameter
        @return: JSON response containing public challenge summaries
        """
        event_id = request.query.get("event")
        if event_id:
            await self.catalog.get_event(event_id)
            challenges = await self.catalog.list_challenges(event_id=event_id)
        else:
            challenges = await self.catalog.list_challenges(active_only=True)

        return web.json_response(
            {"challenges": [challenge_summary(c) for c in challenges]}
        )

    async def web_api_challenge(
        self,
        request: web.Request,
    ) -> web.Response:
        challenge = await self.catalog.get_challenge(request.match_info["challenge_id"])
        return web.json_response(challenge_summary(challenge))

    async def web_api_submit(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for flag submissions.

        @param request: HTTP request with JSON body ``{"flag": ..., "event_id": ...}``
        @return: JSON response describing the scoring result
        """
        identity = self._identity(request)
        body = await self._json_body(request)

        flag = body.get("flag")
        if not isinstance(flag, str) or not flag.strip():
            raise InvalidRequest("flag is required")

        event_id = body.get("event_id")
        if event_id is not None and not isinstance(event_id, str):
            raise InvalidRequest("event_id must be a string")

        result = await self.engine.submit(
            identity,
            request.match_info["challenge_id"],
            flag,
            Scope.from_event_id(event_id),
        )
        return web.json_response(result.to_dict())

    async def web_api_claim(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint counting an already solved challenge toward an event.

        @param request: HTTP request with event and challenge ids in the path
        @return: JSON response describing the awarded points
        """
        identity = self._identity(request)
        result = await self.engine.claim_for_event(
            identity,
            request.match_info["challenge_id"],
            request.match_info["event_id"],
        )
        return web.json_response(result.to_dict())

    async def web_api_submissions(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for the caller's submission history, newest first.

        @param request: HTTP request with optional ``event`` query parameter
        @return: JSON response listing the caller's attempts
        """
        identity = self._identity(request)
        challenge_id = request.match_info["challenge_id"]
        await self.catalog.get_challenge(challenge_id)

        event_id = request.query.get("event")
        scope = Scope.from_event_id(event_id) if "event" in request.query else None
        history = await self.ledger.history(identity.user_id, challenge_id, scope)

        return web.json_response(
            {
                "challenge_id": challenge_id,
                "submissions": [submission_summary(s) for s in history],
            }
        )

    async def web_api_events(
        self,
        _: web.Request,
    ) -> web.Response:
        events = await self.catalog.list_events()
        return web.json_response(
            {
                "events": [
                    {
                        "id": event.id,
                        "title": event.title,
                        "status": event.status.value,
                        "participants": len(event.participants),
                    }
                    for event in events
                ]
            }
        )

    async def web_api_leaderboard(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for the global (practice) leaderboard.

        @param request: HTTP request with optional ``limit`` query parameter
        @return: JSON response containing ranked entries
        """
        entries = await self.leaderboard.compute_leaderboard(
            Scope.GLOBAL, self._limit(request)
        )
        return web.json_response(
            {"scope": "global", "leaderboard": [e.to_dict() for e in entries]}
        )

    async def web_api_event_leaderboard(
        self,
        request: web.Request,
    ) -> web.Response:
        """
        API endpoint for an event leaderboard.

        @param request: HTTP request containing the event id and optional limit
        @return: JSON response containing ranked entries for the event
        """
        event_id = request.match_info["event_id"]
        entries = await self.leaderboard.compute_leaderboard(
            Scope.event(event_id), self._limit(request)
        )
        return web.json_response(
            {"scope": f"event:{event_id}", "leaderboard": [e.to_dict() for e in entries]}
        )

    async def web_api_user(
        self,
        request: web.Request,
    ) -> web.Response:
        user_id = request.match_info["user_id"]
        user = await self.catalog.get_user(user_id)
        if user is None:
            return error_response(f"User '{user_id}' not found", 404)

        return web.json_response(
            {
                "id": user.id,
                "username": user.username,
                "total_points": user.total_points,
                "challenges_solved": user.challenges_solved,
            }
        )
