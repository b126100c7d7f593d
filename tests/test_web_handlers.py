"""Tests for the JSON API served by PortalSystem.create_app."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from aiohttp import test_utils

from flagboard.config import FlagboardConfig
from flagboard.portal import PortalSystem
from flagboard.seed import load_seed

SEED = {
    "events": [
        {"id": "e1", "title": "Spring CTF", "status": "live", "participants": ["u1", "u2"]}
    ],
    "users": [{"id": "u1", "username": "alice"}, {"id": "u2", "username": "bob"}],
    "challenges": [
        {"id": "c1", "title": "Warmup", "points": 100, "flag": "FLAG{x}"},
        {"id": "off", "title": "Retired", "points": 10, "flag": "FLAG{off}", "active": False},
        {
            "id": "m1",
            "title": "Forensics trio",
            "questions": [
                {"id": "q1", "flag": "FLAG{one}", "points": 50},
                {"id": "q2", "flag": "FLAG{two}", "points": 75},
            ],
        },
        {
            "id": "ec1",
            "title": "Event opener",
            "points": 100,
            "flag": "FLAG{event}",
            "scope": "live",
            "event_id": "e1",
        },
    ],
}

ALICE_HEADERS = {"X-User-Id": "u1", "X-User-Name": "alice"}
BOB_HEADERS = {"X-User-Id": "u2", "X-User-Name": "bob"}


@pytest_asyncio.fixture
async def portal(tmp_path) -> PortalSystem:
    system = PortalSystem(
        config=FlagboardConfig(config_path=None),
        db_path=str(tmp_path / "web.db"),
    )
    await system.init_db()
    await load_seed(system.catalog, SEED)
    return system


@pytest_asyncio.fixture
async def client(portal) -> AsyncGenerator[test_utils.TestClient, None]:
    async with test_utils.TestClient(test_utils.TestServer(portal.create_app())) as test_client:
        yield test_client


class TestChallengeRoutes:
    @pytest.mark.asyncio
    async def test_list_hides_flags_and_inactive(self, client):
        resp = await client.get("/api/challenges")

        assert resp.status == 200
        body = await resp.json()
        ids = {c["id"] for c in body["challenges"]}
        assert ids == {"c1", "m1", "ec1"}
        assert "FLAG{" not in await resp.text()

    @pytest.mark.asyncio
    async def test_list_for_event(self, client):
        resp = await client.get("/api/challenges", params={"event": "e1"})

        body = await resp.json()
        assert [c["id"] for c in body["challenges"]] == ["ec1"]

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, client):
        resp = await client.get("/api/challenges/nope")

        assert resp.status == 404
        assert "nope" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_question_layout(self, client):
        resp = await client.get("/api/challenges/m1")

        body = await resp.json()
        assert body["total_points"] == 125
        assert [q["id"] for q in body["questions"]] == ["q1", "q2"]


class TestSubmitRoute:
    @pytest.mark.asyncio
    async def test_wrong_then_right_then_duplicate(self, client):
        url = "/api/challenges/c1/submit"

        wrong = await (await client.post(url, json={"flag": "nope"}, headers=ALICE_HEADERS)).json()
        right = await (await client.post(url, json={"flag": "FLAG{x}"}, headers=ALICE_HEADERS)).json()
        again = await (await client.post(url, json={"flag": "FLAG{x}"}, headers=ALICE_HEADERS)).json()

        assert (wrong["is_correct"], wrong["points_awarded"]) == (False, 0)
        assert (right["is_correct"], right["points_awarded"]) == (True, 100)
        assert again["already_credited"]
        assert again["points_awarded"] == 0

        user = await (await client.get("/api/users/u1")).json()
        assert user["total_points"] == 100

    @pytest.mark.asyncio
    async def test_missing_identity(self, client):
        resp = await client.post("/api/challenges/c1/submit", json={"flag": "FLAG{x}"})

        assert resp.status == 401

    @pytest.mark.asyncio
    async def test_missing_flag(self, client):
        resp = await client.post("/api/challenges/c1/submit", json={}, headers=ALICE_HEADERS)

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_body_must_be_json(self, client):
        resp = await client.post(
            "/api/challenges/c1/submit", data="flag=FLAG{x}", headers=ALICE_HEADERS
        )

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_inactive_challenge(self, client):
        resp = await client.post(
            "/api/challenges/off/submit", json={"flag": "FLAG{off}"}, headers=ALICE_HEADERS
        )

        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_event_submission(self, client):
        resp = await client.post(
            "/api/challenges/ec1/submit",
            json={"flag": "FLAG{event}", "event_id": "e1"},
            headers=ALICE_HEADERS,
        )

        assert (await resp.json())["points_awarded"] == 100

    @pytest.mark.asyncio
    async def test_registration_required(self, portal, client):
        portal.config.config["scoring"]["require_registration"] = True
        carol = {"X-User-Id": "u3", "X-User-Name": "carol"}

        resp = await client.post(
            "/api/challenges/ec1/submit",
            json={"flag": "FLAG{event}", "event_id": "e1"},
            headers=carol,
        )

        assert resp.status == 403

    @pytest.mark.asyncio
    async def test_multi_question_progress(self, client):
        resp = await client.post(
            "/api/challenges/m1/submit", json={"flag": "FLAG{two}"}, headers=ALICE_HEADERS
        )

        body = await resp.json()
        assert body["question_id"] == "q2"
        assert body["points_awarded"] == 75


class TestClaimRoute:
    @pytest.mark.asyncio
    async def test_claim_twice(self, client):
        url = "/api/events/e1/challenges/ec1/claim"
        await client.post(
            "/api/challenges/ec1/submit", json={"flag": "FLAG{event}"}, headers=BOB_HEADERS
        )

        first = await client.post(url, headers=BOB_HEADERS)
        second = await client.post(url, headers=BOB_HEADERS)

        assert first.status == 200
        assert (await first.json())["points_awarded"] == 100
        assert second.status == 409

    @pytest.mark.asyncio
    async def test_claim_requires_prior_solve(self, client):
        resp = await client.post("/api/events/e1/challenges/ec1/claim", headers=BOB_HEADERS)

        assert resp.status == 409
        user = await (await client.get("/api/users/u2")).json()
        assert user["total_points"] == 0

    @pytest.mark.asyncio
    async def test_claims_disabled(self, portal, client):
        portal.config.config["scoring"]["allow_event_claims"] = False

        resp = await client.post("/api/events/e1/challenges/ec1/claim", headers=BOB_HEADERS)

        assert resp.status == 409


class TestHistoryAndLeaderboards:
    @pytest.mark.asyncio
    async def test_submission_history(self, client):
        url = "/api/challenges/c1/submit"
        await client.post(url, json={"flag": "nope"}, headers=ALICE_HEADERS)
        await client.post(url, json={"flag": "FLAG{x}"}, headers=ALICE_HEADERS)
        await client.post(url, json={"flag": "FLAG{x}"}, headers=BOB_HEADERS)

        resp = await client.get("/api/challenges/c1/submissions", headers=ALICE_HEADERS)

        history = (await resp.json())["submissions"]
        assert len(history) == 2
        assert {s["flag"] for s in history} == {"nope", "FLAG{x}"}

    @pytest.mark.asyncio
    async def test_event_leaderboard(self, client):
        await client.post(
            "/api/challenges/ec1/submit",
            json={"flag": "FLAG{event}", "event_id": "e1"},
            headers=ALICE_HEADERS,
        )
        await client.post(
            "/api/challenges/ec1/submit", json={"flag": "FLAG{event}"}, headers=BOB_HEADERS
        )

        resp = await client.get("/api/events/e1/leaderboard")

        body = await resp.json()
        assert body["scope"] == "event:e1"
        assert [(e["username"], e["score"]) for e in body["leaderboard"]] == [
            ("alice", 100),
            ("bob", 0),
        ]

    @pytest.mark.asyncio
    async def test_global_leaderboard_limit(self, client):
        resp = await client.get("/api/leaderboard", params={"limit": "1"})

        assert len((await resp.json())["leaderboard"]) == 1

    @pytest.mark.asyncio
    async def test_bad_limit(self, client):
        resp = await client.get("/api/leaderboard", params={"limit": "many"})

        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_unknown_event_leaderboard(self, client):
        resp = await client.get("/api/events/nope/leaderboard")

        assert resp.status == 404

    @pytest.mark.asyncio
    async def test_corrupt_event_status_is_a_json_error(self, portal, client):
        await portal.store.set("events", "e9", {"title": "Broken", "status": "archived"})

        resp = await client.get("/api/events")

        assert resp.status == 400
        assert "archived" in (await resp.json())["error"]
