"""Tests for the challenge catalog and seed loading."""

import json

import pytest

from flagboard.errors import InvalidChallenge, NotFound
from flagboard.models import Challenge, Identity, Scope
from flagboard.seed import load_seed


class TestChallengeCatalog:
    @pytest.mark.asyncio
    async def test_get_challenge(self, seeded):
        challenge = await seeded.get_challenge("m1")

        assert challenge.title == "Forensics trio"
        assert [q.id for q in challenge.questions] == ["q1", "q2"]

    @pytest.mark.asyncio
    async def test_missing_challenge(self, seeded):
        with pytest.raises(NotFound) as excinfo:
            await seeded.get_challenge("missing")

        assert excinfo.value.status == 404

    @pytest.mark.asyncio
    async def test_scope_selection(self, seeded):
        global_ids = {c.id for c in await seeded.challenges_for_scope(Scope.GLOBAL)}
        event_ids = {c.id for c in await seeded.challenges_for_scope(Scope.event("e1"))}

        assert global_ids == {"c1", "c2", "m1", "ec1", "ec2"}
        assert event_ids == {"ec1", "ec2"}

    @pytest.mark.asyncio
    async def test_challenge_for_unknown_event_rejected(self, catalog):
        with pytest.raises(NotFound):
            await catalog.add_challenge(
                Challenge(id="x", points=10, flag="FLAG{x}", scope="live", event_id="nope")
            )

    @pytest.mark.asyncio
    async def test_set_active(self, seeded):
        await seeded.set_active("c1", False)

        assert not (await seeded.get_challenge("c1")).active

    @pytest.mark.asyncio
    async def test_add_participant_is_idempotent(self, seeded):
        carol = Identity(user_id="u3", username="carol")

        await seeded.add_participant("e2", carol)
        await seeded.add_participant("e2", carol)

        event = await seeded.get_event("e2")
        assert event.participants == ["u3"]

    @pytest.mark.asyncio
    async def test_ensure_user_keeps_points_and_updates_name(self, seeded, store):
        await store.update("users", "u1", {"total_points": 40})

        await seeded.ensure_user(Identity(user_id="u1", username="alice2"))

        user = await seeded.get_user("u1")
        assert user.username == "alice2"
        assert user.total_points == 40


class TestSeed:
    SEED = {
        "events": [
            {"id": "e1", "title": "Spring CTF", "status": "live", "registered_users": ["u1"]}
        ],
        "users": [{"id": "u1", "username": "alice"}],
        "challenges": [
            {"id": "c1", "title": "Warmup", "points": 100, "flag": "FLAG{x}"},
            {
                "id": "ec1",
                "points": 50,
                "flag": "FLAG{e}",
                "scope": "live",
                "event_id": "e1",
            },
        ],
    }

    @pytest.mark.asyncio
    async def test_load_from_dict(self, catalog):
        counts = await load_seed(catalog, self.SEED)

        assert counts == {"events": 1, "users": 1, "challenges": 2}
        event = await catalog.get_event("e1")
        assert event.participants == ["u1"]

    @pytest.mark.asyncio
    async def test_legacy_challenge_defaults(self, catalog):
        await load_seed(catalog, self.SEED)

        challenge = await catalog.get_challenge("c1")

        assert challenge.active
        assert challenge.scope.value == "practice"

    @pytest.mark.asyncio
    async def test_load_from_file(self, catalog, tmp_path):
        path = tmp_path / "seed.json"
        path.write_text(json.dumps(self.SEED), encoding="utf-8")

        await load_seed(catalog, str(path))

        assert (await catalog.get_user("u1")).username == "alice"

    @pytest.mark.asyncio
    async def test_invalid_challenge(self, catalog):
        with pytest.raises(InvalidChallenge):
            await load_seed(catalog, {"challenges": [{"id": "bad", "points": 10}]})
