"""
Load events, users and challenges from a JSON seed file.

Seed format::

    {
      "events": [{"id": "e1", "title": "...", "status": "live", "participants": ["u1"]}],
      "users": [{"id": "u1", "username": "alice"}],
      "challenges": [{"id": "c1", "points": 100, "flag": "FLAG{x}", "scope": "practice"}]
    }

Challenge documents missing ``active`` or ``scope`` are loaded as active
practice challenges.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Union

from .catalog import ChallengeCatalog
from .models import Challenge, Event, Identity

logger = logging.getLogger(__name__)


async def load_seed(
    catalog: ChallengeCatalog,
    source: Union[str, Path, Dict[str, Any]],
) -> Dict[str, int]:
    """
    Write seed data into the catalog.

    @param catalog: Catalog to populate
    @param source: Path to a JSON file, or the already parsed document
    @return: Number of events, users and challenges written
    @raise InvalidChallenge: If a challenge violates the catalog rules
    """
    if isinstance(source, dict):
        seed = source
    else:
        with open(source, "r", encoding="utf-8") as f:
            seed = json.load(f)

    counts = {"events": 0, "users": 0, "challenges": 0}

    for raw in seed.get("events", []):
        data = dict(raw)
        await catalog.add_event(Event.from_document(str(data.pop("id")), data))
        counts["events"] += 1

    for raw in seed.get("users", []):
        await catalog.ensure_user(Identity(user_id=str(raw["id"]), username=raw.get("username", "")))
        counts["users"] += 1

    for raw in seed.get("challenges", []):
        data = dict(raw)
        await catalog.add_challenge(Challenge.from_document(str(data.pop("id")), data))
        counts["challenges"] += 1

    logger.info(
        "Seeded %d events, %d users, %d challenges",
        counts["events"],
        counts["users"],
        counts["challenges"],
    )
    return counts
