"""
Flagboard - scoring and attribution core for a CTF competition portal.

This package provides:
- Flag validation with per-scope (practice vs. event) credit tracking
- Multi-question challenges with per-question points
- Append-only submission ledger on an SQLite document store
- Global and per-event leaderboards recomputed from the ledger
- JSON web API and TCP socket interface for submissions
"""

from .attribution import AttributionResolver
from .catalog import ChallengeCatalog
from .config import FlagboardConfig
from .leaderboard import LeaderboardAggregator
from .ledger import SubmissionLedger
from .models import Challenge, Event, Identity, Question, Scope, Submission
from .portal import PortalSystem
from .scoring import ScoringEngine
from .store import DocumentStore

__version__ = "1.0.0"
__author__ = "Flagboard Contributors"

__all__ = [
    "AttributionResolver",
    "Challenge",
    "ChallengeCatalog",
    "DocumentStore",
    "Event",
    "FlagboardConfig",
    "Identity",
    "LeaderboardAggregator",
    "PortalSystem",
    "Question",
    "Scope",
    "ScoringEngine",
    "Submission",
    "SubmissionLedger",
]
