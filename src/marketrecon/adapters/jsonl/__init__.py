"""Public interface for the JSON Lines candidate adapter."""

from __future__ import annotations

from .fetcher import JsonlCandidateSource, fetch_candidates
from .schema import CandidatePayload, FieldObservation
from .translator import malformed_candidate, parse_candidate

__all__ = [
    "CandidatePayload",
    "FieldObservation",
    "JsonlCandidateSource",
    "fetch_candidates",
    "malformed_candidate",
    "parse_candidate",
]
