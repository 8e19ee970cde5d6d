"""Candidate source reading JSON Lines exports of the extraction subsystem."""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from marketrecon.domain.model import DEFAULT_SOURCE_STRATEGY

from .schema import CandidatePayload
from .translator import malformed_candidate, parse_candidate

if TYPE_CHECKING:
    from collections.abc import Iterator
    from typing import TextIO

    from marketrecon.domain.model import CandidateRecord

log = getLogger(__name__)

STDIN_PATH = "-"


@dataclass(slots=True, kw_only=True)
class JsonlCandidateSource:
    """Yield one ``CandidateRecord`` per non-blank line of ``path`` (``-`` for stdin).

    Lines that are not valid JSON objects or fail validation are yielded as
    records carrying ``defects`` rather than dropped.
    """

    path: Path | str
    default_strategy: str = DEFAULT_SOURCE_STRATEGY
    encoding: str = "utf-8"

    @property
    def descriptor(self) -> str:
        return "stdin" if str(self.path) == STDIN_PATH else f"jsonl:{self.path}"

    def __call__(self, *, max_records: int | None = None) -> Iterator[CandidateRecord]:
        yielded = 0
        with self._open() as stream:
            for line_number, line in enumerate(stream, start=1):
                if max_records is not None and yielded >= max_records:
                    return
                if not line.strip():
                    continue
                yield self._parse_line(line, line_number)
                yielded += 1

    @contextmanager
    def _open(self) -> Iterator[TextIO]:
        if str(self.path) == STDIN_PATH:
            yield sys.stdin
            return
        with Path(self.path).open(encoding=self.encoding) as stream:
            yield stream

    def _parse_line(self, line: str, line_number: int) -> CandidateRecord:
        try:
            raw = json.loads(line)
        except json.JSONDecodeError as exc:
            log.warning("Line %d of %s is not valid JSON: %s", line_number, self.descriptor, exc)
            return malformed_candidate(
                f"line {line_number}: invalid JSON ({exc.msg})",
                default_strategy=self.default_strategy,
            )
        if not isinstance(raw, dict):
            return malformed_candidate(
                f"line {line_number}: expected a JSON object",
                default_strategy=self.default_strategy,
            )
        try:
            payload = CandidatePayload.model_validate(raw)
        except ValidationError as exc:
            log.warning("Line %d of %s failed validation", line_number, self.descriptor)
            return malformed_candidate(
                f"line {line_number}: {exc.error_count()} validation error(s)",
                default_strategy=self.default_strategy,
            )
        return parse_candidate(payload, default_strategy=self.default_strategy)


def fetch_candidates(
    path: Path | str,
    *,
    default_strategy: str = DEFAULT_SOURCE_STRATEGY,
    max_records: int | None = None,
) -> Iterator[CandidateRecord]:
    """Read candidates from a JSON Lines file."""

    source = JsonlCandidateSource(path=path, default_strategy=default_strategy)
    return source(max_records=max_records)


if TYPE_CHECKING:
    from marketrecon.domain.ports.fetching import CandidateSource

    _source_check: CandidateSource = JsonlCandidateSource(path=STDIN_PATH)
