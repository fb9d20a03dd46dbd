"""
Response Handler for docrank.
Parses relevance scores out of free-form model output.
"""

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, Optional, Union

from docrank.utils.logger import LoggerMixin


JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


@dataclass
class ParsedScores:
    """Scores recovered from model output, keyed by document id."""
    scores: Dict[str, int] = field(default_factory=dict)


@dataclass
class ParseFailure:
    """Model output that did not contain a usable score mapping."""
    reason: str
    raw_text: str = ""


ParseResult = Union[ParsedScores, ParseFailure]


class RelevanceResponseParser(LoggerMixin):
    """Extracts an id -> 0-100 score mapping from model output."""

    def __init__(self, min_score: int = 0, max_score: int = 100):
        self.min_score = min_score
        self.max_score = max_score

    def parse(self, text: str, allowed_ids: Optional[Collection[str]] = None) -> ParseResult:
        """
        Parse model output into relevance scores.

        The first brace-delimited span of the output is decoded as JSON.
        Non-numeric values are dropped and numeric values are clamped.

        Args:
            text: Raw model output
            allowed_ids: If given, ids outside this set are dropped

        Returns:
            ParsedScores on success, ParseFailure otherwise
        """
        if not text:
            return ParseFailure(reason="empty output")

        match = JSON_OBJECT_PATTERN.search(text)
        if not match:
            return ParseFailure(reason="no JSON object found", raw_text=text)

        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            return ParseFailure(reason=f"invalid JSON: {e}", raw_text=text)

        if not isinstance(payload, dict):
            return ParseFailure(reason="JSON payload is not an object", raw_text=text)

        scores: Dict[str, int] = {}
        for key, value in payload.items():
            doc_id = str(key)
            if allowed_ids is not None and doc_id not in allowed_ids:
                continue
            score = self._coerce_score(value)
            if score is not None:
                scores[doc_id] = score

        return ParsedScores(scores=scores)

    def _coerce_score(self, value: Any) -> Optional[int]:
        """Convert a raw value to a clamped integer score, or None if not numeric."""
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                return None
        if not isinstance(value, (int, float)) or not math.isfinite(value):
            return None
        return int(max(self.min_score, min(self.max_score, round(value))))
