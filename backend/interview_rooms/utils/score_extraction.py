"""
Display score heuristic for free-form evaluation reports.

Best effort only: the stored report text stays the source of truth.
"""

import re
from typing import Any, Dict, Optional

SCORE_PATTERNS = (
    re.compile(r"overall\s+score:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
    re.compile(r"final\s+score:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
    re.compile(r"score:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
    re.compile(r"rating:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
    re.compile(r"grading:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
    re.compile(r"cgpa:?\s*([0-9]+\.?[0-9]*)", re.IGNORECASE),
)

MIN_SCORE = 0.0
MAX_SCORE = 10.0


def extract_score(evaluation: Optional[str]) -> float:
    """
    Return the first labelled score in [0, 10], rounded to 2 decimals, or 0.0.

    Patterns are tried in order; a pattern whose first match is out of range
    falls through to the next pattern.
    """
    if not evaluation:
        return 0.0

    for pattern in SCORE_PATTERNS:
        match = pattern.search(evaluation)
        if not match:
            continue
        try:
            value = float(match.group(1))
        except ValueError:
            continue
        if MIN_SCORE <= value <= MAX_SCORE:
            return round(value, 2)

    return 0.0


def score_from_payload(evaluation_data: Optional[Dict[str, Any]], fallback_text: Optional[str] = None) -> float:
    """Prefer a stored non-zero ``cgpa``, else parse the report text."""
    if evaluation_data:
        cgpa = evaluation_data.get("cgpa")
        if isinstance(cgpa, (int, float)) and not isinstance(cgpa, bool) and cgpa:
            return round(float(cgpa), 2)
    text = (evaluation_data or {}).get("evaluation") or fallback_text
    return extract_score(text)
