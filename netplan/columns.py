"""
Header classifier.

Scores spreadsheet headers against the weighted rule table in
``config.COLUMN_RULES``. Each header is evaluated once per role; the best
column for a role is the highest score, ties going to the leftmost column.
"""

import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .config import COLUMN_RULES, MIN_RULE_SCORE

_COMPILED_RULES = {
    role: [(re.compile(pattern), weight) for pattern, weight in rules]
    for role, rules in COLUMN_RULES.items()
}


def normalize_header(header) -> str:
    """Lowercase, map separators to spaces, collapse whitespace."""
    if header is None:
        return ""
    text = str(header).strip().lower()
    text = re.sub(r"[_\-/.()#:]+", " ", text)
    return re.sub(r"\s+", " ", text).strip()


@lru_cache(maxsize=1024)
def _score_all(normalized: str) -> Tuple[Tuple[str, float], ...]:
    scores = []
    for role, rules in _COMPILED_RULES.items():
        best = 0.0
        for pattern, weight in rules:
            if weight > best and pattern.search(normalized):
                best = weight
        scores.append((role, best))
    return tuple(scores)


def role_scores(header) -> Dict[str, float]:
    """Score of the header against every role (0.0 when no rule matches)."""
    return dict(_score_all(normalize_header(header)))


def score_header(header, role: str) -> float:
    if role not in COLUMN_RULES:
        raise ValueError(f"Unknown column role: {role}. Must be one of {sorted(COLUMN_RULES)}")
    return role_scores(header).get(role, 0.0)


def classify_header(header) -> Tuple[Optional[str], float]:
    """
    Best role for a single header.

    Roles are compared in rule-table order, so equal scores resolve to the
    role declared first.

    Returns:
        (role, score), or (None, 0.0) when nothing scores above MIN_RULE_SCORE
    """
    best_role, best_score = None, 0.0
    for role, score in _score_all(normalize_header(header)):
        if score > best_score:
            best_role, best_score = role, score
    if best_score < MIN_RULE_SCORE:
        return None, 0.0
    return best_role, best_score


def best_column(
        headers: Sequence,
        role: str,
        exclude: Optional[Iterable[int]] = None
) -> Optional[int]:
    """
    Index of the best-scoring header for a role.

    Args:
        headers: Header row
        role: Role key from COLUMN_RULES
        exclude: Column indices already claimed by another role

    Returns:
        Column index, or None when no header scores above MIN_RULE_SCORE
    """
    taken = set(exclude or ())
    best_index, best_score = None, 0.0
    for index, header in enumerate(headers):
        if index in taken:
            continue
        score = score_header(header, role)
        # strict comparison keeps the first occurrence on ties
        if score > best_score:
            best_index, best_score = index, score
    if best_score < MIN_RULE_SCORE:
        return None
    return best_index


def assign_roles(headers: Sequence, roles: List[str]) -> Dict[str, Optional[int]]:
    """
    Assign roles to columns in the given priority order.

    A column claimed by an earlier role is not reused by a later one.
    """
    assigned: Dict[str, Optional[int]] = {}
    taken: List[int] = []
    for role in roles:
        index = best_column(headers, role, exclude=taken)
        assigned[role] = index
        if index is not None:
            taken.append(index)
    return assigned


def looks_like_header(row: Sequence, keywords: Iterable[str]) -> bool:
    """True when any cell of the row contains one of the keywords."""
    if not row:
        return False
    words = tuple(keywords)
    for cell in row:
        if isinstance(cell, str):
            text = cell.lower()
            if any(word in text for word in words):
                return True
    return False
