"""Name validation for entity cleanup.

The rules are precision-oriented heuristics: they catch CRM artifacts such as a bare
"CEO" or "Director (Sales" that were imported as people. Legitimate short or title-like
organization names exist, so organization matches are reported as borderline for review
instead of invalid. The whole rule set is a `NamePolicy` and can be swapped per caller.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from ..graph.models import EntityKind


class NameIssue(str, Enum):
    NO_LETTERS = "no_letters"
    TOO_SHORT = "too_short"
    JOB_TITLE = "job_title"
    MALFORMED_PARENTHESES = "malformed_parentheses"
    MERGED_ARTIFACT = "merged_artifact"
    SINGLE_NAME = "single_name"


DEFAULT_TITLE_WORDS = frozenset(
    {
        "CEO",
        "CTO",
        "CFO",
        "COO",
        "VP",
        "Director",
        "Manager",
        "Head",
        "Lead",
        "Senior",
        "Junior",
        "Associate",
        "Assistant",
        "Special",
        "Deputy",
        "Founder",
        "Co-Founder",
        "Partner",
        "Principal",
        "President",
        "Chairman",
        "Advisor",
        "Investor",
    }
)

DEFAULT_TITLE_PHRASES = frozenset(
    {
        "board member",
        "vice president",
        "head of",
        "co-founder",
        "managing director",
        "general partner",
        "phd",
        "mba",
        "cfa",
        "cpa",
    }
)


@dataclass(frozen=True, slots=True)
class NamePolicy:
    min_length: int = 3
    single_token_min_length: int = 10
    title_words: frozenset[str] = field(default=DEFAULT_TITLE_WORDS)
    title_phrases: frozenset[str] = field(default=DEFAULT_TITLE_PHRASES)
    artifact_chars: str = ";<>|"


DEFAULT_POLICY = NamePolicy()


@dataclass(frozen=True, slots=True)
class NameVerdict:
    valid: bool
    reason: NameIssue | None = None
    borderline: bool = False


_VALID = NameVerdict(valid=True)
_TOKEN_STRIP = re.compile(r"^[^\w-]+|[^\w-]+$")


def _tokens(name: str) -> list[str]:
    return [t for t in (_TOKEN_STRIP.sub("", raw) for raw in name.split()) if t]


def validate_name(
    name: str, *, kind: EntityKind | str | None = None, policy: NamePolicy = DEFAULT_POLICY
) -> NameVerdict:
    """Classify a display name. Pure function; callers decide what to do with the verdict."""
    s = " ".join((name or "").split())
    is_org = kind is not None and EntityKind(kind) == EntityKind.ORGANIZATION

    if not any(ch.isalpha() for ch in s):
        return NameVerdict(False, NameIssue.NO_LETTERS)
    if len(s) < policy.min_length:
        return NameVerdict(False, NameIssue.TOO_SHORT)

    tokens = _tokens(s)
    if s.lower() in policy.title_phrases:
        return NameVerdict(False, NameIssue.JOB_TITLE)
    titles = {w.lower() for w in policy.title_words}
    if tokens and (tokens[0].lower() in titles or tokens[-1].lower() in titles):
        if is_org:
            return NameVerdict(True, NameIssue.JOB_TITLE, borderline=True)
        return NameVerdict(False, NameIssue.JOB_TITLE)

    if s.endswith(")") and "(" not in s:
        return NameVerdict(False, NameIssue.MALFORMED_PARENTHESES)
    if any(ch in s for ch in policy.artifact_chars):
        return NameVerdict(False, NameIssue.MERGED_ARTIFACT)

    if len(tokens) == 1 and not is_org:
        if len(s) < policy.single_token_min_length:
            return NameVerdict(False, NameIssue.SINGLE_NAME)
        return NameVerdict(True, NameIssue.SINGLE_NAME, borderline=True)
    return _VALID
