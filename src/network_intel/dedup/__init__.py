from .engine import (
    CleanupReport,
    DedupCandidate,
    DedupEngine,
    MergeReport,
    choose_survivor,
    find_duplicate_groups,
)
from .validation import DEFAULT_POLICY, NameIssue, NamePolicy, NameVerdict, validate_name

__all__ = [
    "CleanupReport",
    "DEFAULT_POLICY",
    "DedupCandidate",
    "DedupEngine",
    "MergeReport",
    "NameIssue",
    "NamePolicy",
    "NameVerdict",
    "choose_survivor",
    "find_duplicate_groups",
    "validate_name",
]
