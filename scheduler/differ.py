"""
Snapshot differencing for alumni employment records.

Compares the current snapshot against the previous one and describes every
job, employer and location change in plain English. Pure functions, no I/O.
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from alumni.models import AlumniRecord

MISSING = "unknown"

MatchKey = Tuple[Optional[str], Optional[str], Optional[int], str]


def _text(value) -> str:
    return MISSING if value is None else str(value)


def _differs(current, previous) -> bool:
    """A value missing on only one side counts as a difference."""
    return current != previous


def _match_key(record: AlumniRecord) -> Optional[MatchKey]:
    if record.url is None:
        return None
    return (record.name, record.major, record.graduation_year, record.url)


def position_change(current: AlumniRecord, previous: AlumniRecord) -> Optional[str]:
    """New title at the same employer."""
    if _differs(current.job, previous.job) and not _differs(current.company, previous.company):
        return (
            f"{_text(current.name)} has changed position from {_text(previous.job)} "
            f"to {_text(current.job)} at {_text(current.company)}."
        )
    return None


def company_move(current: AlumniRecord, previous: AlumniRecord) -> Optional[str]:
    if _differs(current.company, previous.company):
        return (
            f"{_text(current.name)} moved companies from {_text(previous.company)} "
            f"to {_text(current.company)}."
        )
    return None


def location_change(current: AlumniRecord, previous: AlumniRecord) -> Optional[str]:
    if _differs(current.location, previous.location):
        return (
            f"{_text(current.name)} changed location from {_text(previous.location)} "
            f"to {_text(current.location)}."
        )
    return None


def new_job(current: AlumniRecord, previous: AlumniRecord) -> Optional[str]:
    """
    Announce the new employer and title.

    Shares its guard with company_move; both fire on every employer change.
    """
    if _differs(current.company, previous.company):
        return (
            f"{_text(current.name)} has started a new job at {_text(current.company)} "
            f"as a {_text(current.job)}."
        )
    return None


# Emission order within one person
CHANGE_PREDICATES = (
    position_change,
    company_move,
    location_change,
    new_job,
)


def _index_previous(previous: Iterable[AlumniRecord]) -> Dict[MatchKey, AlumniRecord]:
    index: Dict[MatchKey, AlumniRecord] = {}
    for record in previous:
        key = _match_key(record)
        if key is not None:
            # first occurrence wins
            index.setdefault(key, record)
    return index


def describe_changes(current: AlumniRecord, previous: AlumniRecord) -> List[str]:
    """All change descriptions for one matched pair, in predicate order."""
    changes = []
    for predicate in CHANGE_PREDICATES:
        description = predicate(current, previous)
        if description is not None:
            changes.append(description)
    return changes


def diff_snapshots(
    current: Sequence[AlumniRecord],
    previous: Sequence[AlumniRecord]
) -> List[str]:
    """
    Describe what changed between two alumni snapshots.

    A current record is matched to the previous record with the same name,
    major, graduation year and url. Unmatched records (first appearances)
    produce nothing.

    Args:
        current: Freshly refreshed records
        previous: Baseline records from the last cycle

    Returns:
        Change descriptions in current-snapshot order
    """
    baseline = _index_previous(previous)

    changes: List[str] = []
    for record in current:
        key = _match_key(record)
        if key is None:
            continue
        matched = baseline.get(key)
        if matched is None:
            continue
        changes.extend(describe_changes(record, matched))

    return changes
