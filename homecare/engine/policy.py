"""
Default Selection Policy
Exclusive-flag transitions shared by every collection that has a "default" (or
"current") record. Pure functions: inputs are never mutated.
"""

import dataclasses
import logging
from typing import List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_FLAG = 'is_default'


def select_exclusive(records: Sequence[T], target_id: str, flag: str = DEFAULT_FLAG) -> List[T]:
    """
    Return a new list, same order, where only target_id has flag=True.
    Records whose flag already has the right value are reused, not copied.
    Raises KeyError if target_id is not in the collection.
    """
    if not any(r.id == target_id for r in records):
        raise KeyError(target_id)

    result = []
    for record in records:
        wanted = record.id == target_id
        if getattr(record, flag) == wanted:
            result.append(record)
        else:
            result.append(dataclasses.replace(record, **{flag: wanted}))
    return result


def changed_ids(before: Sequence[T], after: Sequence[T], flag: str = DEFAULT_FLAG) -> List[str]:
    """Ids whose flag differs between two versions of the same collection."""
    old = {r.id: getattr(r, flag) for r in before}
    return [r.id for r in after if old.get(r.id) != getattr(r, flag)]


def ensure_single_default(records: Sequence[T], flag: str = DEFAULT_FLAG) -> List[T]:
    """
    Repair a collection with more than one flagged record: the first one wins.
    Zero flagged records is left alone; a default is never invented.
    """
    flagged = [r.id for r in records if getattr(r, flag)]
    if len(flagged) <= 1:
        return list(records)
    logger.warning(f"{len(flagged)} records flagged {flag}; keeping {flagged[0]!r}")
    return select_exclusive(records, flagged[0], flag)
