"""
Membership diff engine.

Compares the desired identities for a sink against its current membership
and produces the removals and additions needed to make them agree. All
comparisons are done on normalized identities so that ordering, duplicates
and letter case never produce a spurious change.
"""

from typing import Dict, Iterable, Tuple

from deputize.models import MutationPlan


def normalize_key(identity: str) -> str:
    """Comparison key for a single identity."""
    return str(identity).strip().casefold()


def index_identities(identities: Iterable[str]) -> Dict[str, str]:
    """Map normalized key -> identity as spelled by its source.

    Identities are visited in sorted order so the spelling kept for a
    duplicated key does not depend on input order.
    """
    index = {}
    for identity in sorted(str(i).strip() for i in identities if i is not None and str(i).strip()):
        index.setdefault(normalize_key(identity), identity)
    return index


def normalize(identities: Iterable[str]) -> Tuple[str, ...]:
    """Deduplicate and sort identities for comparison.

    Returns:
        Sorted tuple of case-folded identities
    """
    return tuple(sorted(index_identities(identities)))


def same_members(left: Iterable[str], right: Iterable[str]) -> bool:
    """Order and case insensitive set equality."""
    return normalize(left) == normalize(right)


def diff(desired: Iterable[str], current: Iterable[str], protect: Iterable[str] = ()) -> MutationPlan:
    """
    Compute the mutation plan for one sink.

    Args:
        desired: Identities that should be members
        current: Identities that are members now
        protect: Identities that must never be removed (owners, admins)

    Returns:
        MutationPlan with to_remove = current - desired - protect and
        to_add = desired - current, both sorted. Removals keep the sink's
        spelling of the identity, additions keep the desired spelling.
    """
    desired_index = index_identities(desired)
    current_index = index_identities(current)
    protected = set(index_identities(protect))

    to_remove = tuple(
        current_index[key] for key in sorted(current_index)
        if key not in desired_index and key not in protected
    )
    to_add = tuple(
        desired_index[key] for key in sorted(desired_index)
        if key not in current_index
    )

    return MutationPlan(to_remove=to_remove, to_add=to_add)
