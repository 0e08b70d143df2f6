"""Assignee identity, normalization and set operations.

Assignee lists are ordered and deduplicated by identity key: the normalized
email, else the user id, else the normalized name. Entries without any key
are dropped. All functions return new lists and leave their inputs alone.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from src.domain.task import Assignee


AssigneeLike = Assignee | Mapping[str, Any]


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_assignee(raw: AssigneeLike) -> Assignee:
    if isinstance(raw, Assignee):
        return raw
    return Assignee.model_validate(dict(raw))


def identity_key(assignee: AssigneeLike) -> str:
    """Identity key of an assignee; empty string when it has none."""
    person = _as_assignee(assignee)
    email = _clean(person.email).lower()
    if email:
        return email
    user_id = _clean(person.user_id)
    if user_id:
        return user_id
    return _clean(person.name).lower()


def normalize_assignee(raw: AssigneeLike) -> Assignee:
    """Trim fields, lowercase the email and blank out empty optionals."""
    person = _as_assignee(raw)
    email = _clean(person.email).lower()
    user_id = _clean(person.user_id)
    phone = _clean(person.phone)
    return Assignee(
        name=_clean(person.name),
        user_id=user_id or None,
        email=email or None,
        phone=phone or None,
    )


def sanitize_assignees(raw: Iterable[AssigneeLike] | None) -> list[Assignee]:
    """Normalize entries, drop invalid ones and dedup by key (first one wins).

    Idempotent: sanitizing a sanitized list returns an equal list.
    """
    result: list[Assignee] = []
    seen: set[str] = set()
    for item in raw or []:
        if item is None:
            continue
        person = normalize_assignee(item)
        key = identity_key(person)
        if not person.name or not key or key in seen:
            continue
        seen.add(key)
        result.append(person)
    return result


def toggle_assignee(current: Iterable[AssigneeLike], candidate: AssigneeLike) -> list[Assignee]:
    """Remove the candidate when its key is present, otherwise append it.

    Raises:
        ValueError: If the candidate has no name or no identity key
    """
    people = sanitize_assignees(current)
    person = normalize_assignee(candidate)
    key = identity_key(person)
    if not person.name or not key:
        msg = "Assignee needs a name and an email, user id or name to identify them"
        raise ValueError(msg)

    remaining = [p for p in people if identity_key(p) != key]
    if len(remaining) != len(people):
        return remaining
    return [*people, person]


def merge_assignees(current: Iterable[AssigneeLike], incoming: Iterable[AssigneeLike]) -> list[Assignee]:
    """Append incoming entries whose key is not already present."""
    return sanitize_assignees([*current, *incoming])


def added_assignees(before: Iterable[AssigneeLike], after: Iterable[AssigneeLike]) -> list[Assignee]:
    """Entries of ``after`` whose key was not in ``before``."""
    known = {identity_key(p) for p in sanitize_assignees(before)}
    return [p for p in sanitize_assignees(after) if identity_key(p) not in known]


def legacy_assignee_fields(assignees: Iterable[AssigneeLike]) -> dict[str, str | None]:
    """Scalar ``assignee``/``assignee_id`` fields derived from the first entry."""
    people = sanitize_assignees(assignees)
    if not people:
        return {"assignee": None, "assignee_id": None}
    first = people[0]
    return {"assignee": first.name, "assignee_id": first.user_id or first.email}


def dump_assignees(assignees: Iterable[AssigneeLike]) -> list[dict[str, Any]]:
    """Plain dicts for storage, omitting empty optional fields."""
    return [p.model_dump(exclude_none=True) for p in sanitize_assignees(assignees)]
