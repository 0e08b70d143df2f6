"""Recipient phone lookup across the user and volunteer directories."""

import logging

from src.core import db_client
from src.core.logging import span
from src.domain.task import Assignee


logger = logging.getLogger(__name__)


# Directories searched by email, in order, after the direct lookups.
EMAIL_DIRECTORIES = ("users", "volunteers", "general_volunteers")


def _phone_of(record: dict | None) -> str | None:
    if not record:
        return None
    phone = str(record.get("phone") or "").strip()
    return phone or None


async def _phone_by_user_id(user_id: str) -> str | None:
    try:
        record = await db_client.get_record(collection="users", record_id=user_id)
    except KeyError:
        return None
    except Exception as e:
        logger.warning("User lookup failed for %s: %s", user_id, e)
        return None
    return _phone_of(record)


async def _phone_by_filter(collection: str, filter_query: str) -> str | None:
    try:
        record = await db_client.get_first_record(collection=collection, filter_query=filter_query)
    except Exception as e:
        logger.warning("Phone lookup in %s failed: %s", collection, e)
        return None
    return _phone_of(record)


async def resolve_phone(assignee: Assignee, *, event_id: str | None = None) -> str | None:
    """Find a phone number for an assignee.

    Tries, in order: the phone on the assignee, the user record by id, the
    event's volunteer registration by email, then the users, volunteers and
    general_volunteers directories by email. Each lookup fails softly.

    Returns:
        The first phone found, or None
    """
    with span("phone_directory.resolve_phone"):
        if assignee.phone and assignee.phone.strip():
            return assignee.phone.strip()

        if assignee.user_id:
            phone = await _phone_by_user_id(assignee.user_id)
            if phone:
                return phone

        email = (assignee.email or "").strip().lower()
        if not email:
            logger.info("No phone source for assignee %s", assignee.name)
            return None

        safe_email = db_client.sanitize_param(email)
        if event_id:
            safe_event = db_client.sanitize_param(event_id)
            phone = await _phone_by_filter(
                "event_volunteers",
                f'email = "{safe_email}" && event_id = "{safe_event}"',
            )
            if phone:
                return phone

        for collection in EMAIL_DIRECTORIES:
            phone = await _phone_by_filter(collection, f'email = "{safe_email}"')
            if phone:
                return phone

        logger.info("No phone found for assignee %s", email)
        return None
