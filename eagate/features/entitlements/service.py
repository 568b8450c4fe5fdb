"""
eagate/features/entitlements/service.py

Entitlement store.

Handles:
- Paid/unpaid lookup by email (default unpaid)
- Versioned compare-and-set upsert keyed on (email, updated_at)
- Resolving the entitlement that applies to a request identity

Writes come only from webhook ingestion, which passes its own session so the
entitlement and the dedup log commit together.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, update, and_, or_
from sqlalchemy.exc import IntegrityError

from eagate.core.database import get_db_session, entitlements, identity_links
from eagate.models.entitlement import EntitlementRecord, UpsertOutcome
from eagate.models.identity import Identity


logger = logging.getLogger("eagate")


class ConcurrentInsertError(Exception):
    """Another writer created the entitlement row inside our transaction window."""


@contextmanager
def _session_scope(session=None):
    if session is not None:
        yield session
        return
    with get_db_session() as own:
        yield own


def _row_to_record(row) -> EntitlementRecord:
    return EntitlementRecord(
        identity_key=row.identity_key,
        has_paid=row.has_paid,
        updated_at=EntitlementRecord.from_epoch(row.updated_at),
        source_event_id=row.source_event_id,
    )


def get_entitlement_record(identity_key: str, session=None) -> Optional[EntitlementRecord]:
    with _session_scope(session) as s:
        row = s.execute(
            select(entitlements).where(entitlements.c.identity_key == identity_key)
        ).first()
    return _row_to_record(row) if row else None


def get_entitlement(identity_key: str) -> bool:
    """Paid flag for an email. Unknown emails are unpaid."""
    record = get_entitlement_record(identity_key)
    return bool(record and record.has_paid)


def upsert_entitlement(
    identity_key: str,
    has_paid: bool,
    at: int,
    event_id: str,
    session=None,
) -> UpsertOutcome:
    """
    Compare-and-set write of the paid flag.

    The UPDATE only matches when the stored event time is older than `at`
    (or equal, when the incoming write grants payment and the stored one
    does not). Zero rows matched on an existing record means the incoming
    write is stale.

    Args:
        identity_key: Lowercased email
        has_paid: New paid flag
        at: Provider event time, epoch seconds
        event_id: Provider event id that produced this write
        session: Caller's session; the write joins its transaction

    Returns:
        UpsertOutcome.APPLIED or UpsertOutcome.STALE_REJECTED

    Raises:
        ConcurrentInsertError: first write for this email raced another insert;
            the caller's transaction must be rolled back and retried
    """
    newer = entitlements.c.updated_at < at
    if has_paid:
        newer = or_(newer, and_(entitlements.c.updated_at == at, entitlements.c.has_paid.is_(False)))

    with _session_scope(session) as s:
        result = s.execute(
            update(entitlements)
            .where(entitlements.c.identity_key == identity_key)
            .where(newer)
            .values(
                has_paid=has_paid,
                updated_at=at,
                source_event_id=event_id,
                written_at=datetime.now(timezone.utc),
            )
        )
        if result.rowcount == 1:
            return UpsertOutcome.APPLIED

        exists = s.execute(
            select(entitlements.c.identity_key).where(entitlements.c.identity_key == identity_key)
        ).first()
        if exists:
            return UpsertOutcome.STALE_REJECTED

        try:
            s.execute(
                insert(entitlements).values(
                    identity_key=identity_key,
                    has_paid=has_paid,
                    updated_at=at,
                    source_event_id=event_id,
                )
            )
            s.flush()
        except IntegrityError as e:
            raise ConcurrentInsertError(identity_key) from e

    return UpsertOutcome.APPLIED


def link_identity(identity_key: str, email: str, event_id: str, session=None) -> None:
    """Record that an anonymous identity paid under `email`. Last verified link wins."""
    now = datetime.now(timezone.utc)
    with _session_scope(session) as s:
        result = s.execute(
            update(identity_links)
            .where(identity_links.c.identity_key == identity_key)
            .values(email=email, source_event_id=event_id, linked_at=now)
        )
        if result.rowcount == 0:
            try:
                s.execute(
                    insert(identity_links).values(
                        identity_key=identity_key,
                        email=email,
                        source_event_id=event_id,
                        linked_at=now,
                    )
                )
                s.flush()
            except IntegrityError as e:
                raise ConcurrentInsertError(identity_key) from e


def get_linked_email(identity: Identity) -> Optional[str]:
    with get_db_session() as session:
        return session.execute(
            select(identity_links.c.email).where(identity_links.c.identity_key == identity.storage_key)
        ).scalar_one_or_none()


def resolve_entitlement(identity: Identity) -> EntitlementRecord:
    """
    Entitlement that applies to a request identity.

    Authenticated callers are looked up by their own email. Anonymous
    callers only have an email once a verified checkout linked their token.
    """
    email = identity.email if identity.is_authenticated else get_linked_email(identity)
    if not email:
        return EntitlementRecord.unpaid()

    record = get_entitlement_record(email)
    return record or EntitlementRecord.unpaid(email)
