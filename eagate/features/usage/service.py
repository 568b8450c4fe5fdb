"""
eagate/features/usage/service.py

Usage ledger.

Handles:
- Server-owned free-tier counters keyed by identity
- Atomic increment (no read-then-write)
- Explicit, authorized reset

Any usage count a client keeps locally is advisory; nothing here reads one.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from eagate.core.admin_auth import AdminActor
from eagate.core.database import get_db_session, usage_counters, admin_audit
from eagate.core.errors import PermissionError, StoreUnavailableError
from eagate.models.identity import Identity
from eagate.models.usage import UsageRecord


logger = logging.getLogger("eagate")

_INSERT_RETRIES = 3


def _bump(session, identity: Identity, now: datetime) -> bool:
    result = session.execute(
        update(usage_counters)
        .where(usage_counters.c.identity_key == identity.storage_key)
        .values(count=usage_counters.c.count + 1, last_request_at=now)
    )
    return result.rowcount == 1


def increment_usage(identity: Identity, now: Optional[datetime] = None) -> int:
    """
    Atomically add one to the identity's counter.

    The increment is a single `count = count + 1` UPDATE evaluated by the
    database, so concurrent calls for the same identity serialize on the
    row and none is lost. The first call inserts the row; a concurrent
    first call that loses the insert race retries as an UPDATE.

    Returns:
        The new count.
    """
    now = now or datetime.now(timezone.utc)

    for _ in range(_INSERT_RETRIES):
        try:
            with get_db_session() as session:
                if not _bump(session, identity, now):
                    session.execute(
                        insert(usage_counters).values(
                            identity_key=identity.storage_key,
                            identity_kind=identity.kind.value,
                            count=1,
                            last_request_at=now,
                        )
                    )
                new_count = session.execute(
                    select(usage_counters.c.count).where(
                        usage_counters.c.identity_key == identity.storage_key
                    )
                ).scalar_one()
        except IntegrityError:
            # Another request created the row first
            continue

        logger.info(
            "usage.increment",
            extra={"identity_key": identity.storage_key, "count": new_count},
        )
        return new_count

    raise StoreUnavailableError(f"Usage increment for {identity.storage_key} did not settle")


def get_usage(identity: Identity) -> UsageRecord:
    """Current usage for an identity (count 0 when never used)."""
    with get_db_session() as session:
        row = session.execute(
            select(usage_counters.c.count, usage_counters.c.last_request_at).where(
                usage_counters.c.identity_key == identity.storage_key
            )
        ).first()

    if not row:
        return UsageRecord(identity=identity, count=0)
    return UsageRecord(identity=identity, count=row.count, last_request_at=row.last_request_at)


def reset_usage(
    identity: Identity,
    *,
    requested_by: Optional[Identity] = None,
    admin: Optional[AdminActor] = None,
) -> UsageRecord:
    """
    Reset an identity's counter to zero.

    Allowed only for:
    - an authenticated identity resetting its own record, or
    - an admin actor (audited).

    Raises:
        PermissionError: Anonymous caller, or a caller resetting someone else.
    """
    if admin is None:
        if requested_by is None or not requested_by.is_authenticated:
            raise PermissionError("Usage reset requires an authenticated identity")
        if requested_by.storage_key != identity.storage_key:
            raise PermissionError("Usage reset is limited to your own record")

    now = datetime.now(timezone.utc)
    actor = admin.actor_id if admin else f"self:{identity.storage_key}"

    with get_db_session() as session:
        session.execute(
            update(usage_counters)
            .where(usage_counters.c.identity_key == identity.storage_key)
            .values(count=0, reset_at=now)
        )
        session.execute(
            insert(admin_audit).values(
                actor=actor,
                action="usage.reset",
                target_identity_key=identity.storage_key,
                payload_json=json.dumps({"via": "admin" if admin else "self"}),
            )
        )

    logger.info(
        "usage.reset",
        extra={"identity_key": identity.storage_key, "reason": "admin" if admin else "self"},
    )
    return UsageRecord(identity=identity, count=0)
