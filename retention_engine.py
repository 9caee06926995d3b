#!/usr/bin/env python3
"""
Retention decision for a single build name.

A build is deletable when it started before the retention cutoff and is
not one of the last N builds released to production. Release recency is
what protects an old build that was only recently promoted.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from artifactory_client import BuildDetail, BuildItem
from retention_policy import RetentionPolicy

logger = logging.getLogger(__name__)

RELEASE_STATUS = 'production'


def cutoff_date(policy: RetentionPolicy, now: Optional[datetime] = None) -> datetime:
    if now is None:
        now = datetime.now(timezone.utc)
    try:
        return now - timedelta(days=policy.retain_days)
    except OverflowError:
        # Window reaches past the earliest representable date; nothing is older
        return datetime.min.replace(tzinfo=timezone.utc)


def retained_releases(released: List[BuildItem], details: Dict[str, BuildDetail],
                      count: int) -> List[BuildItem]:
    """Return the `count` most recently released items, oldest first."""
    if count <= 0 or not released:
        return []
    by_release_date = sorted(released, key=lambda item: details[item.uri].release_date())
    return by_release_date[-count:]


def decide(items: List[BuildItem], detail_lookup: Callable[[BuildItem], BuildDetail],
           policy: RetentionPolicy, now: Optional[datetime] = None,
           release_status: str = RELEASE_STATUS) -> List[BuildItem]:
    """
    Compute the builds of one policy that are safe to delete.

    Every item's detail is looked up, not just the old ones, so release
    ordering sees the full history. Errors raised by detail_lookup
    propagate to the caller.
    """
    if not items:
        return []

    cutoff = cutoff_date(policy, now)
    older_than_cutoff = [item for item in items if item.started < cutoff]
    logger.debug(f"{len(older_than_cutoff)} of {len(items)} builds of {policy.build_name} "
                 f"started before {cutoff.isoformat()}")

    details = {}
    for item in items:
        if item.uri not in details:
            details[item.uri] = detail_lookup(item)

    released = [item for item in items if details[item.uri].is_released(release_status)]
    retained = retained_releases(released, details, policy.retain_last_n_releases)
    retained_uris = {item.uri for item in retained}
    if retained:
        logger.debug(f"Keeping released builds {', '.join(item.number for item in retained)}")

    return [item for item in older_than_cutoff if item.uri not in retained_uris]
