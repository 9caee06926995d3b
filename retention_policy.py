#!/usr/bin/env python3
"""
Retention policy resolution.

Turns command-line values or a JSON policy file into a list of immutable
RetentionPolicy objects, one per build name.

Policy file format:
    {
        "policies": [
            {"buildname": "app-main", "days_of_items_to_retain": 10},
            {"buildname": "app-docs", "last_number_of_releases_to_retain": 1}
        ]
    }
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_RETAIN_DAYS = 5
DEFAULT_RETAIN_RELEASES = 3


class ConfigurationError(ValueError):
    """Conflicting or missing retention configuration."""


@dataclass(frozen=True)
class RetentionPolicy:
    build_name: str
    retain_days: int = DEFAULT_RETAIN_DAYS
    retain_last_n_releases: int = DEFAULT_RETAIN_RELEASES
    dry_run: bool = True


def _non_negative_int(value, field: str, build_name) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{field} for build '{build_name}' must be an integer, got {value!r}")
    if value < 0:
        raise ConfigurationError(f"{field} for build '{build_name}' must not be negative, got {value}")
    return value


def make_policy(build_name, days=None, releases=None, dry_run=True) -> RetentionPolicy:
    """Build one policy, filling absent retention values with the defaults."""
    if not build_name:
        raise ConfigurationError("A build name is required (use --buildname or a policy file)")

    retain_days = DEFAULT_RETAIN_DAYS if days is None else days
    retain_releases = DEFAULT_RETAIN_RELEASES if releases is None else releases
    return RetentionPolicy(
        build_name=str(build_name),
        retain_days=_non_negative_int(retain_days, 'days_of_items_to_retain', build_name),
        retain_last_n_releases=_non_negative_int(retain_releases, 'last_number_of_releases_to_retain', build_name),
        dry_run=dry_run,
    )


def load_policy_file(path: str) -> List[dict]:
    """Read the raw policy records from a JSON policy file."""
    if not os.path.exists(path):
        raise ConfigurationError('Policy file specified does not exist!')

    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read policy file {path}: {e}")

    records = document.get('policies') if isinstance(document, dict) else None
    if not isinstance(records, list):
        raise ConfigurationError(f"Policy file {path} must contain a 'policies' list")

    for record in records:
        if not isinstance(record, dict):
            raise ConfigurationError(f"Invalid policy record in {path}: {record!r}")
    return records


def resolve_policies(build_name: Optional[str] = None, days: Optional[int] = None,
                     releases: Optional[int] = None, policy_file: Optional[str] = None,
                     dry_run: bool = True) -> List[RetentionPolicy]:
    """Return the policies to evaluate, in file order or as a single command-line policy."""
    if not policy_file:
        return [make_policy(build_name, days, releases, dry_run)]

    records = load_policy_file(policy_file)
    if days is not None or releases is not None:
        msg = 'You specified both a policyfile AND retention values!  If specifying a '
        msg += 'policyfile then the retention values should be supplied by the policyfile.'
        raise ConfigurationError(msg)

    if build_name:
        logger.warning(f"Ignoring --buildname {build_name}; build names come from {policy_file}")

    return [
        make_policy(record.get('buildname'),
                    record.get('days_of_items_to_retain'),
                    record.get('last_number_of_releases_to_retain'),
                    dry_run)
        for record in records
    ]
