#!/usr/bin/env python3
"""Carry out (or, in dry run, describe) the deletions decided for a policy."""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from artifactory_client import ArtifactoryClient, BuildItem, TransportError
from retention_policy import RetentionPolicy

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    dry_run: bool
    planned: List[BuildItem] = field(default_factory=list)
    deleted: List[BuildItem] = field(default_factory=list)
    failed: List[Tuple[BuildItem, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def execute(client: ArtifactoryClient, policy: RetentionPolicy,
            deletion_set: List[BuildItem]) -> ExecutionResult:
    result = ExecutionResult(dry_run=policy.dry_run)

    for item in deletion_set:
        url = client.delete_url(policy.build_name, item)
        if policy.dry_run:
            logger.info(f"Dryrun, would delete: {url}")
            result.planned.append(item)
            continue

        try:
            client.delete_build(policy.build_name, item)
        except TransportError as e:
            logger.error(f"Failed to delete build {item.number} of {policy.build_name}: {e}")
            result.failed.append((item, str(e)))
            continue

        logger.info(f"Deleted build {item.number} of {policy.build_name}")
        result.deleted.append(item)

    return result
