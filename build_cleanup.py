#!/usr/bin/env python3
"""
Artifactory Build Retention Cleanup

Removes builds (and their artifacts) that fall outside the retention
policy: a build is kept when it started within the last N days, or when
it is one of the last M builds released to production. Runs as a dry run
unless --delete is given.

Environment Variables (also read from a .env file):
- ARTIFACTORY_USER: Username with delete permission.
- ARTIFACTORY_PASSWORD: Password or API key.
- ARTIFACTORY_URL: Server URI, default http://localhost:8081/artifactory

Usage:
  # Dry run for a single build name
  python build_cleanup.py -b my-build -d 10 -r 2

  # Several build names from a policy file, actually deleting
  python build_cleanup.py -f policies.json --delete --report cleanup_report.csv
"""

import argparse
import logging
import os
import sys
from datetime import datetime
from typing import List, Optional

import pandas as pd
from dotenv import load_dotenv

from artifactory_client import DEFAULT_SERVER_URI, ArtifactoryClient, TransportError
from retention_engine import decide
from retention_executor import execute
from retention_policy import ConfigurationError, RetentionPolicy, resolve_policies

logger = logging.getLogger(__name__)

REPORT_COLUMNS = ['Timestamp', 'Buildname', 'Build', 'Started', 'Action', 'Detail']


def configure_logging(verbose: bool = False, log_file: Optional[str] = None):
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s',
                        handlers=handlers)
    logging.getLogger("urllib3").setLevel(logging.ERROR)


def _report_row(policy: RetentionPolicy, action: str, item=None, detail: str = '') -> dict:
    return {
        'Timestamp': datetime.now().strftime('%Y-%m-%d %H:%M:%S'),
        'Buildname': policy.build_name,
        'Build': item.number if item else '',
        'Started': item.started.isoformat() if item else '',
        'Action': action,
        'Detail': detail,
    }


def run_policy(client: ArtifactoryClient, policy: RetentionPolicy, now: Optional[datetime] = None):
    """Evaluate and apply one policy. Returns (report rows, success flag)."""
    logger.info(f"Applying retention to {policy.build_name}: keep {policy.retain_days} days, "
                f"last {policy.retain_last_n_releases} releases"
                f"{' (dry run)' if policy.dry_run else ''}")

    try:
        items = client.list_builds(policy.build_name)
        if not items:
            logger.info(f"No items in {client.build_url(policy.build_name)}")
            logger.info('Aborting cleanup!')
            return [_report_row(policy, 'no items')], True

        to_delete = decide(items, lambda item: client.get_build_detail(policy.build_name, item),
                           policy, now=now)
    except TransportError as e:
        logger.error(f"Skipping {policy.build_name}: {e}")
        return [_report_row(policy, 'aborted', detail=str(e))], False

    if not to_delete:
        logger.info('Found no items to delete, exiting!')
        return [_report_row(policy, 'nothing to delete')], True

    result = execute(client, policy, to_delete)
    rows = [_report_row(policy, 'would delete', item) for item in result.planned]
    rows += [_report_row(policy, 'deleted', item) for item in result.deleted]
    rows += [_report_row(policy, 'failed', item, error) for item, error in result.failed]
    return rows, result.ok


def write_report(rows: List[dict], path: str):
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    df.to_csv(path, index=False)
    logger.info(f"Cleanup report saved to {path}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Delete Artifactory builds outside the retention policy')
    parser.add_argument('-u', '--user', default=os.getenv('ARTIFACTORY_USER'),
                        help='Artifactory Username (needs delete perms)')
    parser.add_argument('-p', '--password', default=os.getenv('ARTIFACTORY_PASSWORD'), help='Password')
    parser.add_argument('-b', '--buildname', help='Buildname')
    parser.add_argument('-s', '--server_uri', '--server-uri', dest='server_uri',
                        default=os.getenv('ARTIFACTORY_URL', DEFAULT_SERVER_URI),
                        help=f'Server Uri, default {DEFAULT_SERVER_URI}')
    parser.add_argument('-d', '--days', type=int, metavar='NUMBER',
                        help='NUMBER of days of builds to retain, default 5')
    parser.add_argument('-r', '--releases', type=int, metavar='NUMBER',
                        help='NUMBER of releases of builds to retain, default 3')
    parser.add_argument('-f', '--policyfile', metavar='FILEPATH', help='Full path to json policy file')
    parser.add_argument('--delete', action='store_true',
                        help='Set to actually delete builds, default is dryrun')
    parser.add_argument('--report', metavar='CSV', help='Write a CSV report of the run')
    parser.add_argument('--log-file', help='Also write log output to this file')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.log_file)

    try:
        policies = resolve_policies(build_name=args.buildname, days=args.days, releases=args.releases,
                                    policy_file=args.policyfile, dry_run=not args.delete)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    client = ArtifactoryClient(args.server_uri, args.user, args.password)
    rows = []
    all_ok = True
    try:
        for policy in policies:
            policy_rows, ok = run_policy(client, policy)
            rows.extend(policy_rows)
            all_ok = all_ok and ok
    finally:
        client.close()

    if args.report:
        write_report(rows, args.report)

    return 0 if all_ok else 1


if __name__ == "__main__":
    sys.exit(main())
