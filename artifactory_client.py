#!/usr/bin/env python3
"""
Artifactory Build Info Client

Thin wrapper around the Artifactory build REST API used by the retention
cleanup. Reads build numbers and build info (status history) for a build
name and issues build deletions that also remove the build's artifacts.

Endpoints:
- GET    {server}/api/build/{buildname}
- GET    {server}/api/build/{buildname}/{number}
- DELETE {server}/api/build/{buildname}?buildNumbers={number}&artifacts=1
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from urllib.parse import quote

import requests

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URI = 'http://localhost:8081/artifactory'

# Artifact deletion can be slow server-side
DELETE_TIMEOUT = 1200

TIMESTAMP_FORMATS = ('%Y-%m-%dT%H:%M:%S.%f%z', '%Y-%m-%dT%H:%M:%S%z')


class TransportError(Exception):
    """A request to the build server failed or returned unusable data."""

    def __init__(self, message: str, url: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def parse_timestamp(value: str) -> datetime:
    """Parse an Artifactory ISO-8601 timestamp into an aware datetime (UTC when no offset)."""
    if not isinstance(value, str):
        raise TransportError(f"Invalid timestamp: {value!r}")

    parsed = None
    for fmt in TIMESTAMP_FORMATS:
        try:
            parsed = datetime.strptime(value, fmt)
            break
        except ValueError:
            continue

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise TransportError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class BuildItem:
    """One build number of a build name, as listed by the server."""
    uri: str
    started: datetime

    @property
    def number(self) -> str:
        return self.uri[1:] if self.uri.startswith('/') else self.uri

    @classmethod
    def from_json(cls, data: dict) -> 'BuildItem':
        try:
            if not isinstance(data['uri'], str):
                raise TransportError(f"Malformed build uri: {data['uri']!r}")
            return cls(uri=data['uri'], started=parse_timestamp(data['started']))
        except (KeyError, TypeError):
            raise TransportError(f"Malformed build entry: {data!r}")


@dataclass(frozen=True)
class StatusEvent:
    status: str
    timestamp: datetime


@dataclass(frozen=True)
class BuildDetail:
    """Status history of a single build."""
    statuses: Tuple[StatusEvent, ...] = ()

    def is_released(self, marker: str) -> bool:
        return any(event.status == marker for event in self.statuses)

    def release_date(self) -> Optional[datetime]:
        # Latest timestamp over every status, not only the release-labelled ones
        if not self.statuses:
            return None
        return max(event.timestamp for event in self.statuses)

    @classmethod
    def from_json(cls, data: dict) -> 'BuildDetail':
        try:
            raw_statuses = data['buildInfo'].get('statuses') or []
            statuses = tuple(
                StatusEvent(status=entry['status'], timestamp=parse_timestamp(entry['timestamp']))
                for entry in raw_statuses
            )
        except (KeyError, TypeError, AttributeError):
            raise TransportError("Malformed build info response")
        return cls(statuses=statuses)


class ArtifactoryClient:
    def __init__(self, server_uri: str = DEFAULT_SERVER_URI, user: Optional[str] = None,
                 password: Optional[str] = None, session: Optional[requests.Session] = None):
        self.server_uri = server_uri.rstrip('/')
        self.api_uri = f"{self.server_uri}/api"
        self.session = session or requests.Session()
        self.auth = (user, password) if user else None

    def build_url(self, build_name: str) -> str:
        return f"{self.api_uri}/build/{quote(str(build_name))}"

    def delete_url(self, build_name: str, item: BuildItem) -> str:
        return f"{self.build_url(build_name)}?buildNumbers={item.number}&artifacts=1"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(method, url, auth=self.auth, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}", url=url)

        if not response.ok:
            raise TransportError(f"{method} {url} returned HTTP {response.status_code}",
                                 url=url, status_code=response.status_code)
        return response

    def _get_json(self, url: str) -> dict:
        response = self._request('GET', url)
        try:
            return response.json()
        except ValueError:
            raise TransportError(f"GET {url} returned invalid JSON", url=url,
                                 status_code=response.status_code)

    def list_builds(self, build_name: str) -> List[BuildItem]:
        """Return every build number recorded for build_name (empty if the server knows none)."""
        url = self.build_url(build_name)
        try:
            data = self._get_json(url)
        except TransportError as e:
            if e.status_code == 404:
                logger.debug(f"No build info recorded for {build_name}")
                return []
            raise

        if not isinstance(data, dict):
            raise TransportError(f"GET {url} returned unexpected payload", url=url)
        return [BuildItem.from_json(entry) for entry in data.get('buildsNumbers') or []]

    def get_build_detail(self, build_name: str, item: BuildItem) -> BuildDetail:
        url = f"{self.build_url(build_name)}{item.uri}"
        return BuildDetail.from_json(self._get_json(url))

    def delete_build(self, build_name: str, item: BuildItem) -> None:
        """Delete one build record together with its artifacts."""
        self._request('DELETE', self.delete_url(build_name, item), timeout=DELETE_TIMEOUT)

    def close(self):
        self.session.close()
