"""In-process stand-ins for the network collaborators. Nothing here touches the network."""

import datetime
import time
from urllib.parse import urljoin

from webwatcher.app.threat_intel import IntelSource
from webwatcher.clients import FetchResponse
from webwatcher.config import Settings
from webwatcher.context import ScanContext
from webwatcher.errors import FetchFailed

FIXED_NOW = datetime.datetime(2026, 10, 1, 12, 0, tzinfo=datetime.timezone.utc)

SECURE_HEADERS = {
    "strict-transport-security": "max-age=63072000",
    "content-security-policy": "default-src 'self'",
    "x-frame-options": "DENY",
    "x-content-type-options": "nosniff",
    "referrer-policy": "no-referrer",
}


def page(url, body="", status=200, headers=None):
    return FetchResponse(url=url, status=status, headers=dict(headers or {}), body=body)


def redirect(url, location, status=301, headers=None):
    all_headers = {"location": location}
    all_headers.update(headers or {})
    return FetchResponse(url=url, status=status, headers=all_headers, body="")


class FakeFetcher:
    """
    Serves canned responses by URL. A value that is an exception is raised.
    With follow_redirects=True, 3xx responses are followed like requests would.
    """

    def __init__(self, routes=None, default=None):
        self.routes = dict(routes or {})
        self.default = default
        self.calls = []

    def _lookup(self, url):
        response = self.routes.get(url, self.default)
        if response is None:
            raise FetchFailed(f"fetch failed for {url}", detail="no route")
        if isinstance(response, Exception):
            raise response
        return response

    def fetch(self, url, follow_redirects=False, headers=None):
        self.calls.append((url, follow_redirects))
        response = self._lookup(url)
        hops = 0
        while follow_redirects and 300 <= response.status < 400 and response.header("location") and hops < 10:
            url = urljoin(url, response.header("location"))
            response = self._lookup(url)
            hops += 1
        if follow_redirects:
            return FetchResponse(url=url, status=response.status, headers=response.headers, body=response.body)
        return response


class FakeResolver:
    def __init__(self, records=None, fail=False):
        self.records = dict(records or {})
        self.fail = fail

    def resolve(self, domain, record_type):
        if self.fail:
            raise FetchFailed(f"DNS {record_type} lookup failed for {domain}")
        return list(self.records.get((domain, record_type), []))


class FakeCT:
    def __init__(self, entries=None, error=None):
        self.entries = list(entries or [])
        self.error = error

    def lookup(self, domain):
        if self.error is not None:
            raise self.error
        return list(self.entries)


class FakePeerFetcher:
    def __init__(self, certificate=None, error=None):
        self.certificate = certificate
        self.error = error

    def fetch(self, domain, port=443):
        if self.error is not None:
            raise self.error
        return self.certificate


class StaticSource(IntelSource):
    """Threat-intel source returning a fixed answer, raising, or sleeping first."""

    def __init__(self, name, target_kind="url", result=None, error=None, delay=0.0):
        self.name = name
        self.target_kind = target_kind
        self.result = {"flags": [], "riskScore": 0} if result is None else result
        self.error = error
        self.delay = delay
        self.seen = []

    def check(self, target):
        self.seen.append(target)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_context(fetcher=None, resolver=None, ct_log=None, certificates=None, sources=(),
                 settings=None, adjustments=None):
    return ScanContext(
        settings=settings or Settings(),
        fetcher=fetcher or FakeFetcher(),
        resolver=resolver or FakeResolver(),
        ct_log=ct_log or FakeCT(),
        certificates=certificates,
        intel_sources=list(sources),
        flag_adjustments=dict(adjustments or {}),
        clock=lambda: FIXED_NOW,
    )
