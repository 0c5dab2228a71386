"""
redirects.py

Redirect tracer: follows HTTP 3xx, meta-refresh and simple JavaScript
redirects one hop at a time, with a visited set that lives only for the
current trace.

Public function:
    trace_redirects(url, ctx) -> RedirectAnalysis
"""

import logging
import re
from typing import Optional, Set
from urllib.parse import urljoin, urlparse

from ..errors import FetchFailed
from ..models import RedirectAnalysis, RedirectHop, RedirectKind, add_flag
from ..validation import is_ip_literal

logger = logging.getLogger("redirects")

META_REFRESH_RE = re.compile(
    r"""<meta[^>]*http-equiv=["']?refresh["']?[^>]*content=["']\s*\d*\s*;?\s*url\s*=\s*['"]?([^"'>\s]+)""",
    re.I,
)
# only plain top-level assignments, e.g. window.location.href = "https://..."
JS_REDIRECT_RE = re.compile(
    r"""(?<![\w.-])(?:(?:window|document)\.)?location(?:\.href)?\s*=\s*["']([^"']+)["']"""
    r"""|(?<![\w.-])(?:(?:window|document)\.)?location\.replace\(\s*["']([^"']+)["']\s*\)""",
    re.I,
)
GEO_REDIRECT_HEADERS = ("x-geo-redirect", "cf-geo-redirect")
EXCESSIVE_HOPS = 5


def _is_redirect(status: int) -> bool:
    return 300 <= status < 400


def _body_redirect(body: str) -> Optional[tuple]:
    match = META_REFRESH_RE.search(body or "")
    if match:
        return RedirectKind.META, match.group(1)
    match = JS_REDIRECT_RE.search(body or "")
    if match:
        return RedirectKind.JAVASCRIPT, match.group(1) or match.group(2)
    return None


def trace_redirects(url: str, ctx) -> RedirectAnalysis:
    """
    Resolve the final URL for ``url`` and flag risky redirect behaviour.

    The chain never holds more than ``max_redirects`` hops and never revisits a
    URL: a repeat is recorded as ``redirect_loop_detected`` and ends the trace.
    A network failure ends the trace with ``error="FETCH_FAILED"`` and keeps
    the hops collected so far.
    """
    max_redirects = ctx.settings.max_redirects
    chain = []
    flags = []
    visited: Set[str] = set()
    current = url
    error = None

    for _ in range(max_redirects):
        if current in visited:
            add_flag(flags, "redirect_loop_detected")
            break
        visited.add(current)

        try:
            resp = ctx.fetcher.fetch(current, follow_redirects=False)
        except FetchFailed as e:
            logger.warning("Redirect trace stopped at %s: %s", current, e.detail or e)
            error = e.code.value
            break

        hop = RedirectHop(url=current, status_code=resp.status, response_headers=dict(resp.headers))
        chain.append(hop)

        if any(h in resp.headers for h in GEO_REDIRECT_HEADERS):
            add_flag(flags, "geo_based_redirect")

        location = resp.header("location")
        if _is_redirect(resp.status) and location:
            hop.redirect_kind = RedirectKind.HTTP
            target = urljoin(current, location.strip())
        else:
            body_redirect = _body_redirect(resp.body) if 200 <= resp.status < 300 else None
            if not body_redirect:
                break
            hop.redirect_kind, raw_target = body_redirect
            add_flag(flags, "meta_refresh_redirect" if hop.redirect_kind == RedirectKind.META
                     else "javascript_redirect")
            target = urljoin(current, raw_target.strip())

        if urlparse(current).scheme == "https" and urlparse(target).scheme == "http":
            add_flag(flags, "https_to_http_downgrade")
        if is_ip_literal(urlparse(target).hostname or ""):
            add_flag(flags, "ip_based_redirect")
        current = target
    else:
        # ran out of hops while still being redirected
        if current in visited:
            add_flag(flags, "redirect_loop_detected")

    if len(chain) > EXCESSIVE_HOPS:
        add_flag(flags, "excessive_redirects")

    return RedirectAnalysis(
        chain=chain,
        final_url=current,
        flags=flags,
        risk_score=ctx.score_flags(flags),
        error=error,
    )
