"""
content.py

Page content inspector. Counts DOM constructs and looks for phishing markers
with plain pattern matching over the raw HTML. This is a cheap heuristic, not
a DOM parse: heavily obfuscated or script-built pages can slip past it.

Public function:
    scan_page_content(url, ctx) -> PageContent
"""

import logging
import re

from ..errors import FetchFailed
from ..models import DomCounts, PageContent, add_flag
from ..validation import hostname_of, is_ip_literal

logger = logging.getLogger("content")

BRANDS = ("paypal", "apple", "google", "microsoft", "facebook", "amazon", "binance", "coinbase")
# second-level suffixes where the owner label sits one level further left
MULTI_PART_SUFFIXES = {"co", "com", "net", "org", "gov", "ac", "edu"}

FORM_RE = re.compile(r"<form\b", re.I)
SCRIPT_RE = re.compile(r"<script\b", re.I)
IFRAME_RE = re.compile(r"<iframe\b", re.I)
EXTERNAL_LINK_RE = re.compile(r"""href=["']https?://""", re.I)
PASSWORD_RE = re.compile(r"""type=["']?password""", re.I)
LOGIN_TEXT_RE = re.compile(r"login|log in|signin|sign in", re.I)
HIDDEN_INPUT_RE = re.compile(r"""<input[^>]*type=["']?hidden""", re.I)
KEYLOG_RE = re.compile(r"clipboard|keylog|keypress|keydown", re.I)
OBFUSCATION_RE = re.compile(r"eval\(|atob\(|fromCharCode", re.I)

MAX_HIDDEN_INPUTS = 5
MAX_IFRAMES = 3


def registrable_label(host: str) -> str:
    """
    Owner label of a hostname: "paypal" for www.paypal.com and paypal.co.uk.

    A rough public-suffix approximation; IP literals return themselves.
    """
    host = host.rstrip(".").lower()
    if is_ip_literal(host):
        return host
    parts = host.split(".")
    if len(parts) >= 3 and parts[-2] in MULTI_PART_SUFFIXES and len(parts[-1]) == 2:
        return parts[-3]
    return parts[-2] if len(parts) >= 2 else parts[0]


def inspect_html(html: str, url: str, ctx) -> PageContent:
    flags = []
    lowered = html.lower()

    counts = DomCounts(
        forms=len(FORM_RE.findall(html)),
        scripts=len(SCRIPT_RE.findall(html)),
        iframes=len(IFRAME_RE.findall(html)),
        external_links=len(EXTERNAL_LINK_RE.findall(html)),
    )

    if PASSWORD_RE.search(html) and LOGIN_TEXT_RE.search(html):
        add_flag(flags, "login_form_detected")

    owner = registrable_label(hostname_of(url))
    for brand in BRANDS:
        if brand in lowered and owner != brand:
            add_flag(flags, f"brand_impersonation_{brand}")

    if len(HIDDEN_INPUT_RE.findall(html)) > MAX_HIDDEN_INPUTS:
        add_flag(flags, "excessive_hidden_inputs")
    if KEYLOG_RE.search(html):
        add_flag(flags, "suspicious_javascript_clipboard_keylog")
    if OBFUSCATION_RE.search(html):
        add_flag(flags, "obfuscated_javascript")
    if counts.iframes > MAX_IFRAMES:
        add_flag(flags, "excessive_iframes")

    return PageContent(html=html, dom_counts=counts, flags=flags, risk_score=ctx.score_flags(flags))


def scan_page_content(url: str, ctx) -> PageContent:
    """Fetch ``url`` once and inspect the body. Fetch errors yield an empty, flagged-free result."""
    try:
        resp = ctx.fetcher.fetch(url, follow_redirects=True)
    except FetchFailed as e:
        logger.warning("Content fetch failed for %s: %s", url, e.detail or e)
        return PageContent(html="", error=e.code.value)
    # brand ownership is judged against the host that actually served the page
    return inspect_html(resp.body, resp.url or url, ctx)
