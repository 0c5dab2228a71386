# forms.py
"""
Form risk analyzer: fetch page HTML and classify every <form> by where it
submits and which sensitive fields it collects.

Primary function:
    inspect_form_risk(url, ctx) -> list[FormRisk]

Field classification is name/type pattern matching only; a form that builds
its inputs from script, or hides intent behind neutral names, is not caught.
"""

import logging
import re
from typing import List
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from ..models import FormField, FormRisk, add_flag

logger = logging.getLogger("forms")

SEED_PHRASE_RE = re.compile(r"seed|phrase|private.*key|mnemonic|recovery", re.I)
CARD_RE = re.compile(r"card|cvv|ccv|credit", re.I)


def classify_field(name: str, field_type: str) -> List[str]:
    flags = []
    if field_type.lower() == "password":
        flags.append("password_field")
    if SEED_PHRASE_RE.search(name):
        flags.append("seed_phrase_collection")
    if CARD_RE.search(name):
        flags.append("credit_card_collection")
    return flags


def analyze_forms(soup: BeautifulSoup, base_url: str, ctx) -> List[FormRisk]:
    results: List[FormRisk] = []
    page_host = (urlparse(base_url).hostname or "").lower()

    for index, form in enumerate(soup.find_all("form")):
        flags = []
        action = (form.get("action") or "").strip()
        method = (form.get("method") or "GET").upper()
        action_full = urljoin(base_url, action) if action else base_url

        # If form posts to a different host than the page, suspicious
        action_host = (urlparse(action_full).hostname or "").lower()
        if action and action_host and action_host != page_host:
            add_flag(flags, "cross_domain_form_submission")

        fields = []
        for inp in form.find_all("input"):
            name = inp.get("name") or ""
            field_type = (inp.get("type") or "text").lower()
            field_flags = classify_field(name, field_type)
            for flag in field_flags:
                add_flag(flags, flag)
            fields.append(FormField(name=name, type=field_type, suspicious=bool(field_flags)))

        results.append(FormRisk(
            form_index=index,
            action=action_full,
            method=method,
            fields=fields,
            flags=flags,
            risk_score=ctx.score_flags(flags),
        ))
    return results


def inspect_form_risk(url: str, ctx) -> List[FormRisk]:
    """
    Fetch ``url`` (independently of the content inspector) and return one
    FormRisk per form, in document order. Fetch errors propagate as FetchFailed.
    """
    resp = ctx.fetcher.fetch(url, follow_redirects=True)
    soup = BeautifulSoup(resp.body or "", "html.parser")
    forms = analyze_forms(soup, resp.url or url, ctx)
    logger.debug("%d form(s) inspected on %s", len(forms), url)
    return forms
