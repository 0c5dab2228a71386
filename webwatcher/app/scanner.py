"""
scanner.py
Main orchestration of the URL risk pipeline.

The redirect tracer runs first; content, forms, TLS and threat intel then run
concurrently against the resolved URL. Scoring waits for every branch to
finish or time out.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Dict, Optional

from ..context import ScanContext
from ..errors import ErrorCode, InvalidInput, WebWatcherError
from ..models import FORM_RISK, PAGE_CONTENT, REDIRECT, THREAT_INTEL, TLS_SECURITY, ScanOutcome, ScanResults
from ..scoring import score_risk
from ..validation import normalize_url, validate_email
from .content import scan_page_content
from .forms import inspect_form_risk
from .redirects import trace_redirects
from .threat_intel import aggregate_threat_intel, build_target
from .tls_audit import audit_tls

logger = logging.getLogger("scanner")


def _intel_branch(url: str, ctx: ScanContext, email: Optional[str]):
    return aggregate_threat_intel(build_target(url, ctx, email), ctx)


def _scan_target(final_url: str, original: str) -> str:
    try:
        return normalize_url(final_url)
    except InvalidInput:
        # e.g. a javascript redirect to mailto: or data:
        logger.warning("Redirect ended at unusable URL %r; scanning %s instead", final_url, original)
        return original


def analyze_url(url: str, ctx: Optional[ScanContext] = None, email: Optional[str] = None) -> ScanResults:
    """
    Run every analyzer on ``url`` and return their raw outputs.

    Raises InvalidInput for a malformed URL or email; any other failure is
    recorded in ``ScanResults.inconclusive`` and the scan carries on.
    """
    url = normalize_url(url)
    if email is not None:
        email = validate_email(email)
    ctx = ctx or ScanContext.default()

    results = ScanResults(url=url)
    results.redirect_analysis = trace_redirects(url, ctx)
    if results.redirect_analysis.error:
        results.inconclusive[REDIRECT] = results.redirect_analysis.error
    target = _scan_target(results.final_url, url)

    branches = {
        PAGE_CONTENT: (scan_page_content, target, ctx),
        FORM_RISK: (inspect_form_risk, target, ctx),
        TLS_SECURITY: (audit_tls, target, ctx),
        THREAT_INTEL: (_intel_branch, target, ctx, email),
    }
    outputs: Dict[str, Any] = {}
    pool = ThreadPoolExecutor(max_workers=len(branches))
    try:
        futures = {name: pool.submit(*call) for name, call in branches.items()}
        deadline = time.monotonic() + ctx.settings.branch_timeout
        for name, future in futures.items():
            remaining = max(0.0, deadline - time.monotonic())
            try:
                outputs[name] = future.result(timeout=remaining)
            except FutureTimeout:
                logger.warning("%s check timed out for %s", name, target)
                results.inconclusive[name] = ErrorCode.FETCH_FAILED.value
            except WebWatcherError as e:
                logger.warning("%s check failed for %s: %s", name, target, e)
                results.inconclusive[name] = e.code.value
            except Exception:
                logger.exception("%s check crashed for %s", name, target)
                results.inconclusive[name] = ErrorCode.FETCH_FAILED.value
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    results.page_content = outputs.get(PAGE_CONTENT)
    if results.page_content is not None and results.page_content.error:
        results.inconclusive[PAGE_CONTENT] = results.page_content.error
    results.form_risks = outputs.get(FORM_RISK) or []
    results.tls_audit = outputs.get(TLS_SECURITY)
    if results.tls_audit is not None:
        for part in results.tls_audit.unavailable:
            results.inconclusive[f"{TLS_SECURITY}.{part}"] = ErrorCode.FETCH_FAILED.value
    results.threat_intel = outputs.get(THREAT_INTEL) or {}
    for name, intel in results.threat_intel.items():
        if intel.error:
            results.inconclusive[f"{THREAT_INTEL}.{name}"] = intel.error
    return results


def scan_url(url: str, service, ctx: Optional[ScanContext] = None, email: Optional[str] = None,
             metadata: Optional[Dict[str, Any]] = None) -> ScanOutcome:
    """
    Full pipeline: collect component results, score them and file an incident.

    Without an explicit context, one is built with the service's current
    learned flag adjustments.
    """
    if ctx is None:
        ctx = ScanContext.default(settings=service.settings, flag_adjustments=service.learning.adjustments())

    logger.info("collecting: %s", url)
    results = analyze_url(url, ctx, email=email)
    risk = score_risk(results, ctx.settings, ctx.flag_adjustments)
    logger.info("scored: %s -> %d (%s)", results.url, risk.overall_risk_score, risk.severity.value)
    incident = service.generate_incident_report(results.url, results, risk, metadata)
    logger.info("reported: %s as %s", results.url, incident.id)
    return ScanOutcome(results=results, risk=risk, incident=incident)


# CLI testing
if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    for u in ["http://example.com", "https://www.google.com"]:
        print("=" * 80)
        res = analyze_url(u)
        print(score_risk(res).to_dict())
