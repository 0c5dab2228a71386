import pytest

from webwatcher.config import Settings
from webwatcher.models import (FormField, FormRisk, PageContent, RedirectAnalysis, ScanResults, Severity,
                               ThreatIntelResult, TLSAudit)
from webwatcher.scoring import collect_findings, component_scores, score_risk, severity_for


def _quiet_results(**intel_scores):
    results = ScanResults(
        url="https://site.example/",
        redirect_analysis=RedirectAnalysis(chain=[], final_url="https://site.example/"),
        page_content=PageContent(html="<html></html>"),
        form_risks=[],
        tls_audit=TLSAudit(),
    )
    for name, (flags, score) in intel_scores.items():
        results.threat_intel[name] = ThreatIntelResult(source=name, flags=flags, risk_score=score)
    return results


def test_all_quiet_is_low():
    risk = score_risk(_quiet_results(reputation=([], 0), whois=([], 0)))
    assert risk.severity == Severity.LOW
    assert risk.overall_risk_score < 30
    assert "No risk signals found." in risk.explanation


def test_single_strong_signal_is_not_diluted():
    risk = score_risk(_quiet_results(breach=(["high_breach_count"], 95), whois=([], 0), ip_risk=([], 0)))
    assert risk.severity in (Severity.HIGH, Severity.CRITICAL)
    assert risk.overall_risk_score == 95


@pytest.mark.parametrize("score,expected", [
    (0, Severity.LOW), (29, Severity.LOW), (30, Severity.MEDIUM), (59, Severity.MEDIUM),
    (60, Severity.HIGH), (84, Severity.HIGH), (85, Severity.CRITICAL), (100, Severity.CRITICAL),
])
def test_severity_bands(score, expected):
    assert severity_for(score) == expected


def test_many_weak_signals_escalate_but_are_capped():
    results = _quiet_results()
    results.redirect_analysis.flags = ["https_to_http_downgrade"]
    results.redirect_analysis.risk_score = 100
    results.page_content.risk_score = 100
    results.tls_audit.risk_score = 100
    results.form_risks = [FormRisk(form_index=0, action="https://x.example/", method="POST", risk_score=100)]
    risk = score_risk(results)
    assert risk.overall_risk_score == 80
    assert risk.severity == Severity.HIGH


def test_strong_and_weak_combine():
    results = _quiet_results(reputation=(["phishing_feed_listed"], 90))
    results.page_content.flags = ["brand_impersonation_paypal", "login_form_detected"]
    results.page_content.risk_score = 50
    # weak = 0.4 * 50 = 20; overall = 90 + 0.25 * 20
    assert score_risk(results).overall_risk_score == 95


def test_score_risk_is_deterministic():
    results = _quiet_results(reputation=(["suspicious_tld"], 20), whois=(["newly_registered_domain"], 40))
    results.page_content.flags = ["obfuscated_javascript", "excessive_iframes"]
    results.page_content.risk_score = 45
    results.inconclusive = {"threat_intel.ip_risk": "FETCH_FAILED", "form_risk": "FETCH_FAILED"}
    assert score_risk(results) == score_risk(results)


def test_explanation_orders_by_risk_and_lists_inconclusive_checks():
    results = _quiet_results(whois=(["newly_registered_domain"], 40))
    results.tls_audit.flags = ["missing_csp"]
    results.tls_audit.risk_score = 15
    results.inconclusive = {"threat_intel.ip_risk": "FETCH_FAILED"}
    risk = score_risk(results)

    explanation = risk.explanation
    assert explanation.index("registered less than 30 days") < explanation.index("Content-Security-Policy")
    assert "Inconclusive checks: threat_intel.ip_risk." in explanation
    assert risk.inconclusive == ["threat_intel.ip_risk"]


def test_findings_are_tagged_by_component():
    results = _quiet_results(reputation=(["phishing_feed_listed"], 90))
    results.form_risks = [FormRisk(form_index=2, action="https://x.example/", method="POST",
                                   fields=[FormField("seed", "text", True)],
                                   flags=["seed_phrase_collection"], risk_score=50)]
    results.inconclusive = {"page_content": "FETCH_FAILED"}
    findings = collect_findings(results)

    form = next(f for f in findings if f.type == "form_risk")
    assert form.description.startswith("Form 2: ")
    assert form.risk_score == 50
    intel = next(f for f in findings if f.type == "threat_intel")
    assert intel.flag == "phishing_feed_listed" and intel.risk_score == 90
    marker = findings[-1]
    assert marker.flag == "inconclusive" and marker.risk_score == 0 and marker.type == "page_content"


def test_learned_adjustments_shift_component_scores():
    results = _quiet_results()
    results.page_content.flags = ["login_form_detected"]
    results.page_content.risk_score = 20
    assert component_scores(results)["page_content"] == 20
    assert component_scores(results, adjustments={"login_form_detected": -50})["page_content"] == 0
    assert component_scores(results, adjustments={"login_form_detected": 10})["page_content"] == 30


def test_over_adjusted_flag_does_not_erase_other_flags():
    results = _quiet_results()
    results.page_content.flags = ["login_form_detected", "obfuscated_javascript"]
    results.page_content.risk_score = 45
    adjustments = {"login_form_detected": -50}

    assert component_scores(results, adjustments=adjustments)["page_content"] == 25
    findings = {f.flag: f.risk_score for f in collect_findings(results, adjustments=adjustments)}
    assert findings == {"login_form_detected": 0, "obfuscated_javascript": 25}


def test_adjustment_below_saturation_keeps_component_capped():
    results = _quiet_results()
    results.page_content.flags = ["login_form_detected", "excessive_hidden_inputs", "obfuscated_javascript",
                                  "suspicious_javascript_clipboard_keylog", "brand_impersonation_paypal"]
    results.page_content.risk_score = 100
    assert component_scores(results, adjustments={"excessive_hidden_inputs": -5})["page_content"] == 100


def test_intel_adjustments_apply_on_top_of_source_score():
    results = _quiet_results(whois=(["newly_registered_domain", "custom_signal"], 40))
    scores = component_scores(results, adjustments={"newly_registered_domain": 10, "custom_signal": -30})
    assert scores["whois"] == 50
    scores = component_scores(results, adjustments={"newly_registered_domain": -60})
    assert scores["whois"] == 0


def test_prefixed_flags_resolve_to_base_weight():
    settings = Settings()
    assert settings.weight("brand_impersonation_paypal") == 30
    assert settings.weight("missing_hsts") == 20
    assert settings.weight("no_such_flag") is None
