from webwatcher.app.redirects import trace_redirects
from webwatcher.errors import FetchFailed
from webwatcher.models import RedirectKind

from fakes import FakeFetcher, make_context, page, redirect


def _no_consecutive_duplicates(chain):
    return all(a.url != b.url for a, b in zip(chain, chain[1:]))


def test_https_to_http_downgrade_is_flagged():
    fetcher = FakeFetcher({
        "https://secure.example/": redirect("https://secure.example/", "http://secure.example/"),
        "http://secure.example/": page("http://secure.example/", "<html>hi</html>"),
    })
    res = trace_redirects("https://secure.example/", make_context(fetcher))

    assert "https_to_http_downgrade" in res.flags
    assert res.risk_score >= 40
    assert [h.redirect_kind for h in res.chain] == [RedirectKind.HTTP, RedirectKind.NONE]
    assert res.final_url == "http://secure.example/"
    assert res.error is None


def test_relative_location_is_resolved_against_current_url():
    fetcher = FakeFetcher({
        "https://a.example/start": redirect("https://a.example/start", "/landing", status=302),
        "https://a.example/landing": page("https://a.example/landing"),
    })
    res = trace_redirects("https://a.example/start", make_context(fetcher))
    assert res.final_url == "https://a.example/landing"
    assert res.flags == []
    assert res.risk_score == 0


def test_loop_is_detected_and_chain_stops():
    fetcher = FakeFetcher({
        "https://a.example/": redirect("https://a.example/", "https://b.example/"),
        "https://b.example/": redirect("https://b.example/", "https://a.example/"),
    })
    res = trace_redirects("https://a.example/", make_context(fetcher))

    assert "redirect_loop_detected" in res.flags
    assert [h.url for h in res.chain] == ["https://a.example/", "https://b.example/"]
    assert _no_consecutive_duplicates(res.chain)
    assert res.risk_score >= 30


def test_self_redirect_records_a_single_hop():
    fetcher = FakeFetcher({"https://a.example/": redirect("https://a.example/", "https://a.example/")})
    res = trace_redirects("https://a.example/", make_context(fetcher))
    assert len(res.chain) == 1
    assert "redirect_loop_detected" in res.flags


def test_chain_is_bounded_by_max_redirects():
    routes = {
        f"https://hop.example/{i}": redirect(f"https://hop.example/{i}", f"https://hop.example/{i + 1}")
        for i in range(50)
    }
    res = trace_redirects("https://hop.example/0", make_context(FakeFetcher(routes)))

    assert len(res.chain) == 10
    assert "excessive_redirects" in res.flags
    assert "redirect_loop_detected" not in res.flags
    assert _no_consecutive_duplicates(res.chain)
    assert 0 <= res.risk_score <= 100


def test_meta_refresh_becomes_a_meta_hop():
    body = '<html><head><meta http-equiv="refresh" content="0; url=https://other.example/next"></head></html>'
    fetcher = FakeFetcher({
        "https://a.example/": page("https://a.example/", body),
        "https://other.example/next": page("https://other.example/next", "done"),
    })
    res = trace_redirects("https://a.example/", make_context(fetcher))

    assert res.chain[0].redirect_kind == RedirectKind.META
    assert "meta_refresh_redirect" in res.flags
    assert res.final_url == "https://other.example/next"
    assert len(res.chain) == 2


def test_javascript_redirect_is_followed():
    body = '<script>window.location.href = "https://landing.example/";</script>'
    fetcher = FakeFetcher({
        "https://a.example/": page("https://a.example/", body),
        "https://landing.example/": page("https://landing.example/"),
    })
    res = trace_redirects("https://a.example/", make_context(fetcher))
    assert res.chain[0].redirect_kind == RedirectKind.JAVASCRIPT
    assert "javascript_redirect" in res.flags
    assert res.final_url == "https://landing.example/"


def test_data_attribute_is_not_mistaken_for_a_redirect():
    body = '<div data-location="https://elsewhere.example/">x</div>'
    fetcher = FakeFetcher({"https://a.example/": page("https://a.example/", body)})
    res = trace_redirects("https://a.example/", make_context(fetcher))
    assert len(res.chain) == 1
    assert res.flags == []


def test_ip_literal_target_and_geo_headers():
    fetcher = FakeFetcher({
        "http://a.example/": redirect("http://a.example/", "http://192.0.2.10/login",
                                      headers={"x-geo-redirect": "US"}),
        "http://192.0.2.10/login": page("http://192.0.2.10/login"),
    })
    res = trace_redirects("http://a.example/", make_context(fetcher))
    assert "ip_based_redirect" in res.flags
    assert "geo_based_redirect" in res.flags
    assert "https_to_http_downgrade" not in res.flags
    assert res.risk_score == 35


def test_fetch_failure_is_surfaced_not_silent():
    fetcher = FakeFetcher({"https://down.example/": FetchFailed("boom", detail="connection refused")})
    res = trace_redirects("https://down.example/", make_context(fetcher))
    assert res.error == "FETCH_FAILED"
    assert res.chain == []
    assert res.flags == []
    assert res.risk_score == 0


def test_fetch_failure_mid_chain_keeps_collected_hops():
    fetcher = FakeFetcher({
        "https://a.example/": redirect("https://a.example/", "https://gone.example/"),
    })
    res = trace_redirects("https://a.example/", make_context(fetcher))
    assert res.error == "FETCH_FAILED"
    assert [h.url for h in res.chain] == ["https://a.example/"]
