import pytest

from phishsandbox.extract_features import (
    HTML_FEATURE_NAMES,
    URL_FEATURE_NAMES,
    SUSPICIOUS_KEYWORDS,
    extract_html_features,
    extract_url_features,
)


def test_url_features_ip_and_suspicious_tld():
    feats = extract_url_features("http://192.168.0.1-secure.top/login")
    assert feats == (35.0, 0.0, 1.0, 4.0, 0.0, 1.0, 1.0)


@pytest.mark.parametrize("url", [
    "",
    "https://example.com",
    "not a url at all",
    "http://user@evil.xyz/a-b-c",
    "https://пример.рф/путь",
])
def test_url_features_always_seven_floats(url):
    feats = extract_url_features(url)
    assert len(feats) == len(URL_FEATURE_NAMES) == 7
    assert all(isinstance(v, float) for v in feats)


def test_url_features_counts_and_flags():
    feats = dict(zip(URL_FEATURE_NAMES, extract_url_features("https://a@b-c.d-e.click/x")))
    assert feats["num_at"] == 1
    assert feats["num_hyphens"] == 2
    assert feats["num_dots"] == 2
    assert feats["is_https"] == 1
    assert feats["has_ip"] == 0
    assert feats["suspicious_tld"] == 1


def test_url_features_plain_domain():
    feats = extract_url_features("http://example.com/index.html")
    assert feats[4:] == (0.0, 0.0, 0.0)


def test_url_ip_pattern_is_ascii_only():
    # Arabic-Indic digits are not an IP address
    assert extract_url_features("http://١٢.٣.٤.٥/")[5] == 0
    assert extract_url_features("http://12.3.4.5/")[5] == 1


def test_event_handler_names_are_ascii_only():
    assert extract_html_features('<div onév="x()">')[12] == 0
    assert extract_html_features('<div on_custom1="x()">')[12] == 1


def test_url_features_none_is_empty():
    assert extract_url_features(None) == (0.0,) * 7


@pytest.mark.parametrize("html", [None, "", 123, b"<form>", ["<form>"]])
def test_html_features_zero_vector_without_markup(html):
    assert extract_html_features(html) == (0.0,) * 15


def test_html_features_login_form_with_keyword():
    html = (
        '<html><body><form action="/login">'
        '<input type="text" name="u">'
        '<input type="password" name="p">'
        "<input type='password' name='p2'>"
        "</form><p>Please verify your account</p></body></html>"
    )
    feats = extract_html_features(html)
    assert len(feats) == len(HTML_FEATURE_NAMES) == 15
    assert feats[1] == 1  # forms
    assert feats[2] == 3  # inputs
    assert feats[3] == 2  # password inputs
    assert feats[10] == 1  # keyword flag


def test_html_features_case_insensitive_tags():
    feats = extract_html_features("<FORM><INPUT TYPE='PASSWORD'></FORM>")
    assert feats[1] == 1
    assert feats[2] == 1
    assert feats[3] == 1


def test_html_features_script_counts():
    html = '<script src="a.js"></script><script>var x = 1;</script><SCRIPT>y()</SCRIPT>'
    feats = extract_html_features(html)
    assert feats[4] == 1
    assert feats[5] == 2


def test_html_features_inline_scripts_never_negative():
    # unterminated tag: matches the external-source pattern only
    feats = extract_html_features('<p>x</p><script src="x.js"')
    assert feats[4] == 1
    assert feats[5] == 0


def test_html_features_length_normalised_and_capped():
    assert extract_html_features("a" * 5000)[0] == pytest.approx(0.5)
    assert extract_html_features("a" * 200000)[0] == 10


def test_html_features_structural_tags():
    html = (
        '<html><head><meta charset="utf-8"><meta name="x">'
        '<link rel="stylesheet" href="/s.css"><link rel="icon" href="/f.ico"></head>'
        '<body><a href="/one">1</a><a name="anchor">2</a>'
        '<img src="/i.png"><iframe src="/f"></iframe></body></html>'
    )
    feats = dict(zip(HTML_FEATURE_NAMES, extract_html_features(html)))
    assert feats["meta_count"] == 2
    assert feats["stylesheet_count"] == 1
    assert feats["link_count"] == 1
    assert feats["image_count"] == 1
    assert feats["iframe_count"] == 1


def test_html_features_external_domains_skip_malformed():
    html = "http://a.com http://b.com/x HTTP://A.com http://[::1 http://c.com:99999/"
    assert extract_html_features(html)[11] == pytest.approx(0.2)


def test_html_features_external_domain_ratio_capped():
    html = " ".join(f"https://host{i}.example/" for i in range(15))
    assert extract_html_features(html)[11] == 1.0


def test_html_features_event_handlers_and_encoded_markers():
    html = '<body onload="x()"><button onclick = "y()">go</button></body>'
    assert extract_html_features(html)[12] == 2

    encoded = '<img src="data:image/png;base64,AAAA"><a href="javascript:void(0)">&#x41;%2F</a>'
    assert extract_html_features(encoded)[14] == 4


def test_html_features_keyword_list_is_replaceable():
    html = "<p>hello there</p>"
    assert extract_html_features(html)[10] == 0
    assert extract_html_features(html, keywords=("hello",))[10] == 1


def test_keyword_list_keeps_verify_variants():
    assert "verify z" in SUSPICIOUS_KEYWORDS
    assert "verify 0" in SUSPICIOUS_KEYWORDS
