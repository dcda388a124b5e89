# extract_features.py
"""
Extracts ML-friendly features from:
- URL lexical characteristics (7 features)
- Rendered HTML markup (15 features)

Both extractors return plain tuples of floats in the exact column order the
models were trained on (see URL_FEATURE_NAMES / HTML_FEATURE_NAMES). The HTML
extractor works on raw text with regular expressions only, so malformed
markup can never abort extraction.
"""

import logging
import re
from typing import Any, Dict, Iterable, Sequence, Tuple
from urllib.parse import urlsplit

logger = logging.getLogger("extract_features")

FeatureVector = Tuple[float, ...]

URL_FEATURE_NAMES = (
    "url_length",
    "num_at",
    "num_hyphens",
    "num_dots",
    "is_https",
    "has_ip",
    "suspicious_tld",
)

HTML_FEATURE_NAMES = (
    "html_length",
    "form_count",
    "input_count",
    "password_input_count",
    "external_script_count",
    "inline_script_count",
    "stylesheet_count",
    "iframe_count",
    "link_count",
    "image_count",
    "suspicious_keywords",
    "external_domain_ratio",
    "event_handler_count",
    "meta_count",
    "encoded_string_count",
)

SUSPICIOUS_TLDS = ("xyz", "top", "click", "tk", "cyou")

IP_RE = re.compile(r"[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+")
SUSPICIOUS_TLD_RE = re.compile(r"\.(?:" + "|".join(SUSPICIOUS_TLDS) + ")")

# HTML tallies (all case-insensitive)
FORM_RE = re.compile(r"<form", re.I)
INPUT_RE = re.compile(r"<input", re.I)
PASSWORD_RE = re.compile(r"type=[\"']password[\"']", re.I)
EXTERNAL_SCRIPT_RE = re.compile(r"<script[^>]*src=", re.I)
SCRIPT_RE = re.compile(r"<script[^>]*>", re.I)
STYLESHEET_RE = re.compile(r"<link[^>]*rel=[\"']stylesheet[\"']", re.I)
IFRAME_RE = re.compile(r"<iframe", re.I)
ANCHOR_RE = re.compile(r"<a[^>]*href=", re.I)
IMG_RE = re.compile(r"<img", re.I)
EVENT_HANDLER_RE = re.compile(r"on[A-Za-z0-9_]+\s*=", re.I)
META_RE = re.compile(r"<meta", re.I)
ENCODED_RE = re.compile(r"data:|javascript:|&#x|%[0-9a-f]{2}", re.I)
ABSOLUTE_URL_RE = re.compile(r"https?://[^/\"'\s]+", re.I)

HTML_LENGTH_SCALE = 10000
HTML_LENGTH_CAP = 10
MAX_EXTERNAL_DOMAINS = 10

# Social-engineering phrases, matched as substrings of the lowercased markup.
# The "verify <x>" run is kept exactly as the model was trained with it; the
# list can be replaced through extract_html_features(keywords=...).
SUSPICIOUS_KEYWORDS = (
    "verify", "account", "suspended", "locked", "urgent", "immediate",
    "click here", "login now", "confirm", "update", "security", "phishing",
    "verify your account", "account verification", "suspended account",
    "account locked", "urgent action required", "verify identity",
    "confirm identity", "security alert", "unusual activity", "verify email",
    "verify phone", "verify payment", "payment verification", "verify card",
    "card verification", "verify bank", "bank verification", "verify login",
    "login verification", "verify password", "password verification",
    "verify information", "information verification", "verify details",
    "details verification", "verify now", "verify immediately",
    "verify urgently", "verify asap", "verify quickly", "verify soon",
    "verify today", "verify now or", "verify or", "verify to", "verify and",
    "verify your", "verify my", "verify this", "verify that", "verify it",
    "verify us", "verify them", "verify we", "verify they", "verify i",
    "verify you", "verify he", "verify she", "verify one", "verify two",
    "verify three", "verify four", "verify five", "verify six",
    "verify seven", "verify eight", "verify nine", "verify ten",
) + tuple(f"verify {c}" for c in "1234567890abcdefghijklmnopqrstuvwxyz")


def extract_url_features(url: Any) -> FeatureVector:
    """URL string -> 7 lexical features. Never fails and never touches the network."""
    if url is None:
        url = ""
    elif not isinstance(url, str):
        url = str(url)

    return (
        float(len(url)),
        float(url.count("@")),
        float(url.count("-")),
        float(url.count(".")),
        1.0 if url.startswith("https") else 0.0,
        1.0 if IP_RE.search(url) else 0.0,
        1.0 if SUSPICIOUS_TLD_RE.search(url) else 0.0,
    )


def contains_suspicious_keywords(lower_html: str, keywords: Iterable[str] = SUSPICIOUS_KEYWORDS) -> bool:
    return any(keyword in lower_html for keyword in keywords)


def external_domain_ratio(html: str) -> float:
    """Distinct hostnames of absolute http(s) URLs, capped at 10, scaled to 0..1."""
    domains = set()
    for match in ABSOLUTE_URL_RE.findall(html):
        try:
            parts = urlsplit(match)
            # .port raises on a malformed port, like a failed URL parse
            host, _ = parts.hostname, parts.port
        except ValueError:
            continue
        if host:
            domains.add(host)
    return min(len(domains), MAX_EXTERNAL_DOMAINS) / MAX_EXTERNAL_DOMAINS


def _count(pattern: "re.Pattern", text: str) -> float:
    return float(sum(1 for _ in pattern.finditer(text)))


def extract_html_features(html: Any, keywords: Sequence[str] = SUSPICIOUS_KEYWORDS) -> FeatureVector:
    """Markup -> 15 structural features; all zeros when there is no markup."""
    if not html or not isinstance(html, str):
        logger.warning("No HTML available (%s); using an all-zero feature vector", type(html).__name__)
        return (0.0,) * len(HTML_FEATURE_NAMES)

    external_scripts = _count(EXTERNAL_SCRIPT_RE, html)
    all_scripts = _count(SCRIPT_RE, html)

    return (
        min(len(html) / HTML_LENGTH_SCALE, HTML_LENGTH_CAP),
        _count(FORM_RE, html),
        _count(INPUT_RE, html),
        _count(PASSWORD_RE, html),
        external_scripts,
        max(all_scripts - external_scripts, 0.0),
        _count(STYLESHEET_RE, html),
        _count(IFRAME_RE, html),
        _count(ANCHOR_RE, html),
        _count(IMG_RE, html),
        1.0 if contains_suspicious_keywords(html.lower(), keywords) else 0.0,
        external_domain_ratio(html),
        _count(EVENT_HANDLER_RE, html),
        _count(META_RE, html),
        _count(ENCODED_RE, html),
    )


def as_dict(names: Sequence[str], vector: Sequence[float]) -> Dict[str, float]:
    """Label a feature vector with its column names (for logs and debugging)."""
    return dict(zip(names, vector))
