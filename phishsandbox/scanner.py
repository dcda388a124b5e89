# scanner.py
"""
Main orchestration of the phishing analysis pipeline.

    analyze_url(url)                  URL features -> URL model -> decision
    analyze_rendered(url, timeout_ms) browser fetch -> HTML features
                                      -> HTML model -> decision
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
import logging
import math
from typing import Any, Dict, Optional, Tuple

from . import ml_model
from .extract_features import (
    HTML_FEATURE_NAMES,
    URL_FEATURE_NAMES,
    FeatureVector,
    as_dict,
    extract_html_features,
    extract_url_features,
)
from .html_scanner import ContentFetcher

logger = logging.getLogger("scanner")

# Inclusive lower bounds on the 0-100 risk score
BLOCK_THRESHOLD = 70
WARN_THRESHOLD = 40


class Decision(str, Enum):
    ALLOW = "ALLOW"
    WARN = "WARN"
    BLOCK = "BLOCK"


@dataclass(frozen=True)
class AnalysisResult:
    url: str
    risk_score: int
    decision: Decision
    features: FeatureVector
    html_length: Optional[int] = None
    final_url: Optional[str] = None
    bypassed: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "url": self.url,
            "riskScore": self.risk_score,
            "decision": self.decision.value,
            "features": list(self.features),
        }
        if self.html_length is not None:
            out["htmlLength"] = self.html_length
        if self.final_url is not None:
            out["finalUrl"] = self.final_url
        if self.bypassed is not None:
            out["bypassed"] = self.bypassed
        return out


def risk_score(score: float) -> int:
    """score in [0, 1] -> integer percentage, halves rounded up.

    Rounds the decimal form of the score, so 0.695 gives 70 even though
    0.695 * 100 is 69.4999... in binary floating point. NaN counts as
    maximal risk.
    """
    score = float(score)
    if math.isnan(score):
        return 100
    score = min(max(score, 0.0), 1.0)
    pct = Decimal(repr(score)).scaleb(2).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(pct)


def decide(score: float) -> Tuple[int, Decision]:
    pct = risk_score(score)
    if pct >= BLOCK_THRESHOLD:
        return pct, Decision.BLOCK
    if pct >= WARN_THRESHOLD:
        return pct, Decision.WARN
    return pct, Decision.ALLOW


def analyze_url(url: str, slot: Optional[ml_model.ModelSlot] = None) -> AnalysisResult:
    """URL-only analysis; needs no network once the model is loaded."""
    slot = slot or ml_model.URL_MODEL
    features = extract_url_features(url)
    score = ml_model.predict_phishing_prob(features, slot)
    pct, decision = decide(score)
    logger.info("URL analysis %s: score=%.4f risk=%d decision=%s", url, score, pct, decision.value)
    logger.debug("URL features for %s: %s", url, as_dict(URL_FEATURE_NAMES, features))
    return AnalysisResult(url=url, risk_score=pct, decision=decision, features=features)


def analyze_rendered(url: str, timeout_ms: int,
                     fetcher: Optional[ContentFetcher] = None,
                     slot: Optional[ml_model.ModelSlot] = None) -> AnalysisResult:
    """Render `url` in the browser and score the final markup.

    FetchError, ModelLoadError and InferenceError propagate to the caller;
    nothing shared is touched on failure.
    """
    slot = slot or ml_model.HTML_MODEL
    # load (or fail) before paying for a browser session
    model = slot.get()
    fetcher = fetcher or ContentFetcher(timeout_ms)

    logger.info("Fetching HTML: %s", url)
    fetched = fetcher.fetch(url)
    features = extract_html_features(fetched.final_markup)
    score = ml_model.infer(model, features)
    pct, decision = decide(score)
    logger.info("Rendered analysis %s: score=%.4f risk=%d decision=%s bypassed=%s",
                url, score, pct, decision.value, fetched.bypassed)
    logger.debug("HTML features for %s: %s", url, as_dict(HTML_FEATURE_NAMES, features))
    return AnalysisResult(
        url=url,
        risk_score=pct,
        decision=decision,
        features=features,
        html_length=len(fetched.final_markup),
        final_url=fetched.final_url,
        bypassed=fetched.bypassed,
    )
