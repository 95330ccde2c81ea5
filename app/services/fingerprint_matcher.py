"""
app/services/fingerprint_matcher.py — Fingerprint similarity and bot heuristics
===============================================================================

Fingerprints arrive as the nested JSON produced by the browser collector:

    {
      "basic": {"userAgent", "platform", "language", "screen": {...},
                "window": {...}, "timezone": {"timezone", ...},
                "hardwareConcurrency", "deviceMemory", ...},
      "canvasHash": "...",
      "webgl": {"vendor", "renderer", "unmaskedVendor", "unmaskedRenderer"},
      "audio": {"sum", ...},
      "fonts": ["Arial", ...]
    }

Every function tolerates missing branches and values of the wrong type; an
attribute absent on either side simply does not take part in the comparison.
"""

import math
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, Tuple

_MISSING = object()

HALF_LIFE_DAYS = 30


def get_nested(obj: Any, path: str) -> Any:
    """Dotted-path lookup (``"basic.timezone.timezone"``). Returns ``_MISSING`` if absent."""
    current = obj
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current or current[part] is None:
            return _MISSING
        current = current[part]
    return current


def _exact(a: Any, b: Any) -> float:
    return 1.0 if a == b else 0.0


def jaccard(a: Any, b: Any) -> float:
    if not isinstance(a, list) or not isinstance(b, list):
        return 0.0
    set_a = {x for x in a if isinstance(x, str)}
    set_b = {x for x in b if isinstance(x, str)}
    union = set_a | set_b
    return len(set_a & set_b) / len(union) if union else 0.0


def _same_screen(a: Any, b: Any) -> float:
    if not isinstance(a, dict) or not isinstance(b, dict):
        return 0.0
    return 1.0 if a.get("width") == b.get("width") and a.get("height") == b.get("height") else 0.0


class WeightedAttribute(NamedTuple):
    key: str
    weight: float
    compare: Callable[[Any, Any], float]


FINGERPRINT_WEIGHTS: Tuple[WeightedAttribute, ...] = (
    WeightedAttribute("canvasHash",                0.25, _exact),
    WeightedAttribute("webgl.unmaskedRenderer",    0.20, _exact),
    WeightedAttribute("audio.sum",                 0.15, _exact),
    WeightedAttribute("fonts",                     0.15, jaccard),
    WeightedAttribute("basic.screen",              0.10, _same_screen),
    WeightedAttribute("basic.timezone.timezone",   0.08, _exact),
    WeightedAttribute("basic.hardwareConcurrency", 0.07, _exact),
)


# ─────────────────────────────────────────────────────────────────────────────
# SIMILARITY
# ─────────────────────────────────────────────────────────────────────────────

def weighted_similarity(fp1: dict, fp2: dict) -> float:
    """
    Weighted score in [0, 1].

    Only attributes present on both fingerprints contribute, and the sum is
    normalised by the weights that took part. No shared attribute → 0.
    """
    score = 0.0
    total_weight = 0.0
    for attr in FINGERPRINT_WEIGHTS:
        a = get_nested(fp1, attr.key)
        b = get_nested(fp2, attr.key)
        if a is _MISSING or b is _MISSING:
            continue
        score += attr.compare(a, b) * attr.weight
        total_weight += attr.weight
    return score / total_weight if total_weight else 0.0


def simple_similarity(fp1: dict, fp2: dict) -> float:
    """Unweighted share of matching core attributes (fonts counted by Jaccard)."""
    matches = 0.0
    total = 0

    for key in ("canvasHash", "webgl.unmaskedRenderer", "audio.sum"):
        total += 1
        a, b = get_nested(fp1, key), get_nested(fp2, key)
        if a is not _MISSING and a and a == b:
            matches += 1

    total += 1
    matches += _same_screen(get_nested(fp1, "basic.screen"), get_nested(fp2, "basic.screen"))

    fonts1, fonts2 = fp1.get("fonts"), fp2.get("fonts")
    if isinstance(fonts1, list) and isinstance(fonts2, list):
        total += 1
        matches += jaccard(fonts1, fonts2)

    total += 1
    tz1 = get_nested(fp1, "basic.timezone.timezone")
    tz2 = get_nested(fp2, "basic.timezone.timezone")
    if tz1 == tz2:
        matches += 1

    return matches / total if total else 0.0


def find_best_match(
    target: dict,
    candidates: Iterable[dict],
    threshold: float = 0.85,
) -> Optional[Tuple[dict, float]]:
    """
    Best-scoring candidate record (``{"data": fingerprint, ...}``) by weighted
    similarity, or ``None`` when the best score is below *threshold*.
    """
    best: Optional[dict] = None
    best_score = 0.0
    for record in candidates:
        score = weighted_similarity(target, record.get("data") or {})
        if score > best_score:
            best, best_score = record, score
    if best is not None and best_score >= threshold:
        return best, best_score
    return None


# ─────────────────────────────────────────────────────────────────────────────
# SPOOFING / BOT HEURISTICS
# ─────────────────────────────────────────────────────────────────────────────

def detect_inconsistencies(fp: dict) -> List[str]:
    """Human-readable list of signals that look spoofed or automated."""
    issues: List[str] = []
    basic = _branch(fp, "basic")
    webgl = _branch(fp, "webgl")
    screen = _branch(basic, "screen")
    window = _branch(basic, "window")

    ua = _text(basic, "userAgent").lower()
    platform = _text(basic, "platform").lower()

    if "windows" in ua and "win" not in platform:
        issues.append("UA/Platform mismatch: Windows UA but non-Windows platform")
    if "mac" in ua and "mac" not in platform:
        issues.append("UA/Platform mismatch: Mac UA but non-Mac platform")
    if "linux" in ua and "linux" not in platform:
        issues.append("UA/Platform mismatch: Linux UA but non-Linux platform")

    if _lt(screen.get("width"), window.get("innerWidth")):
        issues.append("Screen width < window width (impossible)")
    if _lt(screen.get("height"), window.get("innerHeight")):
        issues.append("Screen height < window height (impossible)")

    vendor = _text(webgl, "unmaskedVendor").lower()
    renderer = _text(webgl, "unmaskedRenderer").lower()
    if vendor and renderer:
        if "nvidia" in vendor and "nvidia" not in renderer:
            issues.append("WebGL vendor mismatch: NVIDIA vendor but non-NVIDIA renderer")
        if "amd" in vendor and "amd" not in renderer and "radeon" not in renderer:
            issues.append("WebGL vendor mismatch: AMD vendor but non-AMD renderer")
        if "intel" in vendor and "intel" not in renderer:
            issues.append("WebGL vendor mismatch: Intel vendor but non-Intel renderer")

    if _gt(basic.get("hardwareConcurrency"), 128):
        issues.append("Unrealistic CPU core count (>128)")

    raw_renderer = _text(webgl, "renderer")
    if "SwiftShader" in raw_renderer or "llvmpipe" in raw_renderer:
        issues.append("Possible headless browser (software renderer)")

    if "headlesschrome" in ua or "phantomjs" in ua:
        issues.append("Automation tool detected in User-Agent")

    tz = _text(_branch(basic, "timezone"), "timezone")
    lang = _text(basic, "language")
    if lang.startswith("en-US") and tz.startswith("Asia/") and "Manila" not in tz:
        issues.append("Possible timezone/language mismatch")

    return issues


def _branch(obj: dict, key: str) -> dict:
    value = obj.get(key)
    return value if isinstance(value, dict) else {}


def _text(obj: dict, key: str) -> str:
    value = obj.get(key)
    return value if isinstance(value, str) else ""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _lt(a: Any, b: Any) -> bool:
    return _is_number(a) and _is_number(b) and a < b


def _gt(value: Any, limit: float) -> bool:
    return _is_number(value) and value > limit


def bot_score(fp: dict) -> int:
    """0 (human) … 100 (bot)."""
    score = 0
    basic = _branch(fp, "basic")
    webgl = fp.get("webgl")
    renderer = _text(_branch(fp, "webgl"), "renderer")

    if "SwiftShader" in renderer:
        score += 30
    if "llvmpipe" in renderer:
        score += 30

    ua = _text(basic, "userAgent").lower()
    if "headlesschrome" in ua:
        score += 50
    if "phantomjs" in ua:
        score += 50
    if "selenium" in ua:
        score += 40

    if not fp.get("audio"):
        score += 10
    if not webgl:
        score += 15
    if not fp.get("canvasHash"):
        score += 10

    if _gt(basic.get("hardwareConcurrency"), 64):
        score += 20
    if _gt(_branch(basic, "screen").get("colorDepth"), 32):
        score += 10

    return min(score, 100)


def age_adjusted_confidence(base_confidence: float, age_days: float) -> float:
    """Confidence halves every ``HALF_LIFE_DAYS`` days."""
    return base_confidence * math.pow(0.5, age_days / HALF_LIFE_DAYS)
