"""
app/services/entropy.py — Fingerprint entropy and uniqueness estimates
=====================================================================

Shannon entropy in bits, either from an explicit probability distribution
or assuming a uniform distribution over ``cardinality`` values.
"""

import math
from collections import Counter
from typing import Iterable, List, Mapping, NamedTuple, Optional, Sequence


class EntropyAttribute(NamedTuple):
    name: str
    cardinality: int
    distribution: Optional[Sequence[float]] = None


# Rough public estimates of distinct values per attribute
THEORETICAL_ENTROPY: List[EntropyAttribute] = [
    EntropyAttribute("User-Agent", 1000),
    EntropyAttribute("Screen Resolution", 100),
    EntropyAttribute("Timezone", 200),
    EntropyAttribute("Language", 50),
    EntropyAttribute("Canvas Hash", 100000),
    EntropyAttribute("WebGL Renderer", 5000),
    EntropyAttribute("Audio Fingerprint", 10000),
    EntropyAttribute("Fonts", 50000),
    EntropyAttribute("Hardware Concurrency", 16),
    EntropyAttribute("Device Memory", 8),
    EntropyAttribute("Color Depth", 4),
]


def _shannon(probabilities: Iterable[float]) -> float:
    return -sum(p * math.log2(p) for p in probabilities if p > 0)


def entropy(attr: EntropyAttribute) -> float:
    if attr.distribution:
        return _shannon(attr.distribution)
    return math.log2(attr.cardinality)


def total_entropy(attributes: Iterable[EntropyAttribute]) -> float:
    return sum(entropy(a) for a in attributes)


def theoretical_total_entropy() -> float:
    return total_entropy(THEORETICAL_ENTROPY)


def collision_probability(entropy_bits: float, population: int) -> float:
    """Birthday-paradox approximation of at least one shared fingerprint."""
    space = math.pow(2, entropy_bits)
    return 1 - math.exp(-population * (population - 1) / (2 * space))


def estimate_uniqueness(entropy_bits: float) -> float:
    return math.pow(2, entropy_bits)


def format_entropy(entropy_bits: float) -> str:
    """``"1 in 512"``, ``"1 in 12.3K"``, ``"1 in 4.2M"``, ``"1 in 1.1B"`` or exponent form."""
    n = estimate_uniqueness(entropy_bits)
    if n < 1e3:
        return f"1 in {round(n)}"
    if n < 1e6:
        return f"1 in {n / 1e3:.1f}K"
    if n < 1e9:
        return f"1 in {n / 1e6:.1f}M"
    if n < 1e12:
        return f"1 in {n / 1e9:.1f}B"
    return f"1 in {n:.2e}"


def observed_entropy(counts: Mapping[str, int]) -> float:
    total = sum(counts.values())
    if not total:
        return 0.0
    return _shannon(c / total for c in counts.values())


def attribute_distribution(name: str, values: Sequence[str]) -> dict:
    counts = Counter(values)
    total = len(values)
    return {
        "attribute": name,
        "uniqueValues": len(counts),
        "entropy": observed_entropy(counts),
        "topValues": [
            {"value": value, "count": count, "percentage": count / total * 100}
            for value, count in counts.most_common(10)
        ],
    }
