"""Significance tests used by experiment analysis (normal approximation)."""
from __future__ import annotations

import math
from typing import Any, Sequence


def mean(xs: Sequence[float]) -> float:
    if not xs:
        return float("nan")
    return sum(xs) / len(xs)


def var(xs: Sequence[float]) -> float:
    """Sample variance (n - 1)."""
    if len(xs) < 2:
        return float("nan")
    m = mean(xs)
    return sum((x - m) ** 2 for x in xs) / (len(xs) - 1)


def normal_cdf(x: float) -> float:
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def two_proportion_z_test(
    successes_a: int, trials_a: int, successes_b: int, trials_b: int,
) -> dict[str, Any]:
    """Two-sided pooled z-test comparing rate b against rate a."""
    if trials_a <= 0 or trials_b <= 0:
        return {"pValue": None, "zScore": None, "reason": "No trials"}

    p1 = successes_a / trials_a
    p2 = successes_b / trials_b
    pooled = (successes_a + successes_b) / (trials_a + trials_b)
    se = math.sqrt(pooled * (1 - pooled) * (1 / trials_a + 1 / trials_b))
    if se == 0:
        return {"pValue": None, "zScore": None, "reason": "No variation in data"}

    z = (p2 - p1) / se
    p_value = 2.0 * (1.0 - normal_cdf(abs(z)))

    diff = p2 - p1
    se_diff = math.sqrt(p1 * (1 - p1) / trials_a + p2 * (1 - p2) / trials_b)
    margin = 1.96 * se_diff
    return {
        "pValue": p_value,
        "zScore": z,
        "effect": diff,
        "confidenceInterval": {"lower": diff - margin, "upper": diff + margin},
    }


def welch_t_test(a: Sequence[float], b: Sequence[float]) -> dict[str, Any]:
    """Welch's test for a difference in means, p-value via normal approximation."""
    if len(a) < 2 or len(b) < 2:
        return {"pValue": None, "tScore": None, "reason": "Not enough observations"}

    ma, mb = mean(a), mean(b)
    va, vb = var(a), var(b)
    na, nb = len(a), len(b)

    denom = va / na + vb / nb
    # Both arms constant: identical means are indistinguishable, different
    # means differ with certainty.
    if denom == 0:
        return {
            "pValue": 1.0 if ma == mb else 0.0,
            "tScore": None,
            "effect": mb - ma,
            "confidenceInterval": None,
        }

    t = (mb - ma) / math.sqrt(denom)
    p_value = 2.0 * (1.0 - normal_cdf(abs(t)))
    margin = 1.96 * math.sqrt(denom)
    return {
        "pValue": p_value,
        "tScore": t,
        "effect": mb - ma,
        "confidenceInterval": {"lower": mb - ma - margin, "upper": mb - ma + margin},
    }
