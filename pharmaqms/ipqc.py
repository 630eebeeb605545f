# pharmaqms/ipqc.py

"""In-process quality control statistics: mean, SD, Cpk and verdicts."""

from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

MIN_READINGS = 3
CPK_ZERO_VARIANCE = 2.0
CPK_MARGINAL = 1.0
FRIABILITY_LIMIT = 1.0


@dataclass(frozen=True)
class ProcessStats:
    n: int
    mean: float
    sd: float
    cpk: float
    verdict: str


def parse_readings(values: Iterable) -> List[float]:
    """Keeps only numeric readings; blanks and text are dropped."""
    readings = []
    for v in values:
        if v is None or isinstance(v, bool):
            continue
        try:
            number = float(str(v).strip())
        except ValueError:
            continue
        if np.isfinite(number):
            readings.append(number)
    return readings


def calculate_cpk(mean: float, sd: float, lsl: float, usl: float) -> float:
    if sd == 0:
        return CPK_ZERO_VARIANCE
    return min((usl - mean) / (3 * sd), (mean - lsl) / (3 * sd))


def process_stats(readings: List[float], lsl: float, usl: float) -> Optional[ProcessStats]:
    """
    Sample statistics for a set of readings against specification limits.

    Returns None when fewer than three readings are supplied. The verdict is
    FAIL if any reading is outside the limits, MARGINAL if Cpk < 1.0, else PASS.
    """
    if len(readings) < MIN_READINGS:
        return None
    data = np.asarray(readings, dtype=float)
    mean = float(data.mean())
    sd = float(data.std(ddof=1))
    cpk = calculate_cpk(mean, sd, lsl, usl)

    if bool(((data > usl) | (data < lsl)).any()):
        verdict = "FAIL"
    elif cpk < CPK_MARGINAL:
        verdict = "MARGINAL"
    else:
        verdict = "PASS"
    return ProcessStats(n=len(readings), mean=mean, sd=sd, cpk=cpk, verdict=verdict)


def weight_variation(weights: List[float], target_average: float) -> Optional[dict]:
    """
    Uniformity of weight (USP <905>): each unit is compared with the target
    average weight. FAIL if any unit deviates by more than 20% or more than two
    by more than 10%; MARGINAL if any unit deviates by more than 5%.
    """
    if not weights or target_average <= 0:
        return None
    data = np.asarray(weights, dtype=float)
    deviation = np.abs(data - target_average) / target_average * 100
    outside_20 = int((deviation > 20).sum())
    outside_10 = int(((deviation > 10) & (deviation <= 20)).sum())
    outside_5 = int(((deviation > 5) & (deviation <= 10)).sum())
    if outside_20 > 0 or outside_10 > 2:
        verdict = "FAIL"
    elif outside_5 > 0:
        verdict = "MARGINAL"
    else:
        verdict = "PASS"
    return {"average": target_average, "outside5": outside_5, "outside10": outside_10,
            "outside20": outside_20, "verdict": verdict}


def friability(initial: float, final: float) -> dict:
    """Friability (USP <1216>): percentage mass lost, PASS at or below 1.0%."""
    if initial <= 0:
        raise ValueError("Initial mass must be positive")
    loss = (initial - final) / initial * 100
    return {"loss": loss, "verdict": "PASS" if loss <= FRIABILITY_LIMIT else "FAIL"}
