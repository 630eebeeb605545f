# pharmaqms/fmea.py

"""
Failure Mode and Effects Analysis scoring (ICH Q9).

- Severity (S): impact of the failure (1=Low, 10=High).
- Occurrence (O): likelihood of the failure (1=Low, 10=High).
- Detection (D): how hard the failure is to detect (1=Easy, 10=Hard).

RPN = S x O x D. Higher RPNs are higher priorities.
"""

from typing import Dict, List, Tuple

from .compliance import validate_score

RISK_THRESHOLDS: List[Tuple[int, str]] = [
    (125, "Critical"),
    (64, "High"),
    (27, "Medium"),
]

HISTORY_FIELDS = ("date", "severity", "occurrence", "detection", "rpn", "mitigation", "residualRisk")


def calculate_rpn(severity: int, occurrence: int, detection: int) -> int:
    return severity * occurrence * detection


def residual_risk_class(rpn: int) -> str:
    for threshold, label in RISK_THRESHOLDS:
        if rpn > threshold:
            return label
    return "Low"


def validate_scores(severity, occurrence, detection) -> List[str]:
    problems = [
        validate_score(severity, "Severity"),
        validate_score(occurrence, "Occurrence"),
        validate_score(detection, "Detection"),
    ]
    return [p for p in problems if p]


def score(severity: int, occurrence: int, detection: int) -> Dict:
    rpn = calculate_rpn(severity, occurrence, detection)
    return {
        "severity": severity,
        "occurrence": occurrence,
        "detection": detection,
        "rpn": rpn,
        "residualRisk": residual_risk_class(rpn),
    }


def history_snapshot(entry: Dict) -> Dict:
    """The part of a risk entry archived when it is re-assessed."""
    return {k: entry.get(k) for k in HISTORY_FIELDS}
