import math
from typing import Dict, Iterable, Optional, Tuple

from merittrac.core.errors import ValidationError


COMPONENT_MAX: Dict[str, int] = {
    "ca1": 10,
    "ca2": 10,
    "midTerm": 20,
    "endTerm": 60,
}

GRADE_BANDS: Tuple[Tuple[float, str], ...] = (
    (90, "A+"),
    (80, "A"),
    (70, "B"),
    (60, "C"),
    (50, "D"),
)

GPA_BANDS: Tuple[Tuple[float, str], ...] = (
    (90, "4.0 (A+)"),
    (80, "3.5 (A)"),
    (70, "3.0 (B)"),
    (60, "2.5 (C)"),
    (50, "2.0 (D)"),
)

PLACEHOLDER = "-"


def validate_component(name: str, value: Optional[float]) -> Optional[float]:
    if name not in COMPONENT_MAX:
        raise ValidationError(f"Unknown mark component: {name}")
    if value is None:
        return None
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")
    if value < 0 or value > COMPONENT_MAX[name]:
        raise ValidationError(f"{name} must be between 0 and {COMPONENT_MAX[name]}")
    return value


def sum_components(components: Iterable[Optional[float]]) -> float:
    return sum(value or 0 for value in components)


def compute_total(
    ca1: Optional[float],
    ca2: Optional[float],
    mid_term: Optional[float],
    end_term: Optional[float],
) -> Optional[float]:
    """
    Sum of the four components with absent values counted as 0.
    Returns None when nothing has been entered yet.
    """
    components = (ca1, ca2, mid_term, end_term)
    if all(value is None for value in components):
        return None
    return sum_components(components)


def grade_for_total(total: float) -> str:
    for lower, letter in GRADE_BANDS:
        if total >= lower:
            return letter
    return "F"


def grade_or_placeholder(total: Optional[float]) -> str:
    if total is None:
        return PLACEHOLDER
    return grade_for_total(total)


def gpa_equivalent(percentage: float) -> str:
    # Semester summary scale, separate from the per-mark letter grade.
    for lower, label in GPA_BANDS:
        if percentage >= lower:
            return label
    return "1.0 (F)"
