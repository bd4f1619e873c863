from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from merittrac.core.grades import gpa_equivalent
from merittrac.core.models import Mark

MAX_MARKS_PER_SUBJECT = 100


@dataclass(frozen=True)
class SemesterSummary:
    total_subjects: int
    average_percentage: str
    gpa_equivalent: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "totalSubjects": self.total_subjects,
            "averagePercentage": self.average_percentage,
            "gpaEquivalent": self.gpa_equivalent,
        }


def summarize_semester(marks: Iterable[Mark]) -> Optional[SemesterSummary]:
    rows = list(marks)
    if not rows:
        return None

    obtained = sum(mark.total or 0 for mark in rows)
    percentage = obtained / (len(rows) * MAX_MARKS_PER_SUBJECT) * 100

    return SemesterSummary(
        total_subjects=len(rows),
        average_percentage=f"{percentage:.2f}",
        gpa_equivalent=gpa_equivalent(percentage),
    )
