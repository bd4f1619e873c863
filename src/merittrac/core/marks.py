from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from merittrac.core.errors import ValidationError
from merittrac.core.grades import COMPONENT_MAX, compute_total, grade_for_total, validate_component
from merittrac.core.models import Mark, MarkRow, UserProfile

logger = logging.getLogger(__name__)

NAME_FALLBACK = "N/A"

UNKNOWN_LABELS: Dict[str, str] = {
    "student": "Unknown Student",
    "teacher": "Unknown Teacher",
    "subject": "Unknown Subject",
    "semester": "Unknown Semester",
}

_ROW_ATTRS: Dict[str, str] = {
    "ca1": "ca1",
    "ca2": "ca2",
    "midTerm": "mid_term",
    "endTerm": "end_term",
}


@dataclass(frozen=True)
class MarkWrite:
    mark_id: Optional[str]
    payload: Dict[str, Any]

    @property
    def is_create(self) -> bool:
        return self.mark_id is None


def resolve_name(kind: str, snapshot: Optional[str], names: Mapping[str, str], ref_id: Optional[str]) -> str:
    """
    Display name for a referenced entity.

    The name cached on the record wins; the current reference data is only
    consulted when the record carries none.
    """
    if snapshot:
        return snapshot
    if ref_id and ref_id in names:
        return names[ref_id]
    return UNKNOWN_LABELS[kind]


def missing_identifiers(row: MarkRow) -> List[str]:
    missing = []
    if not row.student_uid:
        missing.append("studentUid")
    if not row.subject_id:
        missing.append("subjectId")
    if not row.semester_id:
        missing.append("semesterId")
    return missing


def validate_row(row: MarkRow) -> None:
    if row.errors:
        raise ValidationError(f"Mark row has unreadable values: {'; '.join(row.errors)}")
    missing = missing_identifiers(row)
    if missing:
        raise ValidationError(f"Mark row is missing {', '.join(missing)}")
    for field_name, attr in _ROW_ATTRS.items():
        validate_component(field_name, getattr(row, attr))


def build_payload(row: MarkRow, editor_uid: str, now: datetime) -> Dict[str, Any]:
    # Missing components count as 0 for the total but are stored as null.
    total = compute_total(row.ca1, row.ca2, row.mid_term, row.end_term) or 0
    return {
        "studentUid": row.student_uid,
        "studentName": row.student_name or NAME_FALLBACK,
        "subjectId": row.subject_id,
        "subjectName": row.subject_name or NAME_FALLBACK,
        "semesterId": row.semester_id,
        "semesterName": row.semester_name or NAME_FALLBACK,
        "ca1": row.ca1,
        "ca2": row.ca2,
        "midTerm": row.mid_term,
        "endTerm": row.end_term,
        "total": total,
        "grade": grade_for_total(total),
        "teacherUid": editor_uid,
        "lastUpdated": now,
    }


def prepare_mark_writes(rows: Iterable[MarkRow], editor_uid: str, now: datetime) -> tuple[List[MarkWrite], int]:
    """
    Turn edited rows into create/update writes.

    Invalid rows are logged and skipped so one bad row never aborts the
    batch. Returns the writes and the number of skipped rows.
    """
    writes: List[MarkWrite] = []
    skipped = 0
    for row in rows:
        try:
            validate_row(row)
        except ValidationError as exc:
            skipped += 1
            logger.warning("Skipping mark row %s: %s", row.to_dict(), exc)
            continue
        writes.append(MarkWrite(mark_id=row.id, payload=build_payload(row, editor_uid, now)))
    return writes, skipped


def rows_to_save(rows: Iterable[MarkRow]) -> List[MarkRow]:
    # Untouched rows are left out; existing rows are kept so they can be cleared.
    return [row for row in rows if row.id or row.has_any_component or row.errors]


def apply_component_edit(row: MarkRow, field_name: str, value: Optional[float]) -> MarkRow:
    if field_name not in COMPONENT_MAX:
        raise ValidationError(f"Unknown mark component: {field_name}")
    validate_component(field_name, value)
    setattr(row, _ROW_ATTRS[field_name], value)
    row.total = compute_total(row.ca1, row.ca2, row.mid_term, row.end_term)
    row.grade = grade_for_total(row.total) if row.total is not None else None
    return row


def build_mark_sheet(
    students: Iterable[UserProfile],
    existing_marks: Iterable[Mark],
    *,
    subject_id: str,
    subject_name: Optional[str],
    semester_id: str,
    semester_name: Optional[str],
) -> List[MarkRow]:
    """One editable row per student, pre-filled from any stored mark."""
    by_student = {mark.student_uid: mark for mark in existing_marks}
    sheet: List[MarkRow] = []
    for student in students:
        mark = by_student.get(student.uid)
        sheet.append(
            MarkRow(
                id=mark.id if mark else None,
                student_uid=student.uid,
                student_name=student.name,
                subject_id=subject_id,
                subject_name=subject_name,
                semester_id=semester_id,
                semester_name=semester_name,
                ca1=mark.ca1 if mark else None,
                ca2=mark.ca2 if mark else None,
                mid_term=mark.mid_term if mark else None,
                end_term=mark.end_term if mark else None,
                total=mark.total if mark else None,
                grade=mark.grade if mark else None,
            )
        )
    return sheet


def with_student_names(marks: Iterable[Mark], students: Iterable[UserProfile]) -> List[Mark]:
    names = {student.uid: student.name for student in students}
    results = []
    for mark in marks:
        mark.student_name = resolve_name("student", mark.student_name, names, mark.student_uid)
        results.append(mark)
    return results


def semester_ids_with_marks(marks: Iterable[Mark]) -> List[str]:
    seen: List[str] = []
    for mark in marks:
        if mark.semester_id not in seen:
            seen.append(mark.semester_id)
    return seen


def marks_for_analysis(marks: Iterable[Mark]) -> List[Dict[str, Any]]:
    return [
        {
            "semester": mark.semester_name or UNKNOWN_LABELS["semester"],
            "subject": mark.subject_name or UNKNOWN_LABELS["subject"],
            "ca1": mark.ca1 or 0,
            "ca2": mark.ca2 or 0,
            "midTerm": mark.mid_term or 0,
            "endTerm": mark.end_term or 0,
        }
        for mark in marks
    ]
