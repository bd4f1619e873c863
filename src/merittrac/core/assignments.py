from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from merittrac.core.errors import ValidationError
from merittrac.core.models import TeacherAssignment


def dedupe(assignments: Iterable[TeacherAssignment]) -> List[TeacherAssignment]:
    """Keep the first assignment for every (teacher, subject, semester) triple."""
    seen: Set[tuple] = set()
    unique: List[TeacherAssignment] = []
    for assignment in assignments:
        if assignment.key in seen:
            continue
        seen.add(assignment.key)
        unique.append(assignment)
    return unique


def is_duplicate(
    teacher_uid: str,
    subject_id: str,
    semester_id: str,
    assignments: Iterable[TeacherAssignment],
    *,
    ignore_id: Optional[str] = None,
) -> bool:
    key = (teacher_uid, subject_id, semester_id)
    return any(a.key == key and a.id != ignore_id for a in assignments)


def semesters_for(teacher_uid: str, assignments: Iterable[TeacherAssignment]) -> List[str]:
    semester_ids: List[str] = []
    for assignment in assignments:
        if assignment.teacher_uid != teacher_uid:
            continue
        if assignment.semester_id not in semester_ids:
            semester_ids.append(assignment.semester_id)
    return semester_ids


def subjects_for(
    teacher_uid: str,
    semester_id: str,
    assignments: Iterable[TeacherAssignment],
) -> Set[str]:
    return {
        a.subject_id
        for a in assignments
        if a.teacher_uid == teacher_uid and a.semester_id == semester_id
    }


def can_submit(
    teacher_uid: str,
    subject_id: str,
    semester_id: str,
    assignments: Iterable[TeacherAssignment],
) -> bool:
    return subject_id in subjects_for(teacher_uid, semester_id, assignments)


@dataclass
class MarkEntrySelection:
    """
    Semester -> subject selection for a teacher's mark sheet.

    The subject choice depends on the semester choice: picking a new
    semester drops a subject that the teacher is not assigned to there.
    """

    teacher_uid: str
    assignments: List[TeacherAssignment]
    semester_id: Optional[str] = None
    subject_id: Optional[str] = None

    @property
    def available_semesters(self) -> List[str]:
        return semesters_for(self.teacher_uid, self.assignments)

    @property
    def available_subjects(self) -> Set[str]:
        if not self.semester_id:
            return set()
        return subjects_for(self.teacher_uid, self.semester_id, self.assignments)

    @property
    def is_complete(self) -> bool:
        return bool(self.semester_id and self.subject_id)

    def select_semester(self, semester_id: Optional[str]) -> None:
        if semester_id and semester_id not in self.available_semesters:
            raise ValidationError("Semester is not assigned to this teacher.")
        self.semester_id = semester_id or None
        if self.subject_id not in self.available_subjects:
            self.subject_id = None

    def select_subject(self, subject_id: Optional[str]) -> None:
        if subject_id and subject_id not in self.available_subjects:
            raise ValidationError("Subject is not assigned for the selected semester.")
        self.subject_id = subject_id or None

    def clear(self) -> None:
        self.semester_id = None
        self.subject_id = None
