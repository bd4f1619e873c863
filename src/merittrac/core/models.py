from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from merittrac.core.errors import ValidationError


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValidationError(f"Unsupported role: {value!r}") from exc


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Not a number: {value!r}")
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Not a number: {value!r}") from exc


def _year(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Not a year: {value!r}") from exc


@dataclass(frozen=True)
class Subject:
    id: str
    name: str
    code: str

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Subject":
        return cls(id=doc_id, name=str(data.get("name", "")), code=str(data.get("code", "")))

    def to_doc(self) -> Dict[str, Any]:
        return {"name": self.name, "code": self.code}


@dataclass(frozen=True)
class Semester:
    id: str
    name: str
    year: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Semester":
        return cls(
            id=doc_id,
            name=str(data.get("name", "")),
            year=_year(data.get("year")),
            start_date=_iso(data.get("startDate")),
            end_date=_iso(data.get("endDate")),
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "year": self.year,
            "startDate": self.start_date,
            "endDate": self.end_date,
        }


@dataclass(frozen=True)
class UserProfile:
    uid: str
    email: str
    name: str
    role: Role
    prn: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "UserProfile":
        return cls(
            uid=doc_id,
            email=str(data.get("email", "")),
            name=str(data.get("name", "")),
            role=Role.parse(data.get("role")),
            prn=data.get("prn"),
            avatar_url=data.get("avatarUrl"),
        )

    def to_doc(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
        }
        if self.prn:
            doc["prn"] = self.prn
        if self.avatar_url:
            doc["avatarUrl"] = self.avatar_url
        return doc


@dataclass(frozen=True)
class TeacherAssignment:
    id: str
    teacher_uid: str
    subject_id: str
    semester_id: str
    teacher_name: Optional[str] = None
    subject_name: Optional[str] = None
    semester_name: Optional[str] = None

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.teacher_uid, self.subject_id, self.semester_id)

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "TeacherAssignment":
        return cls(
            id=doc_id,
            teacher_uid=str(data.get("teacherUid", "")),
            subject_id=str(data.get("subjectId", "")),
            semester_id=str(data.get("semesterId", "")),
            teacher_name=data.get("teacherName"),
            subject_name=data.get("subjectName"),
            semester_name=data.get("semesterName"),
        )

    def to_doc(self) -> Dict[str, Any]:
        return {
            "teacherUid": self.teacher_uid,
            "teacherName": self.teacher_name,
            "subjectId": self.subject_id,
            "subjectName": self.subject_name,
            "semesterId": self.semester_id,
            "semesterName": self.semester_name,
        }


@dataclass
class MarkRow:
    """An edited row from the mark sheet. Every field may be missing."""

    id: Optional[str] = None
    student_uid: Optional[str] = None
    student_name: Optional[str] = None
    subject_id: Optional[str] = None
    subject_name: Optional[str] = None
    semester_id: Optional[str] = None
    semester_name: Optional[str] = None
    ca1: Optional[float] = None
    ca2: Optional[float] = None
    mid_term: Optional[float] = None
    end_term: Optional[float] = None
    total: Optional[float] = None
    grade: Optional[str] = None
    # Fields that arrived but could not be read as numbers.
    errors: List[str] = field(default_factory=list)

    @property
    def has_any_component(self) -> bool:
        return any(v is not None for v in (self.ca1, self.ca2, self.mid_term, self.end_term))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarkRow":
        errors: List[str] = []
        numbers: Dict[str, Optional[float]] = {}
        for key in ("ca1", "ca2", "midTerm", "endTerm", "total"):
            try:
                numbers[key] = _number(data.get(key))
            except ValidationError as exc:
                numbers[key] = None
                errors.append(f"{key}: {exc}")
        return cls(
            id=data.get("id") or None,
            student_uid=data.get("studentUid") or None,
            student_name=data.get("studentName"),
            subject_id=data.get("subjectId") or None,
            subject_name=data.get("subjectName"),
            semester_id=data.get("semesterId") or None,
            semester_name=data.get("semesterName"),
            ca1=numbers["ca1"],
            ca2=numbers["ca2"],
            mid_term=numbers["midTerm"],
            end_term=numbers["endTerm"],
            total=numbers["total"],
            grade=data.get("grade"),
            errors=errors,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "studentUid": self.student_uid,
            "studentName": self.student_name,
            "subjectId": self.subject_id,
            "subjectName": self.subject_name,
            "semesterId": self.semester_id,
            "semesterName": self.semester_name,
            "ca1": self.ca1,
            "ca2": self.ca2,
            "midTerm": self.mid_term,
            "endTerm": self.end_term,
            "total": self.total,
            "grade": self.grade,
        }


@dataclass
class Mark:
    id: str
    student_uid: str
    subject_id: str
    semester_id: str
    ca1: Optional[float] = None
    ca2: Optional[float] = None
    mid_term: Optional[float] = None
    end_term: Optional[float] = None
    total: Optional[float] = None
    grade: Optional[str] = None
    teacher_uid: Optional[str] = None
    last_updated: Optional[str] = None
    student_name: Optional[str] = None
    subject_name: Optional[str] = None
    semester_name: Optional[str] = None

    @classmethod
    def from_doc(cls, doc_id: str, data: Dict[str, Any]) -> "Mark":
        return cls(
            id=doc_id,
            student_uid=str(data.get("studentUid", "")),
            subject_id=str(data.get("subjectId", "")),
            semester_id=str(data.get("semesterId", "")),
            ca1=_number(data.get("ca1")),
            ca2=_number(data.get("ca2")),
            mid_term=_number(data.get("midTerm")),
            end_term=_number(data.get("endTerm")),
            total=_number(data.get("total")),
            grade=data.get("grade"),
            teacher_uid=data.get("teacherUid"),
            last_updated=_iso(data.get("lastUpdated")),
            student_name=data.get("studentName"),
            subject_name=data.get("subjectName"),
            semester_name=data.get("semesterName"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "studentUid": self.student_uid,
            "studentName": self.student_name,
            "subjectId": self.subject_id,
            "subjectName": self.subject_name,
            "semesterId": self.semester_id,
            "semesterName": self.semester_name,
            "ca1": self.ca1,
            "ca2": self.ca2,
            "midTerm": self.mid_term,
            "endTerm": self.end_term,
            "total": self.total,
            "grade": self.grade,
            "teacherUid": self.teacher_uid,
            "lastUpdated": self.last_updated,
        }
