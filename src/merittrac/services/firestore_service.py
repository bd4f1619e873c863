from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

try:
    from google.api_core.exceptions import GoogleAPICallError, NotFound
    from google.cloud import firestore
    from google.cloud.firestore_v1.base_query import FieldFilter
except ModuleNotFoundError as exc:
    raise ModuleNotFoundError(
        "Missing dependency 'google-cloud-firestore'. Install the project with pip install -e ."
    ) from exc

from merittrac.config.settings import settings
from merittrac.core.assignments import is_duplicate
from merittrac.core.errors import ExternalCallError, NotFoundError, ValidationError
from merittrac.core.marks import prepare_mark_writes, resolve_name
from merittrac.core.models import Mark, MarkRow, Role, Semester, Subject, TeacherAssignment, UserProfile

logger = logging.getLogger(__name__)


class FirestoreServiceError(ExternalCallError):
    pass


@dataclass(frozen=True)
class BatchResult:
    created: int
    updated: int
    skipped: int

    @property
    def written(self) -> int:
        return self.created + self.updated


class FirestoreService:
    def __init__(
        self,
        project_id: str,
        *,
        client: Optional[Any] = None,
        users_collection_id: str = "users",
        subjects_collection_id: str = "subjects",
        semesters_collection_id: str = "semesters",
        assignments_collection_id: str = "teacherAssignments",
        marks_collection_id: str = "marks",
    ) -> None:
        if client is None and not project_id:
            raise FirestoreServiceError("Missing FIREBASE_PROJECT_ID in environment")
        self.db = client if client is not None else firestore.Client(project=project_id)
        self.users_collection_id = users_collection_id
        self.subjects_collection_id = subjects_collection_id
        self.semesters_collection_id = semesters_collection_id
        self.assignments_collection_id = assignments_collection_id
        self.marks_collection_id = marks_collection_id

    @classmethod
    def from_settings(cls) -> "FirestoreService":
        return cls(
            settings.firebase_project_id,
            users_collection_id=settings.users_collection_id,
            subjects_collection_id=settings.subjects_collection_id,
            semesters_collection_id=settings.semesters_collection_id,
            assignments_collection_id=settings.assignments_collection_id,
            marks_collection_id=settings.marks_collection_id,
        )

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)

    def _list_documents(
        self,
        collection_id: str,
        filters: Iterable[Tuple[str, Any]] = (),
    ) -> List[Tuple[str, Dict]]:
        query = self.db.collection(collection_id)
        for field_path, value in filters:
            query = query.where(filter=FieldFilter(field_path, "==", value))
        try:
            return [(doc.id, doc.to_dict() or {}) for doc in query.stream()]
        except GoogleAPICallError as exc:
            logger.error("Listing %s failed: %s", collection_id, exc)
            raise FirestoreServiceError(str(exc)) from exc

    def _parse_documents(
        self,
        collection_id: str,
        parse: Callable[[str, Dict], Any],
        filters: Iterable[Tuple[str, Any]] = (),
    ) -> List[Any]:
        items = []
        for doc_id, data in self._list_documents(collection_id, filters):
            try:
                items.append(parse(doc_id, data))
            except ValidationError as exc:
                logger.warning("Skipping unreadable document %s/%s: %s", collection_id, doc_id, exc)
        return items

    def _get_document(self, collection_id: str, document_id: str) -> Optional[Dict]:
        try:
            snap = self.db.collection(collection_id).document(document_id).get()
        except GoogleAPICallError as exc:
            raise FirestoreServiceError(str(exc)) from exc
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    def _create_document(self, collection_id: str, data: Dict, document_id: Optional[str] = None) -> str:
        collection = self.db.collection(collection_id)
        ref = collection.document(document_id) if document_id else collection.document()
        try:
            ref.set(data)
        except GoogleAPICallError as exc:
            logger.error("Creating document in %s failed: %s", collection_id, exc)
            raise FirestoreServiceError(str(exc)) from exc
        return ref.id

    def _update_document(self, collection_id: str, document_id: str, data: Dict) -> None:
        try:
            self.db.collection(collection_id).document(document_id).update(data)
        except NotFound as exc:
            raise NotFoundError(f"{collection_id}/{document_id} not found") from exc
        except GoogleAPICallError as exc:
            logger.error("Updating %s/%s failed: %s", collection_id, document_id, exc)
            raise FirestoreServiceError(str(exc)) from exc

    def _delete_document(self, collection_id: str, document_id: str) -> None:
        try:
            self.db.collection(collection_id).document(document_id).delete()
        except GoogleAPICallError as exc:
            logger.error("Deleting %s/%s failed: %s", collection_id, document_id, exc)
            raise FirestoreServiceError(str(exc)) from exc

    # Users

    def create_user_profile(self, profile: UserProfile) -> None:
        data = profile.to_doc()
        data["createdAt"] = self._now()
        self._create_document(self.users_collection_id, data, document_id=profile.uid)

    def get_profile(self, uid: str) -> Optional[UserProfile]:
        data = self._get_document(self.users_collection_id, uid)
        if data is None:
            return None
        try:
            return UserProfile.from_doc(uid, data)
        except ValidationError as exc:
            logger.warning("Unreadable profile %s: %s", uid, exc)
            return None

    def list_users(self, role: Optional[Role] = None) -> List[UserProfile]:
        filters = [("role", role.value)] if role else []
        users = self._parse_documents(self.users_collection_id, UserProfile.from_doc, filters)
        users.sort(key=lambda u: u.name.lower())
        return users

    # Subjects

    def list_subjects(self) -> List[Subject]:
        subjects = self._parse_documents(self.subjects_collection_id, Subject.from_doc)
        subjects.sort(key=lambda s: s.name.lower())
        return subjects

    def add_subject(self, *, name: str, code: str) -> str:
        return self._create_document(
            self.subjects_collection_id,
            {"name": name, "code": code, "createdAt": self._now()},
        )

    def update_subject(self, subject_id: str, updates: Dict[str, Any]) -> None:
        self._update_document(self.subjects_collection_id, subject_id, {**updates, "updatedAt": self._now()})

    def delete_subject(self, subject_id: str) -> None:
        self._delete_document(self.subjects_collection_id, subject_id)

    # Semesters

    def list_semesters(self) -> List[Semester]:
        semesters = self._parse_documents(self.semesters_collection_id, Semester.from_doc)
        semesters.sort(key=lambda s: (-s.year, s.name.lower()))
        return semesters

    def add_semester(
        self,
        *,
        name: str,
        year: int,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> str:
        return self._create_document(
            self.semesters_collection_id,
            {
                "name": name,
                "year": year,
                "startDate": start_date,
                "endDate": end_date,
                "createdAt": self._now(),
            },
        )

    def update_semester(self, semester_id: str, updates: Dict[str, Any]) -> None:
        self._update_document(self.semesters_collection_id, semester_id, {**updates, "updatedAt": self._now()})

    def delete_semester(self, semester_id: str) -> None:
        self._delete_document(self.semesters_collection_id, semester_id)

    # Teacher assignments

    def list_teacher_assignments(
        self,
        *,
        teacher_uid: Optional[str] = None,
        subject_id: Optional[str] = None,
        semester_id: Optional[str] = None,
    ) -> List[TeacherAssignment]:
        filters = [
            (field_path, value)
            for field_path, value in (
                ("teacherUid", teacher_uid),
                ("subjectId", subject_id),
                ("semesterId", semester_id),
            )
            if value
        ]
        assignments = self._parse_documents(self.assignments_collection_id, TeacherAssignment.from_doc, filters)
        assignments.sort(key=lambda a: ((a.teacher_name or "").lower(), (a.subject_name or "").lower()))
        return assignments

    def _assignment_names(self, teacher_uid: str, subject_id: str, semester_id: str) -> Dict[str, str]:
        teacher = self.get_profile(teacher_uid)
        subject = self._get_document(self.subjects_collection_id, subject_id)
        semester = self._get_document(self.semesters_collection_id, semester_id)
        return {
            "teacherName": resolve_name("teacher", teacher.name if teacher else None, {}, teacher_uid),
            "subjectName": resolve_name("subject", (subject or {}).get("name"), {}, subject_id),
            "semesterName": resolve_name("semester", (semester or {}).get("name"), {}, semester_id),
        }

    def add_teacher_assignment(self, *, teacher_uid: str, subject_id: str, semester_id: str) -> str:
        existing = self.list_teacher_assignments(teacher_uid=teacher_uid)
        if is_duplicate(teacher_uid, subject_id, semester_id, existing):
            raise ValidationError("This teacher is already assigned to the subject for that semester.")

        data = {
            "teacherUid": teacher_uid,
            "subjectId": subject_id,
            "semesterId": semester_id,
            **self._assignment_names(teacher_uid, subject_id, semester_id),
            "createdAt": self._now(),
        }
        assignment_id = self._create_document(self.assignments_collection_id, data)
        logger.info("Assignment %s added for teacher %s", assignment_id, teacher_uid)
        return assignment_id

    def update_teacher_assignment(
        self,
        assignment_id: str,
        *,
        teacher_uid: str,
        subject_id: str,
        semester_id: str,
    ) -> None:
        existing = self.list_teacher_assignments(teacher_uid=teacher_uid)
        if is_duplicate(teacher_uid, subject_id, semester_id, existing, ignore_id=assignment_id):
            raise ValidationError("This teacher is already assigned to the subject for that semester.")

        data = {
            "teacherUid": teacher_uid,
            "subjectId": subject_id,
            "semesterId": semester_id,
            **self._assignment_names(teacher_uid, subject_id, semester_id),
            "updatedAt": self._now(),
        }
        self._update_document(self.assignments_collection_id, assignment_id, data)
        logger.info("Assignment %s updated", assignment_id)

    def delete_teacher_assignment(self, assignment_id: str) -> None:
        self._delete_document(self.assignments_collection_id, assignment_id)
        logger.info("Assignment %s deleted", assignment_id)

    # Marks

    def list_marks(
        self,
        *,
        student_uid: Optional[str] = None,
        subject_id: Optional[str] = None,
        semester_id: Optional[str] = None,
    ) -> List[Mark]:
        filters = [
            (field_path, value)
            for field_path, value in (
                ("studentUid", student_uid),
                ("subjectId", subject_id),
                ("semesterId", semester_id),
            )
            if value
        ]
        if not filters:
            logger.warning("list_marks called without filters; returning no marks")
            return []

        marks = self._parse_documents(self.marks_collection_id, Mark.from_doc, filters)
        marks.sort(key=lambda m: (m.subject_name or "").lower())
        return marks

    def list_marks_by_student(self, student_uid: str, semester_id: Optional[str] = None) -> List[Mark]:
        marks = self.list_marks(student_uid=student_uid, semester_id=semester_id)
        # semesterName descending, subjectName ascending
        marks.sort(key=lambda m: (m.subject_name or "").lower())
        marks.sort(key=lambda m: (m.semester_name or "").lower(), reverse=True)
        return marks

    def delete_mark(self, mark_id: str) -> None:
        self._delete_document(self.marks_collection_id, mark_id)
        logger.info("Mark %s deleted", mark_id)

    def upsert_marks_batch(self, rows: Iterable[MarkRow], editor_uid: str) -> BatchResult:
        """
        Write all valid rows in one atomic batch.

        Rows with an id update that document; rows without one create a new
        document. Rows missing a student, subject or semester are skipped.
        """
        writes, skipped = prepare_mark_writes(rows, editor_uid, self._now())
        if not writes:
            logger.info("No valid mark rows to save (%d skipped)", skipped)
            return BatchResult(created=0, updated=0, skipped=skipped)

        marks = self.db.collection(self.marks_collection_id)
        batch = self.db.batch()
        created = 0
        for write in writes:
            if write.is_create:
                batch.set(marks.document(), write.payload)
                created += 1
            else:
                batch.update(marks.document(write.mark_id), write.payload)

        try:
            batch.commit()
        except GoogleAPICallError as exc:
            logger.error("Committing mark batch failed: %s", exc)
            raise FirestoreServiceError(str(exc)) from exc

        result = BatchResult(created=created, updated=len(writes) - created, skipped=skipped)
        logger.info(
            "Mark batch committed by %s: %d created, %d updated, %d skipped",
            editor_uid,
            result.created,
            result.updated,
            result.skipped,
        )
        return result
