from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from merittrac.config.settings import settings
from merittrac.core.access import Action, authorize, nav_items_for
from merittrac.core.accounts import search_users, validate_signup
from merittrac.core.assignments import can_submit, dedupe, semesters_for, subjects_for
from merittrac.core.errors import AccessDeniedError, ExternalCallError, NotFoundError, ValidationError
from merittrac.core.marks import (
    build_mark_sheet,
    marks_for_analysis,
    resolve_name,
    rows_to_save,
    semester_ids_with_marks,
    with_student_names,
)
from merittrac.core.models import MarkRow, Role, Semester, Subject, TeacherAssignment, UserProfile
from merittrac.core.summary import summarize_semester
from merittrac.services.analysis_service import AnalysisRequest, PerformanceAnalysisService
from merittrac.services.auth_service import AuthServiceError, FirebaseAuthService
from merittrac.services.firestore_service import FirestoreService
from merittrac.state.session_state import SessionState


app = FastAPI(title="MeritTrac API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class SignupPayload(BaseModel):
    email: str
    password: str
    name: str
    role: str
    prn: Optional[str] = None


class LoginPayload(BaseModel):
    email: str
    password: str


class SubjectPayload(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)


class SubjectUpdatePayload(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None


class SemesterPayload(BaseModel):
    name: str = Field(min_length=1)
    year: int
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class SemesterUpdatePayload(BaseModel):
    name: Optional[str] = None
    year: Optional[int] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None


class AssignmentPayload(BaseModel):
    teacher_uid: str
    subject_id: str
    semester_id: str


class MarksPayload(BaseModel):
    semester_id: str
    subject_id: str
    rows: List[Dict[str, Any]]


# Dependencies


def get_store() -> FirestoreService:
    return FirestoreService.from_settings()


def get_auth() -> FirebaseAuthService:
    return FirebaseAuthService.from_settings()


def get_analysis() -> PerformanceAnalysisService:
    return PerformanceAnalysisService.from_settings()


def _required_uid(x_user_id: Optional[str]) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing x-user-id header")
    return x_user_id


def current_session(
    x_user_id: Optional[str] = Header(default=None),
    fs: FirestoreService = Depends(get_store),
) -> SessionState:
    uid = _required_uid(x_user_id)
    profile = fs.get_profile(uid)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User profile not found")
    return SessionState.from_profile(profile)


# Error mapping


@app.exception_handler(ValidationError)
def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)


@app.exception_handler(AccessDeniedError)
def _access_denied(request: Request, exc: AccessDeniedError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_403_FORBIDDEN)


@app.exception_handler(NotFoundError)
def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_404_NOT_FOUND)


@app.exception_handler(ExternalCallError)
def _external_error(request: Request, exc: ExternalCallError) -> JSONResponse:
    return JSONResponse({"detail": str(exc)}, status_code=status.HTTP_502_BAD_GATEWAY)


# Serializers


def _profile_out(profile: UserProfile) -> Dict[str, Any]:
    return {"uid": profile.uid, **profile.to_doc()}


def _subject_out(subject: Subject) -> Dict[str, Any]:
    return {"id": subject.id, **subject.to_doc()}


def _semester_out(semester: Semester) -> Dict[str, Any]:
    return {"id": semester.id, **semester.to_doc()}


def _assignment_out(assignment: TeacherAssignment) -> Dict[str, Any]:
    return {"id": assignment.id, **assignment.to_doc()}


# Health and accounts


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/auth/signup")
def sign_up(
    payload: SignupPayload,
    auth: FirebaseAuthService = Depends(get_auth),
    fs: FirestoreService = Depends(get_store),
) -> Dict:
    role = validate_signup(payload.email, payload.password, payload.name, payload.role, payload.prn)
    try:
        result = auth.sign_up(payload.email.strip(), payload.password)
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    profile = UserProfile(
        uid=result.uid,
        email=result.email,
        name=payload.name.strip(),
        role=role,
        prn=payload.prn.strip() if role is Role.STUDENT and payload.prn else None,
    )
    fs.create_user_profile(profile)
    return {
        "uid": result.uid,
        "email": result.email,
        "id_token": result.id_token,
        "refresh_token": result.refresh_token,
        "profile": _profile_out(profile),
    }


@app.post("/auth/login")
def login(
    payload: LoginPayload,
    auth: FirebaseAuthService = Depends(get_auth),
    fs: FirestoreService = Depends(get_store),
) -> Dict:
    try:
        result = auth.sign_in(payload.email, payload.password)
    except AuthServiceError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc

    profile = fs.get_profile(result.uid)
    if profile is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User profile not found in database")
    return {
        "uid": result.uid,
        "email": result.email,
        "id_token": result.id_token,
        "refresh_token": result.refresh_token,
        "profile": _profile_out(profile),
    }


@app.get("/me")
def me(session: SessionState = Depends(current_session)) -> Dict:
    authorize(session, Action.VIEW_DASHBOARD)
    return {
        "profile": {
            "uid": session.uid,
            "email": session.email,
            "name": session.name,
            "role": session.role.value,
            "prn": session.prn,
        },
        "navigation": [{"href": item.href, "label": item.label} for item in nav_items_for(session.role)],
    }


# Reference data


@app.get("/users")
def list_users(
    role: Optional[Role] = None,
    search: str = "",
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.MANAGE_TEACHERS if role is Role.TEACHER else Action.MANAGE_STUDENTS)
    return [_profile_out(u) for u in search_users(fs.list_users(role), search)]


@app.get("/subjects")
def list_subjects(
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.VIEW_DASHBOARD)
    return [_subject_out(s) for s in fs.list_subjects()]


@app.post("/subjects")
def create_subject(
    payload: SubjectPayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SUBJECTS)
    return {"id": fs.add_subject(name=payload.name.strip(), code=payload.code.strip())}


@app.patch("/subjects/{subject_id}")
def update_subject(
    subject_id: str,
    payload: SubjectUpdatePayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SUBJECTS)
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("Nothing to update")
    fs.update_subject(subject_id, updates)
    return {"status": "updated"}


@app.delete("/subjects/{subject_id}")
def delete_subject(
    subject_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SUBJECTS)
    fs.delete_subject(subject_id)
    return {"status": "deleted"}


@app.get("/semesters")
def list_semesters(
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.VIEW_DASHBOARD)
    return [_semester_out(s) for s in fs.list_semesters()]


@app.post("/semesters")
def create_semester(
    payload: SemesterPayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SEMESTERS)
    semester_id = fs.add_semester(
        name=payload.name.strip(),
        year=payload.year,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
    return {"id": semester_id}


@app.patch("/semesters/{semester_id}")
def update_semester(
    semester_id: str,
    payload: SemesterUpdatePayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SEMESTERS)
    fields = {"name": "name", "year": "year", "start_date": "startDate", "end_date": "endDate"}
    updates = {fields[key]: value for key, value in payload.model_dump(exclude_none=True).items()}
    if not updates:
        raise ValidationError("Nothing to update")
    fs.update_semester(semester_id, updates)
    return {"status": "updated"}


@app.delete("/semesters/{semester_id}")
def delete_semester(
    semester_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_SEMESTERS)
    fs.delete_semester(semester_id)
    return {"status": "deleted"}


# Teacher assignments


@app.get("/assignments")
def list_assignments(
    teacher_uid: Optional[str] = None,
    subject_id: Optional[str] = None,
    semester_id: Optional[str] = None,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.MANAGE_ASSIGNMENTS)
    assignments = fs.list_teacher_assignments(
        teacher_uid=teacher_uid,
        subject_id=subject_id,
        semester_id=semester_id,
    )
    return [_assignment_out(a) for a in dedupe(assignments)]


@app.post("/assignments")
def create_assignment(
    payload: AssignmentPayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_ASSIGNMENTS)
    assignment_id = fs.add_teacher_assignment(
        teacher_uid=payload.teacher_uid,
        subject_id=payload.subject_id,
        semester_id=payload.semester_id,
    )
    return {"id": assignment_id}


@app.put("/assignments/{assignment_id}")
def update_assignment(
    assignment_id: str,
    payload: AssignmentPayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_ASSIGNMENTS)
    fs.update_teacher_assignment(
        assignment_id,
        teacher_uid=payload.teacher_uid,
        subject_id=payload.subject_id,
        semester_id=payload.semester_id,
    )
    return {"status": "updated"}


@app.delete("/assignments/{assignment_id}")
def delete_assignment(
    assignment_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.MANAGE_ASSIGNMENTS)
    fs.delete_teacher_assignment(assignment_id)
    return {"status": "deleted"}


@app.delete("/marks/{mark_id}")
def delete_mark(
    mark_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, str]:
    authorize(session, Action.DELETE_MARKS)
    fs.delete_mark(mark_id)
    return {"status": "deleted"}


# Teacher


def _require_assignment(session: SessionState, fs: FirestoreService, subject_id: str, semester_id: str) -> None:
    assignments = fs.list_teacher_assignments(teacher_uid=session.uid)
    if not can_submit(session.uid, subject_id, semester_id, assignments):
        raise AccessDeniedError("You are not assigned to this subject for the selected semester.")


@app.get("/teacher/semesters")
def teacher_semesters(
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.ENTER_MARKS)
    assignments = fs.list_teacher_assignments(teacher_uid=session.uid)
    semester_ids = set(semesters_for(session.uid, assignments))
    return [_semester_out(s) for s in fs.list_semesters() if s.id in semester_ids]


@app.get("/teacher/subjects")
def teacher_subjects(
    semester_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.ENTER_MARKS)
    assignments = fs.list_teacher_assignments(teacher_uid=session.uid)
    subject_ids = subjects_for(session.uid, semester_id, assignments)
    return [_subject_out(s) for s in fs.list_subjects() if s.id in subject_ids]


@app.get("/teacher/mark-sheet")
def mark_sheet(
    semester_id: str,
    subject_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.ENTER_MARKS)
    _require_assignment(session, fs, subject_id, semester_id)

    subject_names = {s.id: s.name for s in fs.list_subjects()}
    semester_names = {s.id: s.name for s in fs.list_semesters()}
    rows = build_mark_sheet(
        fs.list_users(Role.STUDENT),
        fs.list_marks(subject_id=subject_id, semester_id=semester_id),
        subject_id=subject_id,
        subject_name=resolve_name("subject", None, subject_names, subject_id),
        semester_id=semester_id,
        semester_name=resolve_name("semester", None, semester_names, semester_id),
    )
    return [row.to_dict() for row in rows]


@app.post("/teacher/marks")
def save_marks(
    payload: MarksPayload,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    authorize(session, Action.ENTER_MARKS)
    _require_assignment(session, fs, payload.subject_id, payload.semester_id)

    rows = rows_to_save(MarkRow.from_dict(row) for row in payload.rows)
    for row in rows:
        if row.subject_id not in (None, payload.subject_id) or row.semester_id not in (None, payload.semester_id):
            raise AccessDeniedError("Mark rows must belong to the selected subject and semester.")
    if any(row.id for row in rows):
        owners = {
            mark.id: mark.student_uid
            for mark in fs.list_marks(subject_id=payload.subject_id, semester_id=payload.semester_id)
        }
        for row in rows:
            if row.id and (row.id not in owners or row.student_uid not in (None, owners[row.id])):
                raise AccessDeniedError("Mark rows must refer to marks of the selected subject and semester.")
    if not rows:
        return {"status": "unchanged", "created": 0, "updated": 0, "skipped": 0}

    result = fs.upsert_marks_batch(rows, session.uid)
    return {
        "status": "saved" if result.written else "unchanged",
        "created": result.created,
        "updated": result.updated,
        "skipped": result.skipped,
    }


@app.get("/teacher/marks")
def class_marks(
    semester_id: str,
    subject_id: str,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.VIEW_CLASS_MARKS)
    _require_assignment(session, fs, subject_id, semester_id)
    marks = with_student_names(
        fs.list_marks(subject_id=subject_id, semester_id=semester_id),
        fs.list_users(Role.STUDENT),
    )
    return [mark.to_dict() for mark in marks]


# Student


@app.get("/student/semesters")
def student_semesters(
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> List[Dict]:
    authorize(session, Action.VIEW_OWN_MARKS)
    semester_ids = set(semester_ids_with_marks(fs.list_marks_by_student(session.uid)))
    return [_semester_out(s) for s in fs.list_semesters() if s.id in semester_ids]


@app.get("/student/marks")
def student_marks(
    semester_id: Optional[str] = None,
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
) -> Dict[str, Any]:
    authorize(session, Action.VIEW_OWN_MARKS)
    marks = fs.list_marks_by_student(session.uid, semester_id)
    summary = summarize_semester(marks) if semester_id else None
    return {
        "marks": [mark.to_dict() for mark in marks],
        "summary": summary.to_dict() if summary else None,
    }


@app.post("/student/analysis")
def performance_analysis(
    session: SessionState = Depends(current_session),
    fs: FirestoreService = Depends(get_store),
    analysis: PerformanceAnalysisService = Depends(get_analysis),
) -> Dict[str, str]:
    authorize(session, Action.ANALYZE_PERFORMANCE)
    marks = fs.list_marks_by_student(session.uid)
    if not marks:
        raise ValidationError("No marks data found to analyze. Please ensure your marks are updated and available.")

    request = AnalysisRequest.model_validate(
        {
            "studentName": session.name or "",
            "studentId": session.uid,
            "marksData": marks_for_analysis(marks),
        }
    )
    result = analysis.analyze(request)
    return result.model_dump(by_alias=True)
