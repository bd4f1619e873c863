import unittest
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from merittrac.app import app, get_analysis, get_auth, get_store
from merittrac.core.models import Mark, Role, Semester, Subject, TeacherAssignment, UserProfile
from merittrac.services.analysis_service import PerformanceAnalysis, PerformanceAnalysisService
from merittrac.services.auth_service import AuthResult, AuthServiceError, FirebaseAuthService
from merittrac.services.firestore_service import BatchResult, FirestoreService

ADMIN = UserProfile(uid="a1", email="admin@x.edu", name="Admin", role=Role.ADMIN)
TEACHER = UserProfile(uid="t1", email="t@x.edu", name="Tara", role=Role.TEACHER)
STUDENT = UserProfile(uid="s1", email="s@x.edu", name="Sam", role=Role.STUDENT, prn="PRN1")


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.fs = MagicMock(spec=FirestoreService)
        self.auth = MagicMock(spec=FirebaseAuthService)
        self.analysis = MagicMock(spec=PerformanceAnalysisService)
        app.dependency_overrides[get_store] = lambda: self.fs
        app.dependency_overrides[get_auth] = lambda: self.auth
        app.dependency_overrides[get_analysis] = lambda: self.analysis
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def as_user(self, profile):
        self.fs.get_profile.return_value = profile
        return {"x-user-id": profile.uid}


class AccountRoutesTests(ApiTestCase):
    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})

    def test_missing_user_header(self):
        self.assertEqual(self.client.get("/me").status_code, 401)

    def test_me_lists_role_navigation(self):
        res = self.client.get("/me", headers=self.as_user(STUDENT))
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["profile"]["prn"], "PRN1")
        self.assertEqual([n["label"] for n in body["navigation"]], ["Dashboard", "My Marks", "Performance Analysis"])

    def test_signup_student_creates_profile(self):
        self.auth.sign_up.return_value = AuthResult(uid="new", email="n@x.edu", id_token="tok", refresh_token="ref")
        res = self.client.post(
            "/auth/signup",
            json={"email": "n@x.edu", "password": "pw1234", "name": "Nia", "role": "student", "prn": "P9"},
        )
        self.assertEqual(res.status_code, 200)
        profile = self.fs.create_user_profile.call_args[0][0]
        self.assertEqual((profile.uid, profile.role, profile.prn), ("new", Role.STUDENT, "P9"))

    def test_signup_admin_refused(self):
        res = self.client.post(
            "/auth/signup",
            json={"email": "n@x.edu", "password": "pw1234", "name": "Nia", "role": "admin"},
        )
        self.assertEqual(res.status_code, 400)
        self.auth.sign_up.assert_not_called()

    def test_login_failure(self):
        self.auth.sign_in.side_effect = AuthServiceError("INVALID_LOGIN_CREDENTIALS")
        res = self.client.post("/auth/login", json={"email": "a@x.edu", "password": "bad"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json()["detail"], "INVALID_LOGIN_CREDENTIALS")


class AdminRoutesTests(ApiTestCase):
    def test_student_cannot_manage_subjects(self):
        res = self.client.post("/subjects", json={"name": "Physics", "code": "PHY"}, headers=self.as_user(STUDENT))
        self.assertEqual(res.status_code, 403)
        self.fs.add_subject.assert_not_called()

    def test_admin_creates_subject(self):
        self.fs.add_subject.return_value = "sub1"
        res = self.client.post("/subjects", json={"name": " Physics ", "code": "PHY"}, headers=self.as_user(ADMIN))
        self.assertEqual(res.json(), {"id": "sub1"})
        self.fs.add_subject.assert_called_once_with(name="Physics", code="PHY")

    def test_semester_update_maps_field_names(self):
        res = self.client.patch("/semesters/sem1", json={"start_date": "2024-01-01"}, headers=self.as_user(ADMIN))
        self.assertEqual(res.status_code, 200)
        self.fs.update_semester.assert_called_once_with("sem1", {"startDate": "2024-01-01"})

    def test_search_students(self):
        self.fs.list_users.return_value = [STUDENT, UserProfile(uid="s2", email="b@x.edu", name="Bo", role=Role.STUDENT)]
        res = self.client.get("/users", params={"role": "student", "search": "prn1"}, headers=self.as_user(ADMIN))
        self.assertEqual([u["uid"] for u in res.json()], ["s1"])
        self.fs.list_users.assert_called_once_with(Role.STUDENT)


class TeacherRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.fs.list_teacher_assignments.return_value = [
            TeacherAssignment(id="a1", teacher_uid="t1", subject_id="SubjA", semester_id="Sem1"),
            TeacherAssignment(id="a2", teacher_uid="t1", subject_id="SubjB", semester_id="Sem2"),
        ]
        self.fs.list_subjects.return_value = [
            Subject(id="SubjA", name="Algebra", code="A"),
            Subject(id="SubjB", name="Biology", code="B"),
        ]
        self.fs.list_semesters.return_value = [
            Semester(id="Sem2", name="Spring", year=2025),
            Semester(id="Sem1", name="Fall", year=2024),
        ]

    def test_subjects_scoped_by_semester(self):
        res = self.client.get("/teacher/subjects", params={"semester_id": "Sem1"}, headers=self.as_user(TEACHER))
        self.assertEqual([s["id"] for s in res.json()], ["SubjA"])

    def test_mark_sheet(self):
        self.fs.list_users.return_value = [STUDENT]
        self.fs.list_marks.return_value = []
        res = self.client.get(
            "/teacher/mark-sheet",
            params={"semester_id": "Sem1", "subject_id": "SubjA"},
            headers=self.as_user(TEACHER),
        )
        rows = res.json()
        self.assertEqual(len(rows), 1)
        self.assertEqual((rows[0]["studentUid"], rows[0]["subjectName"], rows[0]["semesterName"]), ("s1", "Algebra", "Fall"))
        self.assertIsNone(rows[0]["id"])

    def test_unassigned_pair_forbidden(self):
        res = self.client.post(
            "/teacher/marks",
            json={"semester_id": "Sem2", "subject_id": "SubjA", "rows": []},
            headers=self.as_user(TEACHER),
        )
        self.assertEqual(res.status_code, 403)
        self.fs.upsert_marks_batch.assert_not_called()

    def test_save_marks(self):
        self.fs.upsert_marks_batch.return_value = BatchResult(created=1, updated=0, skipped=1)
        rows = [
            {"studentUid": "s1", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": 8},
            {"subjectId": "SubjA", "semesterId": "Sem1", "ca1": 4},
            {"studentUid": "s3", "subjectId": "SubjA", "semesterId": "Sem1"},
        ]
        res = self.client.post(
            "/teacher/marks",
            json={"semester_id": "Sem1", "subject_id": "SubjA", "rows": rows},
            headers=self.as_user(TEACHER),
        )
        self.assertEqual(res.json(), {"status": "saved", "created": 1, "updated": 0, "skipped": 1})
        sent, editor = self.fs.upsert_marks_batch.call_args[0]
        self.assertEqual(editor, "t1")
        self.assertEqual(len(sent), 2)

    def _save_through_batch(self, rows):
        backend = FirestoreService("", client=MagicMock())
        self.fs.upsert_marks_batch.side_effect = backend.upsert_marks_batch
        res = self.client.post(
            "/teacher/marks",
            json={"semester_id": "Sem1", "subject_id": "SubjA", "rows": rows},
            headers=self.as_user(TEACHER),
        )
        return res, backend.db.batch.return_value

    def test_unreadable_row_skipped_rest_saved(self):
        rows = [
            {"studentUid": "s1", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": "abc"},
            {"studentUid": "s2", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": 8, "endTerm": 50},
        ]
        res, batch = self._save_through_batch(rows)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"status": "saved", "created": 1, "updated": 0, "skipped": 1})
        payload = batch.set.call_args[0][1]
        self.assertEqual((payload["studentUid"], payload["total"]), ("s2", 58))

    def test_nan_component_never_stored(self):
        rows = [{"studentUid": "s1", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": "nan", "endTerm": 60}]
        res, batch = self._save_through_batch(rows)
        self.assertEqual(res.json(), {"status": "unchanged", "created": 0, "updated": 0, "skipped": 1})
        batch.set.assert_not_called()
        batch.commit.assert_not_called()

    def test_row_id_must_be_mark_of_selected_pair(self):
        self.fs.list_marks.return_value = [
            Mark(id="m1", student_uid="s1", subject_id="SubjA", semester_id="Sem1", total=40),
        ]
        for row in (
            {"id": "m9", "studentUid": "s1", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": 5},
            {"id": "m1", "studentUid": "s2", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": 5},
        ):
            res = self.client.post(
                "/teacher/marks",
                json={"semester_id": "Sem1", "subject_id": "SubjA", "rows": [row]},
                headers=self.as_user(TEACHER),
            )
            self.assertEqual(res.status_code, 403)
        self.fs.upsert_marks_batch.assert_not_called()
        self.fs.list_marks.assert_called_with(subject_id="SubjA", semester_id="Sem1")

    def test_row_id_of_selected_pair_updates(self):
        self.fs.list_marks.return_value = [
            Mark(id="m1", student_uid="s1", subject_id="SubjA", semester_id="Sem1", total=40),
        ]
        self.fs.upsert_marks_batch.return_value = BatchResult(created=0, updated=1, skipped=0)
        row = {"id": "m1", "studentUid": "s1", "subjectId": "SubjA", "semesterId": "Sem1", "ca1": 5}
        res = self.client.post(
            "/teacher/marks",
            json={"semester_id": "Sem1", "subject_id": "SubjA", "rows": [row]},
            headers=self.as_user(TEACHER),
        )
        self.assertEqual(res.json()["updated"], 1)

    def test_rows_for_other_subject_rejected(self):
        rows = [{"studentUid": "s1", "subjectId": "SubjB", "semesterId": "Sem1", "ca1": 8}]
        res = self.client.post(
            "/teacher/marks",
            json={"semester_id": "Sem1", "subject_id": "SubjA", "rows": rows},
            headers=self.as_user(TEACHER),
        )
        self.assertEqual(res.status_code, 403)


class StudentRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.fs.list_marks_by_student.return_value = [
            Mark(id="m1", student_uid="s1", subject_id="x", semester_id="Sem1", total=85, subject_name="Algebra"),
            Mark(id="m2", student_uid="s1", subject_id="y", semester_id="Sem1", total=93, subject_name="Biology"),
        ]

    def test_marks_with_summary(self):
        res = self.client.get("/student/marks", params={"semester_id": "Sem1"}, headers=self.as_user(STUDENT))
        body = res.json()
        self.assertEqual(len(body["marks"]), 2)
        self.assertEqual(body["summary"], {"totalSubjects": 2, "averagePercentage": "89.00", "gpaEquivalent": "3.5 (A)"})
        self.fs.list_marks_by_student.assert_called_once_with("s1", "Sem1")

    def test_teacher_cannot_view_student_marks_route(self):
        res = self.client.get("/student/marks", headers=self.as_user(TEACHER))
        self.assertEqual(res.status_code, 403)

    def test_analysis(self):
        self.analysis.analyze.return_value = PerformanceAnalysis(
            overallPerformance="Good",
            strengths="Biology",
            weaknesses="None",
            recommendations="Keep going",
        )
        res = self.client.post("/student/analysis", headers=self.as_user(STUDENT))
        self.assertEqual(res.json()["overallPerformance"], "Good")
        request = self.analysis.analyze.call_args[0][0]
        self.assertEqual(request.student_name, "Sam")
        self.assertEqual([m.subject for m in request.marks_data], ["Algebra", "Biology"])
        self.assertEqual(request.marks_data[0].semester, "Unknown Semester")

    def test_analysis_without_marks(self):
        self.fs.list_marks_by_student.return_value = []
        res = self.client.post("/student/analysis", headers=self.as_user(STUDENT))
        self.assertEqual(res.status_code, 400)
        self.analysis.analyze.assert_not_called()


if __name__ == "__main__":
    unittest.main()
