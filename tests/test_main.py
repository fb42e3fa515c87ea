from io import BytesIO

import openpyxl
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import IntegrityError

import auth
import database
import directory
from config import AuthConfig
from conftest import bearer
from main import app


@pytest.fixture
def teacher_ids(teachers):
    return [t.id for t in teachers]


@pytest.fixture
def saved_schedule(client, schedule_payload):
    response = client.post("/api/schedules", json=schedule_payload)
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def saved_assignments(client, school_class, teacher_ids):
    payload = {
        "class_name": "3AHET",
        "am_assignments": [
            {"group_id": 1, "teacher_id": teacher_ids[0], "subject": "WEPT-Elektronik", "room": "E02", "learning_content": "Löten"},
            {"group_id": 2, "teacher_id": teacher_ids[1]},
            {"group_id": 2, "teacher_id": teacher_ids[2]},
        ],
        "pm_assignments": [{"group_id": 1, "teacher_id": teacher_ids[3]}],
    }
    response = client.post("/api/schedule/teacher-assignments", json=payload)
    assert response.status_code == 200
    return payload


class FakeDirectory:
    def __init__(self, users):
        self.users = users

    def authenticate(self, username, password):
        user, expected = self.users.get(username, (None, None))
        if user is None or password != expected:
            return None
        return user


# ========== General & auth ==========
def test_health_check(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"status": "Wechselplan is running"}


def test_missing_token_is_rejected(client):
    response = TestClient(app).get("/classes/")
    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}


def test_invalid_token_is_rejected(client):
    response = client.get("/classes/", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid authentication credentials"


def test_teacher_cannot_create_class(client):
    response = client.post("/classes/", json={"name": "1A"}, headers=bearer("khuber", "teacher"))
    assert response.status_code == 403


def test_login_without_directory(client):
    response = client.post("/token", data={"username": "mmuster", "password": "secret"})
    assert response.status_code == 503


def test_login_with_directory(client, db):
    app.state.directory = FakeDirectory({
        "mmuster": (auth.DirectoryUser(username="mmuster", groups=["wp-admins", "staff"]), "secret"),
    })
    app.dependency_overrides[auth.get_auth_config] = lambda: AuthConfig(
        admin_groups=["wp-admins"], teacher_groups=["staff"]
    )

    response = client.post("/token", data={"username": "mmuster", "password": "secret"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    me = client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json() == {"username": "mmuster", "role": "admin"}
    assert auth.get_user_role(db, "mmuster") == "admin"


def test_login_when_directory_is_down(client):
    class BrokenDirectory:
        def authenticate(self, username, password):
            raise directory.DirectoryError("Failed to bind with service account")

    app.state.directory = BrokenDirectory()
    response = client.post("/token", data={"username": "mmuster", "password": "secret"})
    assert response.status_code == 503
    assert response.json() == {"error": "Account directory unavailable"}


def test_login_wrong_password(client):
    app.state.directory = FakeDirectory({
        "mmuster": (auth.DirectoryUser(username="mmuster"), "secret"),
    })
    response = client.post("/token", data={"username": "mmuster", "password": "wrong"})
    assert response.status_code == 401
    assert response.json()["error"] == "Incorrect username or password"


def test_validation_error_returns_400(client):
    response = client.post("/classes/", json={})
    assert response.status_code == 400
    assert "error" in response.json()


# ========== Classes & students ==========
def test_create_class(client, teacher_ids):
    response = client.post("/classes/", json={"name": "2BHEL", "class_head_id": teacher_ids[1]})
    assert response.status_code == 201
    assert response.json()["name"] == "2BHEL"

    duplicate = client.post("/classes/", json={"name": "2BHEL"})
    assert duplicate.status_code == 400


def test_read_class_by_name(client, school_class):
    response = client.get("/classes/by-name", params={"name": "3AHET"})
    assert response.status_code == 200
    assert response.json()["class_head"]["last_name"] == "Berger"
    assert response.json()["class_lead"] is None

    assert client.get("/classes/by-name", params={"name": "9Z"}).status_code == 404


def test_create_student(client, school_class):
    response = client.post(
        "/students/",
        json={"first_name": "Ida", "last_name": "Kern", "class_id": school_class.id, "group_id": 2},
    )
    assert response.status_code == 201
    assert response.json()["group_id"] == 2

    unknown = client.post("/students/", json={"first_name": "Ida", "last_name": "Kern", "class_id": 999})
    assert unknown.status_code == 404


def test_list_students_of_class(client, school_class):
    response = client.get("/students/", params={"class_id": school_class.id})
    names = [(s["last_name"], s["first_name"]) for s in response.json()]
    assert names[:2] == [("Auer", "Max"), ("Auer", "Mia")]
    assert len(names) == 5


def test_delete_class_removes_students(client, school_class, saved_schedule):
    class_id = school_class.id
    response = client.delete(f"/classes/{class_id}")
    assert response.status_code == 200

    assert client.get("/students/", params={"class_id": class_id}).json() == []
    assert client.get("/api/schedules", params={"class_id": class_id}).json() == []


def test_named_items(client):
    assert client.post("/subjects/", json={"name": "Mathematik"}).status_code == 201
    assert client.post("/subjects/", json={"name": "Mathematik"}).status_code == 400
    assert client.post("/rooms/", json={"name": "A101", "is_custom": True}).json()["is_custom"] is True
    assert [r["name"] for r in client.get("/learning-contents/").json()] == []


def test_holiday_dates_are_validated(client):
    response = client.post("/holidays/", json={"name": "Herbstferien", "start_date": "2024-11-02", "end_date": "2024-10-26"})
    assert response.status_code == 400


# ========== Schedules ==========
def test_create_schedule(saved_schedule):
    assert saved_schedule["selected_weekday"] == 1
    data = saved_schedule["schedule_data"]
    assert list(data) == ["Turnus 1", "Turnus 2", "Turnus 3"]
    assert data["Turnus 1"]["weeks"][0] == {"date": "16.09.24", "week": "KW38", "isHoliday": False}
    assert data["Turnus 2"]["weeks"][1]["isHoliday"] is True
    assert data["Turnus 3"]["holidays"] == []
    assert "customLength" not in data["Turnus 1"]


def test_schedule_replaces_same_weekday(client, school_class, schedule_payload, saved_schedule):
    schedule_payload["name"] = "Neu"
    client.post("/api/schedules", json=schedule_payload)

    schedule_payload["selected_weekday"] = 3
    client.post("/api/schedules", json=schedule_payload)

    schedules = client.get("/api/schedules", params={"class_id": school_class.id}).json()
    assert sorted((s["selected_weekday"], s["name"]) for s in schedules) == [(1, "Neu"), (3, "Neu")]

    monday = client.get("/api/schedules", params={"class_id": school_class.id, "weekday": 1}).json()
    assert len(monday) == 1


def test_schedule_with_holidays(client, schedule_payload):
    holiday = client.post(
        "/holidays/", json={"name": "Herbstferien", "start_date": "2024-10-26", "end_date": "2024-11-03"}
    ).json()
    schedule_payload["schedule"]["Turnus 3"]["holidays"] = [{"id": holiday["id"]}, {"id": -1}]
    schedule_payload["schedule"]["Turnus 3"]["customLength"] = 4

    response = client.post("/api/schedules", json=schedule_payload)
    assert response.status_code == 201
    turn = response.json()["schedule_data"]["Turnus 3"]
    assert turn["customLength"] == 4
    assert turn["holidays"] == [
        {"id": holiday["id"], "name": "Herbstferien", "startDate": "2024-10-26", "endDate": "2024-11-03"}
    ]


def test_schedule_with_repeated_holiday(client, schedule_payload):
    holiday = client.post(
        "/holidays/", json={"name": "Herbstferien", "start_date": "2024-10-26", "end_date": "2024-11-03"}
    ).json()
    schedule_payload["schedule"]["Turnus 2"]["holidays"] = [{"id": holiday["id"]}, {"id": holiday["id"]}]

    response = client.post("/api/schedules", json=schedule_payload)
    assert response.status_code == 201
    assert [h["id"] for h in response.json()["schedule_data"]["Turnus 2"]["holidays"]] == [holiday["id"]]


def test_schedule_with_unknown_holiday_keeps_previous(client, school_class, schedule_payload, saved_schedule):
    schedule_payload["schedule"]["Turnus 1"]["holidays"] = [{"id": 999}]
    response = client.post("/api/schedules", json=schedule_payload)
    assert response.status_code == 400
    assert response.json() == {"error": "Schedule references an unknown holiday"}

    schedules = client.get("/api/schedules", params={"class_id": school_class.id}).json()
    assert [s["id"] for s in schedules] == [saved_schedule["id"]]


def test_schedule_skips_malformed_turns(client, schedule_payload):
    schedule_payload["schedule"]["Kaputt"] = "nicht ein Turnus"
    schedule_payload["schedule"]["Leer"] = {"weeks": None}
    response = client.post("/api/schedules", json=schedule_payload)
    assert list(response.json()["schedule_data"]) == ["Turnus 1", "Turnus 2", "Turnus 3"]


def test_schedule_for_unknown_class(client, schedule_payload):
    schedule_payload["class_id"] = 999
    assert client.post("/api/schedules", json=schedule_payload).status_code == 404


def test_schedule_weekday_out_of_range(client, schedule_payload):
    schedule_payload["selected_weekday"] = 7
    assert client.post("/api/schedules", json=schedule_payload).status_code == 400


# ========== Teacher assignments ==========
def test_read_teacher_assignments(client, saved_assignments, teacher_ids):
    response = client.get("/api/schedule/teacher-assignments", params={"class_name": "3AHET"})
    assert response.status_code == 200
    body = response.json()
    assert body["am_assignments"][0] == {
        "group_id": 1,
        "teacher_id": teacher_ids[0],
        "subject": "WEPT-Elektronik",
        "learning_content": "Löten",
        "room": "E02",
    }
    assert [a["teacher_id"] for a in body["pm_assignments"]] == [teacher_ids[3]]


def test_existing_assignments_need_confirmation(client, saved_assignments, teacher_ids):
    payload = {"class_name": "3AHET", "am_assignments": [{"group_id": 1, "teacher_id": teacher_ids[1]}]}
    response = client.post("/api/schedule/teacher-assignments", json=payload)
    assert response.status_code == 409
    assert response.json() == {"error": "EXISTING_ASSIGNMENTS"}

    payload["update_existing"] = True
    response = client.post("/api/schedule/teacher-assignments", json=payload)
    assert response.json() == {"success": True, "count": 1}

    body = client.get("/api/schedule/teacher-assignments", params={"class_name": "3AHET"}).json()
    assert [a["teacher_id"] for a in body["am_assignments"]] == [teacher_ids[1]]
    assert body["pm_assignments"] == []


def test_assignment_with_unknown_subject(client, school_class, teacher_ids):
    payload = {"class_name": "3AHET", "am_assignments": [{"group_id": 1, "teacher_id": teacher_ids[0], "subject": "Latein"}]}
    response = client.post("/api/schedule/teacher-assignments", json=payload)
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid subject, learning content, or room"


def test_assignment_with_unknown_teacher_keeps_previous(client, saved_assignments):
    payload = {"class_name": "3AHET", "am_assignments": [{"group_id": 1, "teacher_id": 999}], "update_existing": True}
    response = client.post("/api/schedule/teacher-assignments", json=payload)
    assert response.status_code == 400

    body = client.get("/api/schedule/teacher-assignments", params={"class_name": "3AHET"}).json()
    assert len(body["am_assignments"]) == 3


def test_assignments_for_unknown_class(client):
    response = client.get("/api/schedule/teacher-assignments", params={"class_name": "9Z"})
    assert response.status_code == 404


# ========== Teacher rotation ==========
def test_generate_rotation(client, school_class, saved_schedule, saved_assignments, teacher_ids):
    t0, t1, t2, t3 = teacher_ids
    response = client.post("/api/schedule/teacher-rotation/generate", params={"class_id": school_class.id})
    assert response.status_code == 200
    body = response.json()

    assert body["turns"] == ["Turnus 1", "Turnus 2", "Turnus 3"]
    assert body["am_rotation"] == [
        {"group_id": 1, "turns": [t0, t1, t2]},
        {"group_id": 2, "turns": [t1, t2, t0]},
    ]
    # one PM teacher for two groups: the second group stays unassigned
    assert body["pm_rotation"] == [
        {"group_id": 1, "turns": [t3, t3, t3]},
        {"group_id": 2, "turns": [None, None, None]},
    ]

    stored = client.get("/api/schedule/teacher-rotation", params={"class_id": school_class.id}).json()
    assert len(stored) == 9
    assert {(r["period"], r["turn_id"]) for r in stored if r["group_id"] == 2} == {
        ("AM", "Turnus 1"), ("AM", "Turnus 2"), ("AM", "Turnus 3"),
    }


def test_generate_rotation_without_schedule(client, school_class):
    response = client.post("/api/schedule/teacher-rotation/generate", params={"class_id": school_class.id})
    assert response.status_code == 404
    assert response.json() == {"error": "Schedule not found"}


def test_save_rotation(client, school_class, teacher_ids):
    matrix = {
        "class_id": school_class.id,
        "turns": ["Turnus 1", "Turnus 2"],
        "am_rotation": [{"group_id": 1, "turns": [teacher_ids[0], None]}],
        "pm_rotation": [{"group_id": 2, "turns": [teacher_ids[1], teacher_ids[2]]}],
    }
    response = client.post("/api/schedule/teacher-rotation", json=matrix)
    assert response.json() == {"success": True, "count": 3}

    matrix["pm_rotation"] = []
    client.post("/api/schedule/teacher-rotation", json=matrix)
    stored = client.get("/api/schedule/teacher-rotation", params={"class_id": school_class.id}).json()
    assert [(r["group_id"], r["turn_id"], r["teacher_id"], r["period"]) for r in stored] == [
        (1, "Turnus 1", teacher_ids[0], "AM"),
    ]


def test_rotation_rejects_repeated_group(client, school_class, teacher_ids):
    matrix = {
        "class_id": school_class.id,
        "turns": ["Turnus 1"],
        "am_rotation": [
            {"group_id": 1, "turns": [teacher_ids[0]]},
            {"group_id": 1, "turns": [teacher_ids[1]]},
        ],
        "pm_rotation": [],
    }
    response = client.post("/api/schedule/teacher-rotation", json=matrix)
    assert response.status_code == 400
    assert client.get("/api/schedule/teacher-rotation", params={"class_id": school_class.id}).json() == []


def test_rotation_rejects_repeated_turn(client, school_class, teacher_ids):
    matrix = {
        "class_id": school_class.id,
        "turns": ["Turnus 1", "Turnus 1"],
        "am_rotation": [{"group_id": 1, "turns": [teacher_ids[0], teacher_ids[1]]}],
        "pm_rotation": [],
    }
    assert client.post("/api/schedule/teacher-rotation", json=matrix).status_code == 400


def test_rotation_table_holds_one_row_per_cell(db, school_class, teacher_ids):
    cell = {"class_id": school_class.id, "group_id": 1, "turn_id": "Turnus 1", "period": "AM"}
    db.add(database.TeacherRotation(teacher_id=teacher_ids[0], **cell))
    db.add(database.TeacherRotation(teacher_id=teacher_ids[1], **cell))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


# ========== Report & exports ==========
def test_report_without_schedule(client, school_class):
    response = client.get("/api/schedules/report", params={"class_name": "3AHET"})
    assert response.status_code == 404
    assert response.json() == {"error": "Schedule not found"}


def test_report_for_unknown_class(client):
    response = client.get("/api/schedules/report", params={"class_name": "9Z"})
    assert response.status_code == 404
    assert response.json() == {"error": "Class not found"}


def test_report(client, saved_schedule, saved_assignments):
    response = client.get("/api/schedules/report", params={"class_name": "3AHET"})
    assert response.status_code == 200
    body = response.json()

    assert body["class_head"] == "Anna Berger"
    assert body["class_lead"] == "—"
    assert body["weekday_name"] == "Montag"
    assert body["additional_info"] == "Werkstättenkleidung mitbringen"
    assert [g["id"] for g in body["groups"]] == [1, 2]
    assert [s["last_name"] for s in body["groups"][0]["students"]] == ["Auer", "Zach"]
    assert body["groups"][1]["color"] == "#dcfce7"
    assert body["turns"][0] == {"name": "Turnus 1", "dates": ["09.09.2024", "16.09.2024"]}
    assert body["turns"][1]["dates"] == ["23.09.2024"]
    assert body["am_assignments"][1]["subject_name"] == ""


def test_export_pdf(client, saved_schedule, saved_assignments):
    response = client.post("/api/export", params={"class_name": "3AHET"})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="schedule-3AHET.pdf"' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_export_excel(client, saved_schedule, saved_assignments):
    response = client.post("/api/export/excel", params={"class_name": "3AHET", "selected_weekday": 1})
    assert response.status_code == 200
    assert "3AHET_gruppenliste.xlsx" in response.headers["content-disposition"]

    ws = openpyxl.load_workbook(BytesIO(response.content))["Gruppenliste"]
    assert ws["B1"].value == "Auer Max"
    assert ws["B2"].value == "Zach Lena"
    assert ws["C1"].value == "Auer Mia"
    assert ws["F1"].value == "3AHET"
    assert ws["G1"].value == "Anna Berger"
    assert ws["I1"].value == "Turnustage Gruppe 1"
    assert ws["Q1"].value == "Lehrer Vormittag"
    assert ws["R1"].value == "Lehrer Nachmittag"
    assert ws["I3"].value == "09.09.2024"
    assert ws["I4"].value == "16.09.2024"
    assert ws["J3"].value == "23.09.2024"
    assert ws["K3"].value == "07.10.2024"
    assert ws["Q3"].value == "BERGER Anna"
    assert ws["R3"].value == "WOLF Paul"


def test_export_excel_rejects_weekend(client, saved_schedule):
    response = client.post("/api/export/excel", params={"class_name": "3AHET", "selected_weekday": 6})
    assert response.status_code == 400
    assert response.json() == {"error": "Selected Weekday is invalid"}


def test_export_excel_for_other_weekday(client, saved_schedule):
    response = client.post("/api/export/excel", params={"class_name": "3AHET", "selected_weekday": 2})
    assert response.status_code == 404


# ========== Grades ==========
@pytest.fixture
def student_id(db, school_class):
    return db.query(database.Student).filter(database.Student.last_name == "Zach").first().id


def test_save_grade(client, school_class, student_id, teacher_ids):
    grade = {"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "first", "grade": 2.5}
    first = client.post("/api/notensammler/grades", json=grade, headers=bearer("aberger", "teacher"))
    assert first.status_code == 200
    assert first.json()["grade"] == 2.5

    grade["grade"] = 3
    second = client.post("/api/notensammler/grades", json=grade)
    assert second.json()["id"] == first.json()["id"]

    grades = client.get("/api/notensammler/grades", params={"class_id": school_class.id}).json()
    assert grades == {str(student_id): {str(teacher_ids[0]): {"first": 3.0, "second": None}}}


def test_grade_must_be_allowed(client, school_class, student_id, teacher_ids):
    grade = {"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "first", "grade": 2.7}
    assert client.post("/api/notensammler/grades", json=grade).status_code == 400


def test_student_cannot_grade(client, school_class, student_id, teacher_ids):
    grade = {"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "second"}
    response = client.post("/api/notensammler/grades", json=grade, headers=bearer("lzach", "student"))
    assert response.status_code == 403


def test_grade_for_unknown_student(client, school_class, teacher_ids):
    grade = {"student_id": 999, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "first"}
    response = client.post("/api/notensammler/grades", json=grade)
    assert response.status_code == 404
    assert response.json() == {"error": "Student not found"}


def test_grade_sheet_pdf(client, school_class, saved_assignments, student_id, teacher_ids):
    client.post(
        "/api/notensammler/grades",
        json={"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "first", "grade": 1},
    )
    response = client.get("/api/notensammler/pdf", params={"class_id": school_class.id})
    assert response.status_code == 200
    assert response.content.startswith(b"%PDF")
    assert "notensammler-3AHET-" in response.headers["content-disposition"]


def test_export_schedule_dates(client, saved_schedule):
    response = client.post("/api/export/schedule-dates", params={"class_name": "3AHET", "selected_weekday": 1})
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert 'filename="schedule-dates-3AHET.pdf"' in response.headers["content-disposition"]
    assert response.content.startswith(b"%PDF")


def test_export_schedule_dates_rejects_weekend(client, saved_schedule):
    response = client.post("/api/export/schedule-dates", params={"class_name": "3AHET", "selected_weekday": 6})
    assert response.status_code == 400
    assert response.json() == {"error": "Selected Weekday is invalid"}


def test_export_schedule_dates_for_other_weekday(client, saved_schedule):
    response = client.post("/api/export/schedule-dates", params={"class_name": "3AHET", "selected_weekday": 2})
    assert response.status_code == 404
    assert response.json() == {"error": "Schedule not found"}

    unknown = client.post("/api/export/schedule-dates", params={"class_name": "9Z", "selected_weekday": 1})
    assert unknown.json() == {"error": "Class not found"}


# ========== Grade import & export ==========
def grade_workbook(rows, header=None):
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.append(header or ["className", "studentUsername", "teacherUsername", "semester", "grade"])
    for row in rows:
        ws.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def upload(client, content):
    files = {"file": ("noten.xlsx", content, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")}
    return client.post("/api/admin/grades/import", files=files)


def test_export_grades(client, school_class, student_id, teacher_ids):
    client.post(
        "/api/notensammler/grades",
        json={"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "first", "grade": 2.5},
    )
    response = client.get("/api/admin/grades/export")
    assert response.status_code == 200
    assert "grades_export_" in response.headers["content-disposition"]

    ws = openpyxl.load_workbook(BytesIO(response.content))["Noten"]
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0][:3] == ("className", "studentUsername", "studentFirstName")
    assert rows[1] == ("3AHET", "lzach", "Lena", "Zach", "aberger", "Anna", "Berger", "first", 2.5)
    assert len(rows) == 2


def test_teacher_can_export_grades(client, school_class):
    response = client.get("/api/admin/grades/export", headers=bearer("khuber", "teacher"))
    assert response.status_code == 200
    response = client.get("/api/admin/grades/export", headers=bearer("lzach", "student"))
    assert response.status_code == 403


def test_import_grades(client, school_class, student_id, teacher_ids):
    content = grade_workbook([
        ["3AHET", "lzach", "aberger", "first", 2],
        ["3AHET", "niemand", "aberger", "first", 1],
        [None, None, None, None, None],
    ])
    response = upload(client, content)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["imported"] == 1
    assert body["errors"] == ['Row 3: Student with username "niemand" not found']

    grades = client.get("/api/notensammler/grades", params={"class_id": school_class.id}).json()
    assert grades == {str(student_id): {str(teacher_ids[0]): {"first": 2.0, "second": None}}}


def test_import_grades_updates_existing(client, school_class, student_id, teacher_ids):
    client.post(
        "/api/notensammler/grades",
        json={"student_id": student_id, "teacher_id": teacher_ids[0], "class_id": school_class.id, "semester": "second", "grade": 4},
    )
    response = upload(client, grade_workbook([["3AHET", "lzach", "aberger", "second", 1.5]]))
    assert response.json()["imported"] == 1

    grades = client.get("/api/notensammler/grades", params={"class_id": school_class.id}).json()
    assert grades[str(student_id)][str(teacher_ids[0])]["second"] == 1.5


def test_import_grades_all_rows_invalid(client, school_class):
    content = grade_workbook([
        ["3AHET", "lzach", "aberger", "third", 2],
        ["3AHET", "lzach", "aberger", "first", 2.7],
    ])
    response = upload(client, content)
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "All rows failed validation"
    assert body["errors"] == [
        'Row 2: Semester must be "first" or "second", got "third"',
        'Row 3: Invalid grade value "2.7"',
    ]


def test_import_grades_rejects_other_files(client, school_class):
    response = upload(client, b"className;studentUsername\n3AHET;lzach\n")
    assert response.status_code == 400
    assert response.json() == {"error": "File is not an xlsx workbook"}


def test_import_grades_missing_columns(client, school_class):
    content = grade_workbook([["3AHET", "lzach"]], header=["className", "studentUsername"])
    response = upload(client, content)
    assert response.status_code == 400
    assert response.json() == {"error": "Missing required columns: teacherUsername, semester"}
