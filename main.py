import logging
from datetime import date
from typing import List, Optional
from zipfile import BadZipFile

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordRequestForm
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import crud
import database
import directory
import exports
import models
import report
from database import Base, engine, get_db

logging.basicConfig(
    level=auth.get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Wechselplan")
app.state.directory = None
if auth.get_settings().auth.ldap_url:
    app.state.directory = directory.LdapDirectory(auth.get_settings().auth)

Base.metadata.create_all(bind=engine)


def capture_error(error: Exception, location: str, error_type: str, extra: Optional[dict] = None):
    """Report an unexpected failure; the client only ever sees a generic message."""
    logger.error(
        f"[{location}] {error_type}: {error!r}",
        exc_info=(error.__class__, error, error.__traceback__),
        extra={"location": location, "error_type": error_type, "context": extra or {}},
    )


# ========== Error handling ==========
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request data"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": message, "details": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in errors]},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    capture_error(exc, location=request.url.path, error_type="unhandled", extra={"method": request.method})
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})


def attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/")
def health_check():
    return {"status": "Wechselplan is running"}


# ========== Authentication ==========
@app.post("/token", response_model=models.Token)
def login_for_access_token(
        form_data: OAuth2PasswordRequestForm = Depends(),
        account_directory: auth.Directory = Depends(auth.get_directory),
        config=Depends(auth.get_auth_config),
        db: Session = Depends(get_db)
):
    try:
        user = account_directory.authenticate(form_data.username, form_data.password)
    except directory.DirectoryError as e:
        logger.error(f"Login for {form_data.username} failed: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Account directory unavailable")
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    role = auth.derive_role(user.groups, config)
    auth.assign_user_role(db, user.username, role)

    access_token = auth.create_access_token(data={"sub": user.username, "role": role}, config=config)
    return {"access_token": access_token, "token_type": "bearer"}


@app.get("/users/me", response_model=models.CurrentUser)
def read_users_me(current_user: models.CurrentUser = Depends(auth.get_current_user)):
    return current_user


# ========== Classes ==========
@app.post("/classes/", response_model=models.SchoolClass, status_code=status.HTTP_201_CREATED)
def create_class(
        school_class: models.SchoolClassCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    if crud.get_class_by_name(db, school_class.name):
        raise HTTPException(status_code=400, detail="Class name already exists")

    db_class = database.SchoolClass(**school_class.model_dump())
    db.add(db_class)
    db.commit()
    db.refresh(db_class)
    return db_class


@app.get("/classes/", response_model=List[models.SchoolClass])
def read_classes(db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    return db.query(database.SchoolClass).order_by(database.SchoolClass.name).all()


@app.get("/classes/by-name", response_model=models.SchoolClassDetail)
def read_class_by_name(name: str, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    db_class = crud.get_class_by_name(db, name)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")
    return db_class


@app.get("/classes/{class_id}", response_model=models.SchoolClassDetail)
def read_class(class_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    db_class = crud.get_class(db, class_id)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")
    return db_class


@app.delete("/classes/{class_id}")
def delete_class(class_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.require_admin)):
    db_class = crud.get_class(db, class_id)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    db.delete(db_class)
    db.commit()
    return {"message": "Class deleted successfully"}


# ========== Students ==========
@app.post("/students/", response_model=models.Student, status_code=status.HTTP_201_CREATED)
def create_student(
        student: models.StudentCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    if student.class_id is not None and not crud.get_class(db, student.class_id):
        raise HTTPException(status_code=404, detail="Class not found")

    db_student = database.Student(**student.model_dump())
    db.add(db_student)
    db.commit()
    db.refresh(db_student)
    return db_student


@app.get("/students/", response_model=List[models.Student])
def read_students(
        class_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    query = db.query(database.Student)
    if class_id is not None:
        query = query.filter(database.Student.class_id == class_id)
    return query.order_by(database.Student.last_name, database.Student.first_name).offset(skip).limit(limit).all()


@app.put("/students/{student_id}", response_model=models.Student)
def update_student(
        student_id: int,
        student: models.StudentCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    db_student = db.query(database.Student).filter(database.Student.id == student_id).first()
    if not db_student:
        raise HTTPException(status_code=404, detail="Student not found")

    for key, value in student.model_dump().items():
        setattr(db_student, key, value)

    db.commit()
    db.refresh(db_student)
    return db_student


@app.delete("/students/{student_id}")
def delete_student(student_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.require_admin)):
    db_student = db.query(database.Student).filter(database.Student.id == student_id).first()
    if not db_student:
        raise HTTPException(status_code=404, detail="Student not found")

    db.query(database.Grade).filter(database.Grade.student_id == student_id).delete()
    db.delete(db_student)
    db.commit()
    return {"message": "Student deleted successfully"}


# ========== Teachers ==========
@app.post("/teachers/", response_model=models.Teacher, status_code=status.HTTP_201_CREATED)
def create_teacher(
        teacher: models.TeacherCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    if db.query(database.Teacher).filter(database.Teacher.username == teacher.username).first():
        raise HTTPException(status_code=400, detail="Username already registered")

    db_teacher = database.Teacher(**teacher.model_dump())
    db.add(db_teacher)
    db.commit()
    db.refresh(db_teacher)
    return db_teacher


@app.get("/teachers/", response_model=List[models.Teacher])
def read_teachers(db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    return db.query(database.Teacher).order_by(database.Teacher.last_name, database.Teacher.first_name).all()


@app.get("/teachers/{teacher_id}", response_model=models.Teacher)
def read_teacher(teacher_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    db_teacher = db.query(database.Teacher).filter(database.Teacher.id == teacher_id).first()
    if not db_teacher:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return db_teacher


# ========== Subjects, rooms, learning contents ==========
def register_named_routes(path: str, model, label: str):
    @app.post(path, response_model=models.NamedItem, status_code=status.HTTP_201_CREATED, name=f"create_{label}")
    def create_item(
            item: models.NamedItemCreate,
            db: Session = Depends(get_db),
            _: models.CurrentUser = Depends(auth.require_admin)
    ):
        if crud.get_by_name(db, model, item.name):
            raise HTTPException(status_code=400, detail=f"{label.capitalize()} already exists")
        db_item = model(**item.model_dump())
        db.add(db_item)
        db.commit()
        db.refresh(db_item)
        return db_item

    @app.get(path, response_model=List[models.NamedItem], name=f"read_{label}s")
    def read_items(db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
        return db.query(model).order_by(model.name).all()


register_named_routes("/subjects/", database.Subject, "subject")
register_named_routes("/rooms/", database.Room, "room")
register_named_routes("/learning-contents/", database.LearningContent, "learning content")


# ========== Holidays ==========
@app.post("/holidays/", response_model=models.Holiday, status_code=status.HTTP_201_CREATED)
def create_holiday(
        holiday: models.HolidayCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    db_holiday = database.SchoolHoliday(**holiday.model_dump())
    db.add(db_holiday)
    db.commit()
    db.refresh(db_holiday)
    return db_holiday


@app.get("/holidays/", response_model=List[models.Holiday])
def read_holidays(db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    return db.query(database.SchoolHoliday).order_by(database.SchoolHoliday.start_date).all()


@app.delete("/holidays/{holiday_id}")
def delete_holiday(holiday_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.require_admin)):
    db_holiday = db.query(database.SchoolHoliday).filter(database.SchoolHoliday.id == holiday_id).first()
    if not db_holiday:
        raise HTTPException(status_code=404, detail="Holiday not found")

    db.delete(db_holiday)
    db.commit()
    return {"message": "Holiday deleted successfully"}


# ========== Schedules ==========
@app.get("/api/schedules", response_model=List[models.Schedule])
def read_schedules(
        class_id: Optional[int] = None,
        weekday: Optional[int] = None,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    return [crud.schedule_out(s) for s in crud.list_schedules(db, class_id, weekday)]


@app.post("/api/schedules", response_model=models.Schedule, status_code=status.HTTP_201_CREATED)
def create_schedule(
        schedule: models.ScheduleCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    if schedule.class_id is not None and not crud.get_class(db, schedule.class_id):
        raise HTTPException(status_code=404, detail="Class not found")

    try:
        db_schedule = crud.create_schedule(db, schedule)
    except IntegrityError:
        raise HTTPException(status_code=400, detail="Schedule references an unknown holiday")
    return crud.schedule_out(db_schedule)


# ========== Teacher assignments ==========
def _resolve(db: Session, model, name: Optional[str]):
    if not name:
        return None
    item = crud.get_by_name(db, model, name)
    if item is None:
        raise HTTPException(status_code=400, detail="Invalid subject, learning content, or room")
    return item.id


def _assignment_out(assignment: database.TeacherAssignment) -> models.Assignment:
    return models.Assignment(
        group_id=assignment.group_id,
        teacher_id=assignment.teacher_id,
        subject=assignment.subject.name if assignment.subject else None,
        learning_content=assignment.learning_content.name if assignment.learning_content else None,
        room=assignment.room.name if assignment.room else None,
    )


@app.get("/api/schedule/teacher-assignments", response_model=models.TeacherAssignments)
def read_teacher_assignments(
        class_name: str,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    db_class = crud.get_class_by_name(db, class_name)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    assignments = crud.get_teacher_assignments(db, db_class.id)
    return models.TeacherAssignments(
        am_assignments=[_assignment_out(a) for a in assignments if a.period == "AM"],
        pm_assignments=[_assignment_out(a) for a in assignments if a.period == "PM"],
    )


@app.post("/api/schedule/teacher-assignments")
def save_teacher_assignments(
        payload: models.TeacherAssignmentsSave,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    db_class = crud.get_class_by_name(db, payload.class_name)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    if crud.get_teacher_assignments(db, db_class.id) and not payload.update_existing:
        raise HTTPException(status_code=409, detail="EXISTING_ASSIGNMENTS")

    rows = []
    for period, assignments in (("AM", payload.am_assignments), ("PM", payload.pm_assignments)):
        for assignment in assignments:
            rows.append(
                database.TeacherAssignment(
                    class_id=db_class.id,
                    period=period,
                    group_id=assignment.group_id,
                    teacher_id=assignment.teacher_id,
                    subject_id=_resolve(db, database.Subject, assignment.subject),
                    learning_content_id=_resolve(db, database.LearningContent, assignment.learning_content),
                    room_id=_resolve(db, database.Room, assignment.room),
                )
            )

    try:
        crud.replace_teacher_assignments(db, db_class.id, rows)
    except IntegrityError:
        raise HTTPException(status_code=400, detail="Unknown teacher")
    return {"success": True, "count": len(rows)}


# ========== Teacher rotation ==========
@app.get("/api/schedule/teacher-rotation", response_model=List[models.TeacherRotation])
def read_teacher_rotation(
        class_id: int,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    if not crud.get_class(db, class_id):
        raise HTTPException(status_code=404, detail="Class not found")
    return crud.get_rotations(db, class_id)


@app.post("/api/schedule/teacher-rotation")
def save_teacher_rotation(
        matrix: models.TeacherRotationMatrix,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    if not crud.get_class(db, matrix.class_id):
        raise HTTPException(status_code=404, detail="Class not found")

    try:
        count = crud.save_rotation_matrix(db, matrix)
    except IntegrityError:
        raise HTTPException(status_code=400, detail="Unknown teacher")
    return {"success": True, "count": count}


@app.post("/api/schedule/teacher-rotation/generate", response_model=models.TeacherRotationMatrix)
def generate_teacher_rotation(
        class_id: int,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_admin)
):
    db_class = crud.get_class(db, class_id)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    schedule = crud.latest_schedule(db, class_id)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")

    matrix = crud.build_class_rotation(db, db_class, schedule)
    crud.save_rotation_matrix(db, matrix)
    return matrix


# ========== Report & exports ==========
def _load_report(db: Session, class_name: str, weekday: Optional[int] = None) -> report.ScheduleReport:
    db_class = crud.get_class_by_name(db, class_name)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    schedule = crud.latest_schedule(db, db_class.id, weekday)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")

    students = db.query(database.Student).filter(database.Student.class_id == db_class.id).all()
    return report.assemble_report(
        db_class,
        students,
        crud.get_teacher_assignments(db, db_class.id),
        schedule,
        crud.get_rotations(db, db_class.id),
    )


@app.get("/api/schedules/report")
def read_schedule_report(
        class_name: str,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    return _load_report(db, class_name)


@app.post("/api/export")
def export_schedule_pdf(
        class_name: str,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    data = _load_report(db, class_name)
    return attachment(exports.render_schedule_pdf(data), exports.PDF_MEDIA_TYPE, f"schedule-{class_name}.pdf")


@app.post("/api/export/excel")
def export_group_list(
        class_name: str,
        selected_weekday: int,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    if selected_weekday < 1 or selected_weekday > 5:
        raise HTTPException(status_code=400, detail="Selected Weekday is invalid")

    data = _load_report(db, class_name, selected_weekday)
    return attachment(
        exports.render_group_list_xlsx(data),
        exports.XLSX_MEDIA_TYPE,
        f"{class_name}_gruppenliste.xlsx",
    )


@app.post("/api/export/schedule-dates")
def export_schedule_dates(
        class_name: str,
        selected_weekday: int,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.get_current_user)
):
    if selected_weekday < 1 or selected_weekday > 5:
        raise HTTPException(status_code=400, detail="Selected Weekday is invalid")

    db_class = crud.get_class_by_name(db, class_name)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    schedule = crud.latest_schedule(db, db_class.id, selected_weekday)
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")

    dates = report.assemble_schedule_dates(db_class, schedule)
    return attachment(exports.render_schedule_dates_pdf(dates), exports.PDF_MEDIA_TYPE, f"schedule-dates-{class_name}.pdf")


# ========== Grades ==========
@app.get("/api/notensammler/grades")
def read_grades(class_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    if not crud.get_class(db, class_id):
        raise HTTPException(status_code=404, detail="Class not found")

    grades = db.query(database.Grade).filter(database.Grade.class_id == class_id).all()
    return report.group_grades(grades)


@app.post("/api/notensammler/grades", response_model=models.Grade)
def save_grade(
        grade: models.GradeCreate,
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_grader)
):
    student = db.query(database.Student).filter(database.Student.id == grade.student_id).first()
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")

    teacher = db.query(database.Teacher).filter(database.Teacher.id == grade.teacher_id).first()
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found")

    if not crud.get_class(db, grade.class_id):
        raise HTTPException(status_code=404, detail="Class not found")

    return crud.upsert_grade(db, grade)


@app.get("/api/notensammler/pdf")
def export_grade_sheet(class_id: int, db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.get_current_user)):
    db_class = crud.get_class(db, class_id)
    if not db_class:
        raise HTTPException(status_code=404, detail="Class not found")

    sheet = report.assemble_grade_sheet(
        db_class,
        db_class.students,
        crud.get_teacher_assignments(db, class_id),
        db.query(database.Grade).filter(database.Grade.class_id == class_id).all(),
    )
    filename = f"notensammler-{db_class.name}-{date.today():%Y%m%d}.pdf"
    return attachment(exports.render_grade_sheet_pdf(sheet), exports.PDF_MEDIA_TYPE, filename)


@app.get("/api/admin/grades/export")
def export_grades(db: Session = Depends(get_db), _: models.CurrentUser = Depends(auth.require_grader)):
    content = exports.render_grade_export_xlsx(crud.grade_export_rows(db))
    return attachment(content, exports.XLSX_MEDIA_TYPE, f"grades_export_{date.today():%Y-%m-%d}.xlsx")


@app.post("/api/admin/grades/import")
def import_grades(
        file: UploadFile = File(...),
        db: Session = Depends(get_db),
        _: models.CurrentUser = Depends(auth.require_grader)
):
    content = file.file.read()
    try:
        records = exports.read_spreadsheet_records(content)
    except (InvalidFileException, BadZipFile):
        raise HTTPException(status_code=400, detail="File is not an xlsx workbook")

    if not records:
        raise HTTPException(status_code=400, detail="File is empty")

    missing = [column for column in crud.GRADE_IMPORT_REQUIRED if column not in records[0]]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing required columns: {', '.join(missing)}")

    imported, errors = crud.import_grade_records(db, records)
    if not imported:
        return JSONResponse(status_code=400, content={"error": "All rows failed validation", "errors": errors})
    return {"success": True, "imported": imported, "errors": errors}
