"""Storage helpers shared by the routes.

Schedules, teacher assignments and rotations are replaced wholesale on every
save: the rows owned by the class are deleted and the new set inserted in the
same transaction.
"""
import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

import database
import models
import rotation
from report import schedule_turns
from schedule_data import create_schedule_turn_data, normalize_to_json_format, parse_json_to_normalized

logger = logging.getLogger(__name__)


def get_class(db: Session, class_id: int) -> Optional[database.SchoolClass]:
    return db.query(database.SchoolClass).filter(database.SchoolClass.id == class_id).first()


def get_class_by_name(db: Session, name: str) -> Optional[database.SchoolClass]:
    return db.query(database.SchoolClass).filter(database.SchoolClass.name == name).first()


def get_by_name(db: Session, model, name: str):
    return db.query(model).filter(model.name == name).first()


def latest_schedule(db: Session, class_id: int, weekday: Optional[int] = None) -> Optional[database.Schedule]:
    query = db.query(database.Schedule).filter(database.Schedule.class_id == class_id)
    if weekday is not None:
        query = query.filter(database.Schedule.selected_weekday == weekday)
    return query.order_by(database.Schedule.created_at.desc(), database.Schedule.id.desc()).first()


def list_schedules(db: Session, class_id: Optional[int] = None, weekday: Optional[int] = None) -> List[database.Schedule]:
    query = db.query(database.Schedule)
    if class_id is not None:
        query = query.filter(database.Schedule.class_id == class_id)
    if weekday is not None:
        query = query.filter(database.Schedule.selected_weekday == weekday)
    return query.order_by(database.Schedule.created_at.desc(), database.Schedule.id.desc()).all()


def create_schedule(db: Session, payload: models.ScheduleCreate) -> database.Schedule:
    """Create a schedule, deleting every earlier one for the same class and weekday."""
    try:
        superseded = (
            db.query(database.Schedule)
            .filter(
                database.Schedule.class_id == payload.class_id,
                database.Schedule.selected_weekday == payload.selected_weekday,
            )
            .all()
        )
        for old in superseded:
            db.delete(old)
        db.flush()

        schedule = database.Schedule(
            class_id=payload.class_id,
            name=payload.name,
            description=payload.description,
            start_date=payload.start_date,
            end_date=payload.end_date,
            selected_weekday=payload.selected_weekday,
            additional_info=payload.additional_info,
        )
        schedule.turns = [
            create_schedule_turn_data(turn, order)
            for order, turn in enumerate(parse_json_to_normalized(payload.schedule))
        ]
        db.add(schedule)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(schedule)
    logger.info(
        f"Saved schedule {schedule.id} for class {payload.class_id} "
        f"(weekday {payload.selected_weekday}, {len(schedule.turns)} turns, {len(superseded)} superseded)"
    )
    return schedule


def schedule_out(schedule: database.Schedule) -> models.Schedule:
    if schedule.turns:
        schedule_data = normalize_to_json_format(schedule.turns)
    elif isinstance(schedule.schedule_data, dict):
        schedule_data = schedule.schedule_data
    else:
        schedule_data = {}

    return models.Schedule(
        id=schedule.id,
        class_id=schedule.class_id,
        name=schedule.name,
        description=schedule.description,
        start_date=schedule.start_date,
        end_date=schedule.end_date,
        selected_weekday=schedule.selected_weekday,
        additional_info=schedule.additional_info,
        created_at=schedule.created_at,
        updated_at=schedule.updated_at,
        schedule_data=schedule_data,
    )


def get_teacher_assignments(db: Session, class_id: int) -> List[database.TeacherAssignment]:
    return (
        db.query(database.TeacherAssignment)
        .filter(database.TeacherAssignment.class_id == class_id)
        .order_by(
            database.TeacherAssignment.period.asc(),
            database.TeacherAssignment.group_id.asc(),
            database.TeacherAssignment.id.asc(),
        )
        .all()
    )


def replace_teacher_assignments(db: Session, class_id: int, assignments: Iterable[database.TeacherAssignment]):
    try:
        db.query(database.TeacherAssignment).filter(database.TeacherAssignment.class_id == class_id).delete()
        db.add_all(list(assignments))
        db.commit()
    except Exception:
        db.rollback()
        raise


def get_rotations(db: Session, class_id: int) -> List[database.TeacherRotation]:
    return (
        db.query(database.TeacherRotation)
        .filter(database.TeacherRotation.class_id == class_id)
        .order_by(database.TeacherRotation.id.asc())
        .all()
    )


def replace_rotations(db: Session, class_id: int, rows: Iterable[Tuple[int, str, int, str]]) -> int:
    """Swap the class's rotation matrix for ``(group_id, turn_key, teacher_id, period)`` rows."""
    records = [
        database.TeacherRotation(class_id=class_id, group_id=group_id, turn_id=turn_key, teacher_id=teacher_id, period=period)
        for group_id, turn_key, teacher_id, period in rows
    ]
    try:
        db.query(database.TeacherRotation).filter(database.TeacherRotation.class_id == class_id).delete()
        db.add_all(records)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Saved {len(records)} rotation rows for class {class_id}")
    return len(records)


def class_group_ids(db: Session, class_id: int) -> List[int]:
    rows = (
        db.query(database.Student.group_id)
        .filter(database.Student.class_id == class_id, database.Student.group_id.isnot(None))
        .distinct()
        .all()
    )
    return sorted(row[0] for row in rows)


def build_class_rotation(db: Session, school_class: database.SchoolClass, schedule: database.Schedule) -> models.TeacherRotationMatrix:
    """Round-robin AM/PM matrices from the class's groups, teacher assignments and schedule turns."""
    group_ids = class_group_ids(db, school_class.id)
    turn_keys = [turn.name for turn in schedule_turns(schedule)]
    assignments = get_teacher_assignments(db, school_class.id)

    matrices = {}
    for period in rotation.PERIODS:
        teachers = rotation.unique_teachers(a.teacher_id for a in assignments if a.period == period)
        matrices[period] = [
            models.GroupRotation(group_id=r.group_id, turns=r.turns)
            for r in rotation.build_rotation(group_ids, turn_keys, teachers)
        ]

    return models.TeacherRotationMatrix(
        class_id=school_class.id,
        turns=turn_keys,
        am_rotation=matrices["AM"],
        pm_rotation=matrices["PM"],
    )


def save_rotation_matrix(db: Session, matrix: models.TeacherRotationMatrix) -> int:
    rows = []
    for period, groups in (("AM", matrix.am_rotation), ("PM", matrix.pm_rotation)):
        rows += rotation.rotation_rows(
            matrix.turns,
            [rotation.GroupRotation(group_id=g.group_id, turns=list(g.turns)) for g in groups],
            period,
        )
    return replace_rotations(db, matrix.class_id, rows)


def _stage_grade(db: Session, payload: models.GradeCreate) -> database.Grade:
    grade = (
        db.query(database.Grade)
        .filter(
            database.Grade.student_id == payload.student_id,
            database.Grade.teacher_id == payload.teacher_id,
            database.Grade.class_id == payload.class_id,
            database.Grade.semester == payload.semester,
        )
        .first()
    )
    if grade is None:
        grade = database.Grade(**payload.model_dump())
        db.add(grade)
        db.flush()
    else:
        grade.grade = payload.grade
    return grade


def upsert_grade(db: Session, payload: models.GradeCreate) -> database.Grade:
    grade = _stage_grade(db, payload)
    db.commit()
    db.refresh(grade)
    return grade


GRADE_IMPORT_REQUIRED = ("className", "studentUsername", "teacherUsername", "semester")


def grade_export_rows(db: Session) -> List[list]:
    rows = (
        db.query(database.Grade, database.SchoolClass, database.Student, database.Teacher)
        .join(database.SchoolClass, database.Grade.class_id == database.SchoolClass.id)
        .join(database.Student, database.Grade.student_id == database.Student.id)
        .join(database.Teacher, database.Grade.teacher_id == database.Teacher.id)
        .order_by(
            database.SchoolClass.name,
            database.Student.last_name,
            database.Student.first_name,
            database.Teacher.last_name,
            database.Grade.semester,
        )
        .all()
    )
    return [
        [
            school_class.name,
            student.username or "",
            student.first_name,
            student.last_name,
            teacher.username,
            teacher.first_name,
            teacher.last_name,
            grade.semester,
            grade.grade,
        ]
        for grade, school_class, student, teacher in rows
    ]


def _parse_grade(value: str) -> Optional[float]:
    """``None`` for an empty cell; raises ``ValueError`` for anything not in ``ALLOWED_GRADES``."""
    if not value:
        return None
    grade = float(value)
    if grade not in models.ALLOWED_GRADES:
        raise ValueError(value)
    return grade


def import_grade_records(db: Session, records: List[dict]) -> Tuple[int, List[str]]:
    """Validate spreadsheet rows and upsert the valid ones in one transaction.

    Returns the number of imported grades and one message per rejected row.
    """
    classes = {c.name: c.id for c in db.query(database.SchoolClass).all()}
    students = {s.username: s.id for s in db.query(database.Student).filter(database.Student.username.isnot(None))}
    teachers = {t.username: t.id for t in db.query(database.Teacher).all()}

    errors = []
    valid = []
    # row 1 is the header
    for row_number, record in enumerate(records, start=2):
        if not all(record.get(column) for column in GRADE_IMPORT_REQUIRED):
            errors.append(f"Row {row_number}: Missing required fields ({', '.join(GRADE_IMPORT_REQUIRED)})")
            continue
        if record["className"] not in classes:
            errors.append(f'Row {row_number}: Class "{record["className"]}" not found')
            continue
        if record["studentUsername"] not in students:
            errors.append(f'Row {row_number}: Student with username "{record["studentUsername"]}" not found')
            continue
        if record["teacherUsername"] not in teachers:
            errors.append(f'Row {row_number}: Teacher with username "{record["teacherUsername"]}" not found')
            continue
        if record["semester"] not in ("first", "second"):
            errors.append(f'Row {row_number}: Semester must be "first" or "second", got "{record["semester"]}"')
            continue
        try:
            grade = _parse_grade(record.get("grade", ""))
        except ValueError:
            errors.append(f'Row {row_number}: Invalid grade value "{record.get("grade")}"')
            continue

        valid.append(
            models.GradeCreate(
                student_id=students[record["studentUsername"]],
                teacher_id=teachers[record["teacherUsername"]],
                class_id=classes[record["className"]],
                semester=record["semester"],
                grade=grade,
            )
        )

    if not valid:
        return 0, errors

    try:
        for payload in valid:
            _stage_grade(db, payload)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Imported {len(valid)} grades ({len(errors)} rows rejected)")
    return len(valid), errors
