import sqlite3

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.sql import func

from config import load_settings

SQLALCHEMY_DATABASE_URL = load_settings().database_url


def make_engine(url):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = make_engine(SQLALCHEMY_DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class Teacher(Base):
    __tablename__ = "teachers"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    username = Column(String, unique=True, index=True, nullable=False)
    email = Column(String, nullable=True)


class SchoolClass(Base):
    __tablename__ = "classes"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)
    class_head_id = Column(Integer, ForeignKey("teachers.id", ondelete="SET NULL"), nullable=True)
    class_lead_id = Column(Integer, ForeignKey("teachers.id", ondelete="SET NULL"), nullable=True)

    class_head = relationship("Teacher", foreign_keys=[class_head_id])
    class_lead = relationship("Teacher", foreign_keys=[class_lead_id])
    students = relationship("Student", back_populates="school_class", cascade="all, delete-orphan")
    schedules = relationship("Schedule", back_populates="school_class", cascade="all, delete-orphan")
    teacher_assignments = relationship("TeacherAssignment", cascade="all, delete-orphan")
    teacher_rotations = relationship("TeacherRotation", cascade="all, delete-orphan")
    grades = relationship("Grade", cascade="all, delete-orphan")


class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False, index=True)
    username = Column(String, nullable=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=True)
    group_id = Column(Integer, nullable=True)

    school_class = relationship("SchoolClass", back_populates="students")


class Subject(Base):
    __tablename__ = "subjects"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    is_custom = Column(Boolean, default=False, nullable=False)


class Room(Base):
    __tablename__ = "rooms"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    is_custom = Column(Boolean, default=False, nullable=False)


class LearningContent(Base):
    __tablename__ = "learning_contents"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    is_custom = Column(Boolean, default=False, nullable=False)


class SchoolHoliday(Base):
    __tablename__ = "school_holidays"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)

    turn_links = relationship("ScheduleTurnHoliday", back_populates="holiday", cascade="all, delete-orphan")


class Schedule(Base):
    __tablename__ = "schedules"
    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=True, index=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    selected_weekday = Column(Integer, nullable=False)
    schedule_data = Column(JSON(none_as_null=True), nullable=True)  # legacy, superseded by turns
    additional_info = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    school_class = relationship("SchoolClass", back_populates="schedules")
    turns = relationship(
        "ScheduleTurn",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleTurn.order",
    )


class ScheduleTurn(Base):
    __tablename__ = "schedule_turns"
    __table_args__ = (UniqueConstraint("schedule_id", "order", name="uq_schedule_turn_order"),)

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(Integer, ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    custom_length = Column(Integer, nullable=True)
    order = Column(Integer, nullable=False)

    schedule = relationship("Schedule", back_populates="turns")
    weeks = relationship(
        "ScheduleWeek",
        back_populates="turn",
        cascade="all, delete-orphan",
        order_by="ScheduleWeek.id",
    )
    holidays = relationship("ScheduleTurnHoliday", back_populates="turn", cascade="all, delete-orphan")


class ScheduleWeek(Base):
    __tablename__ = "schedule_weeks"
    id = Column(Integer, primary_key=True, index=True)
    turn_id = Column(Integer, ForeignKey("schedule_turns.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(String, nullable=False, index=True)
    week = Column(String, nullable=False)
    is_holiday = Column(Boolean, default=False, nullable=False)

    turn = relationship("ScheduleTurn", back_populates="weeks")


class ScheduleTurnHoliday(Base):
    __tablename__ = "schedule_turn_holidays"
    __table_args__ = (UniqueConstraint("turn_id", "holiday_id", name="uq_turn_holiday"),)

    id = Column(Integer, primary_key=True, index=True)
    turn_id = Column(Integer, ForeignKey("schedule_turns.id", ondelete="CASCADE"), nullable=False, index=True)
    holiday_id = Column(Integer, ForeignKey("school_holidays.id", ondelete="CASCADE"), nullable=False, index=True)

    turn = relationship("ScheduleTurn", back_populates="holidays")
    holiday = relationship("SchoolHoliday", back_populates="turn_links")


class TeacherAssignment(Base):
    __tablename__ = "teacher_assignments"
    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(String, nullable=False)  # AM | PM
    group_id = Column(Integer, nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=True)
    learning_content_id = Column(Integer, ForeignKey("learning_contents.id"), nullable=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)

    teacher = relationship("Teacher")
    subject = relationship("Subject")
    learning_content = relationship("LearningContent")
    room = relationship("Room")


class TeacherRotation(Base):
    __tablename__ = "teacher_rotations"
    __table_args__ = (
        UniqueConstraint("class_id", "group_id", "turn_id", "period", name="uq_rotation_cell"),
    )

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    group_id = Column(Integer, nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    turn_id = Column(String, nullable=False)  # turn key of the schedule
    period = Column(String, nullable=False)

    teacher = relationship("Teacher")


class Grade(Base):
    __tablename__ = "grades"
    __table_args__ = (
        UniqueConstraint("student_id", "teacher_id", "class_id", "semester", name="uq_grade_slot"),
    )

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    semester = Column(String, nullable=False)  # first | second
    grade = Column(Float, nullable=True)


class Role(Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, nullable=False)
    description = Column(String, nullable=True)


class UserRole(Base):
    __tablename__ = "user_roles"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, unique=True, index=True, nullable=False)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False)

    role = relationship("Role")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
