from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

ALLOWED_GRADES = [1, 1.5, 2, 2.5, 3, 3.5, 4, 4.5, 5]

Period = Literal["AM", "PM"]
Semester = Literal["first", "second"]


class TeacherBase(BaseModel):
    first_name: str
    last_name: str
    username: str
    email: Optional[EmailStr] = None

    @field_validator("email")
    @classmethod
    def email_lowercase(cls, v):
        return v.lower() if v else v


class TeacherCreate(TeacherBase):
    pass


class Teacher(TeacherBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class SchoolClassBase(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    class_head_id: Optional[int] = None
    class_lead_id: Optional[int] = None


class SchoolClassCreate(SchoolClassBase):
    pass


class SchoolClass(SchoolClassBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class SchoolClassDetail(SchoolClass):
    class_head: Optional[Teacher] = None
    class_lead: Optional[Teacher] = None


class StudentBase(BaseModel):
    first_name: str
    last_name: str
    username: Optional[str] = None
    class_id: Optional[int] = None
    group_id: Optional[int] = Field(default=None, ge=1)


class StudentCreate(StudentBase):
    pass


class Student(StudentBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class NamedItemCreate(BaseModel):
    name: str = Field(min_length=1)
    is_custom: bool = False


class NamedItem(NamedItemCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class HolidayBase(BaseModel):
    name: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def end_not_before_start(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class HolidayCreate(HolidayBase):
    pass


class Holiday(HolidayBase):
    model_config = ConfigDict(from_attributes=True)

    id: int


class ScheduleCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    start_date: date
    end_date: date
    selected_weekday: int = Field(ge=0, le=6)
    schedule: Any = None  # legacy turn blob, see schedule_data
    class_id: Optional[int] = None
    additional_info: Optional[str] = None


class Schedule(BaseModel):
    id: int
    class_id: Optional[int]
    name: str
    description: Optional[str]
    start_date: Optional[date]
    end_date: Optional[date]
    selected_weekday: int
    additional_info: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    schedule_data: Dict[str, Any]


class Assignment(BaseModel):
    group_id: int = Field(ge=1)
    teacher_id: int
    subject: Optional[str] = None
    learning_content: Optional[str] = None
    room: Optional[str] = None


class TeacherAssignmentsSave(BaseModel):
    class_name: str
    am_assignments: List[Assignment] = Field(default_factory=list)
    pm_assignments: List[Assignment] = Field(default_factory=list)
    update_existing: bool = False


class TeacherAssignments(BaseModel):
    am_assignments: List[Assignment]
    pm_assignments: List[Assignment]


class GroupRotation(BaseModel):
    group_id: int
    turns: List[Optional[int]]


class TeacherRotationMatrix(BaseModel):
    class_id: int
    turns: List[str]
    am_rotation: List[GroupRotation]
    pm_rotation: List[GroupRotation]

    @model_validator(mode="after")
    def one_cell_per_group_and_turn(self):
        if len(set(self.turns)) != len(self.turns):
            raise ValueError("turns must not repeat")
        for period, groups in (("AM", self.am_rotation), ("PM", self.pm_rotation)):
            group_ids = [g.group_id for g in groups]
            if len(set(group_ids)) != len(group_ids):
                raise ValueError(f"{period} rotation lists a group more than once")
        return self


class TeacherRotation(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    class_id: int
    group_id: int
    teacher_id: int
    turn_id: str
    period: Period


class GradeCreate(BaseModel):
    student_id: int
    teacher_id: int
    class_id: int
    semester: Semester
    grade: Optional[float] = None

    @field_validator("grade")
    @classmethod
    def grade_must_be_allowed(cls, v):
        if v is not None and v not in ALLOWED_GRADES:
            raise ValueError(f"Grade must be one of: {', '.join(f'{g:g}' for g in ALLOWED_GRADES)} or null")
        return v


class Grade(GradeCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class Token(BaseModel):
    access_token: str
    token_type: str


class CurrentUser(BaseModel):
    username: str
    role: str
