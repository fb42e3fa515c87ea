"""Assembles the denormalized data behind the printable Wechselplan and grade sheet."""
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from schedule_data import parse_json_to_normalized

GROUP_COLORS = ["#fef9c3", "#dcfce7", "#ffedd5", "#fee2e2"]
WEEKDAYS = ["Sonntag", "Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag", "Samstag"]
NO_NAME = "—"


@dataclass
class StudentEntry:
    id: int
    first_name: str
    last_name: str


@dataclass
class GroupColumn:
    id: int
    color: str
    students: List[StudentEntry] = field(default_factory=list)


@dataclass
class AssignmentRow:
    group_id: int
    teacher_first_name: str
    teacher_last_name: str
    subject_name: str
    learning_content_name: str
    room_name: str


@dataclass
class TurnColumn:
    name: str
    dates: List[str] = field(default_factory=list)


@dataclass
class TeacherRow:
    period: str
    teacher_id: int
    teacher_name: str
    subject_name: str
    learning_content_name: str
    room_name: str
    # group taught in each turn, aligned with ScheduleReport.turns
    groups: List[Optional[int]] = field(default_factory=list)


@dataclass
class ScheduleReport:
    class_name: str
    class_head: str
    class_lead: str
    additional_info: str
    selected_weekday: int
    weekday_name: str
    updated_at: Optional[datetime]
    groups: List[GroupColumn]
    am_assignments: List[AssignmentRow]
    pm_assignments: List[AssignmentRow]
    turns: List[TurnColumn]
    teacher_rows: List[TeacherRow]


@dataclass
class WeekCell:
    week: str
    date: str
    is_holiday: bool


@dataclass
class TurnWeeks:
    name: str
    weeks: List[WeekCell] = field(default_factory=list)


@dataclass
class ScheduleDates:
    class_name: str
    weekday_name: str
    turns: List[TurnWeeks]


@dataclass
class TeacherEntry:
    id: int
    first_name: str
    last_name: str


@dataclass
class GradeSheet:
    class_name: str
    subject_name: Optional[str]
    students: List[StudentEntry]
    am_teachers: List[TeacherEntry]
    pm_teachers: List[TeacherEntry]
    grades: Dict[int, Dict[int, Dict[str, Optional[float]]]]


def group_color(group_id: int) -> str:
    return GROUP_COLORS[(group_id - 1) % len(GROUP_COLORS)]


def weekday_name(weekday: int) -> str:
    if 0 <= weekday < len(WEEKDAYS):
        return WEEKDAYS[weekday]
    return "Unbekannt"


def parse_schedule_date(value: str) -> Optional[date]:
    """Parse ``DD.MM.YY``; the year is always taken as ``20YY``."""
    parts = (value or "").strip().split(".")
    if len(parts) != 3 or len(parts[2]) > 2 or not all(part.isdigit() for part in parts):
        return None
    try:
        day, month, year = (int(part) for part in parts)
        return date(2000 + year, month, day)
    except ValueError:
        return None


def format_schedule_date(value: str) -> str:
    parts = (value or "").strip().split(".")
    if parse_schedule_date(value) is None:
        return value
    day, month, year = parts
    return f"{day}.{month}.20{year}"


def printed_dates(weeks) -> List[str]:
    """Non-holiday week dates of a turn in calendar order, formatted for print.

    Dates that cannot be parsed go last, keeping their input order.
    """
    valid = [week for week in weeks if not week.is_holiday]
    valid.sort(key=lambda week: parse_schedule_date(week.date) or date.max)
    return [format_schedule_date(week.date) for week in valid]


def full_name(teacher) -> str:
    if teacher is None:
        return NO_NAME
    return f"{teacher.first_name} {teacher.last_name}"


def schedule_turns(schedule):
    """Turns of a schedule, falling back to the legacy blob when none are stored."""
    if schedule is None:
        return []
    if schedule.turns:
        return list(schedule.turns)
    return parse_json_to_normalized(schedule.schedule_data)


def group_students(students) -> List[GroupColumn]:
    groups = {}
    for student in students:
        if student.group_id is None:
            continue
        groups.setdefault(student.group_id, []).append(student)

    columns = []
    for group_id in sorted(groups):
        roster = sorted(groups[group_id], key=lambda s: (s.last_name, s.first_name))
        columns.append(
            GroupColumn(
                id=group_id,
                color=group_color(group_id),
                students=[StudentEntry(s.id, s.first_name, s.last_name) for s in roster],
            )
        )
    return columns


def _name_or_empty(related) -> str:
    if related is None or related.name is None:
        return ""
    return related.name


def assignment_row(assignment) -> AssignmentRow:
    teacher = assignment.teacher
    return AssignmentRow(
        group_id=assignment.group_id,
        teacher_first_name=teacher.first_name if teacher else "",
        teacher_last_name=teacher.last_name if teacher else "",
        subject_name=_name_or_empty(assignment.subject),
        learning_content_name=_name_or_empty(assignment.learning_content),
        room_name=_name_or_empty(assignment.room),
    )


def teacher_rows(assignments, rotations, turn_names, period) -> List[TeacherRow]:
    taught = {}
    for rotation in rotations:
        if rotation.period == period:
            taught[(rotation.teacher_id, rotation.turn_id)] = rotation.group_id

    rows = []
    seen = set()
    for assignment in assignments:
        if assignment.period != period or assignment.teacher_id in seen:
            continue
        seen.add(assignment.teacher_id)
        row = assignment_row(assignment)
        rows.append(
            TeacherRow(
                period=period,
                teacher_id=assignment.teacher_id,
                teacher_name=f"{row.teacher_last_name.upper()} {row.teacher_first_name}".strip(),
                subject_name=row.subject_name,
                learning_content_name=row.learning_content_name,
                room_name=row.room_name,
                groups=[taught.get((assignment.teacher_id, name)) for name in turn_names],
            )
        )
    return rows


def assemble_report(school_class, students, assignments, schedule, rotations) -> ScheduleReport:
    """Collect everything the schedule PDF and spreadsheet need.

    ``assignments`` are expected ordered by period then group id.
    """
    turns = [TurnColumn(name=turn.name, dates=printed_dates(turn.weeks)) for turn in schedule_turns(schedule)]
    turn_names = [turn.name for turn in turns]
    weekday = schedule.selected_weekday if schedule is not None else 1

    return ScheduleReport(
        class_name=school_class.name,
        class_head=full_name(school_class.class_head),
        class_lead=full_name(school_class.class_lead),
        additional_info=(schedule.additional_info if schedule is not None else None) or NO_NAME,
        selected_weekday=weekday,
        weekday_name=weekday_name(weekday),
        updated_at=schedule.updated_at if schedule is not None else None,
        groups=group_students(students),
        am_assignments=[assignment_row(a) for a in assignments if a.period == "AM"],
        pm_assignments=[assignment_row(a) for a in assignments if a.period == "PM"],
        turns=turns,
        teacher_rows=(
            teacher_rows(assignments, rotations, turn_names, "AM")
            + teacher_rows(assignments, rotations, turn_names, "PM")
        ),
    )


def assemble_schedule_dates(school_class, schedule) -> ScheduleDates:
    """Every week of every turn as stored, holidays included and flagged."""
    return ScheduleDates(
        class_name=school_class.name,
        weekday_name=weekday_name(schedule.selected_weekday),
        turns=[
            TurnWeeks(
                name=turn.name,
                weeks=[WeekCell(week.week, week.date, bool(week.is_holiday)) for week in turn.weeks],
            )
            for turn in schedule_turns(schedule)
        ],
    )


def group_grades(grades) -> Dict[int, Dict[int, Dict[str, Optional[float]]]]:
    """Nest grades as ``student -> teacher -> {"first", "second"}``."""
    grouped = {}
    for record in grades:
        slot = grouped.setdefault(record.student_id, {}).setdefault(
            record.teacher_id, {"first": None, "second": None}
        )
        if record.semester in slot:
            slot[record.semester] = record.grade
    return grouped


def _most_common_subject(assignments) -> Optional[str]:
    counts = {}
    for assignment in assignments:
        if assignment.subject is not None and assignment.subject.name:
            counts[assignment.subject.name] = counts.get(assignment.subject.name, 0) + 1

    best, best_count = None, 0
    for name, count in counts.items():
        if count > best_count:
            best, best_count = name, count
    return best


def _period_teachers(assignments, period) -> List[TeacherEntry]:
    teachers = {}
    for assignment in assignments:
        if assignment.period == period and assignment.teacher_id not in teachers:
            teacher = assignment.teacher
            teachers[assignment.teacher_id] = TeacherEntry(teacher.id, teacher.first_name, teacher.last_name)
    return sorted(teachers.values(), key=lambda t: (t.last_name, t.first_name))


def assemble_grade_sheet(school_class, students, assignments, grades) -> GradeSheet:
    roster = sorted(students, key=lambda s: (s.last_name, s.first_name))
    return GradeSheet(
        class_name=school_class.name,
        subject_name=_most_common_subject(assignments),
        students=[StudentEntry(s.id, s.first_name, s.last_name) for s in roster],
        am_teachers=_period_teachers(assignments, "AM"),
        pm_teachers=_period_teachers(assignments, "PM"),
        grades=group_grades(grades),
    )
