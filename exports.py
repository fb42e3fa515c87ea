from io import BytesIO
from itertools import zip_longest
from xml.sax.saxutils import escape

import openpyxl
from openpyxl.styles import Alignment, Font, PatternFill
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from report import NO_NAME, GradeSheet, ScheduleDates, ScheduleReport

PDF_MEDIA_TYPE = "application/pdf"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

MAX_TURN_COLUMNS = 8
AM_TEACHER_COLUMN = 17  # Q
PM_TEACHER_COLUMN = 18  # R
FIRST_TURN_COLUMN = 9  # I
DATE_COLUMNS = 10

GRADE_EXPORT_COLUMNS = [
    "className",
    "studentUsername",
    "studentFirstName",
    "studentLastName",
    "teacherUsername",
    "teacherFirstName",
    "teacherLastName",
    "semester",
    "grade",
]

GRID_STYLE = [
    ("GRID", (0, 0), (-1, -1), 0.5, colors.black),
    ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f0f0f0")),
    ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
    ("FONTSIZE", (0, 0), (-1, -1), 8),
    ("VALIGN", (0, 0), (-1, -1), "TOP"),
]


def _grid(data, extra_style=()):
    table = Table(data, repeatRows=1)
    table.setStyle(TableStyle(GRID_STYLE + list(extra_style)))
    return table


def _group_table(report: ScheduleReport):
    header = [f"Gruppe {group.id}" for group in report.groups]
    rosters = [[f"{s.last_name} {s.first_name}" for s in group.students] for group in report.groups]
    body = [list(row) for row in zip_longest(*rosters, fillvalue="")]
    style = [
        ("BACKGROUND", (index, 0), (index, -1), colors.HexColor(group.color))
        for index, group in enumerate(report.groups)
    ]
    return _grid([header] + body, style)


def _turn_table(report: ScheduleReport):
    header = [turn.name for turn in report.turns]
    body = [list(row) for row in zip_longest(*(turn.dates for turn in report.turns), fillvalue="")]
    return _grid([header] + body)


def _teacher_table(report: ScheduleReport):
    header = ["", "Lehrer", "Fach", "Lerninhalt", "Raum"] + [turn.name for turn in report.turns]
    body = []
    for row in report.teacher_rows:
        body.append(
            [row.period, row.teacher_name, row.subject_name, row.learning_content_name, row.room_name]
            + ["" if group is None else f"Gr. {group}" for group in row.groups]
        )
    return _grid([header] + body)


def render_schedule_pdf(report: ScheduleReport) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4))
    styles = getSampleStyleSheet()

    elements = [
        Paragraph(escape(f"{report.class_name} - {report.weekday_name} Wechselplan"), styles["Title"]),
        Paragraph(
            f"Klassenvorstand: {escape(report.class_head)} &nbsp; Jahrgangsleitung: {escape(report.class_lead)}",
            styles["Normal"],
        ),
        Paragraph(f"Zusatzinformation: {escape(report.additional_info)}", styles["Normal"]),
        Spacer(1, 12),
    ]
    if report.groups:
        elements += [_group_table(report), Spacer(1, 12)]
    if report.turns:
        elements += [_turn_table(report), Spacer(1, 12)]
    if report.teacher_rows:
        elements.append(_teacher_table(report))
    if report.updated_at is not None:
        elements += [Spacer(1, 12), Paragraph(f"Stand: {report.updated_at:%d.%m.%Y}", styles["Normal"])]

    doc.build(elements)
    buffer.seek(0)
    return buffer.getvalue()


def render_schedule_dates_pdf(dates: ScheduleDates) -> bytes:
    """One column per turn listing its weeks; holiday weeks are printed in red."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle("WeekCell", parent=styles["Normal"], fontSize=8, alignment=1, leading=10)

    padding = [""] * max(DATE_COLUMNS - len(dates.turns), 0)
    columns = []
    for turn in dates.turns:
        cells = []
        for week in turn.weeks:
            label = escape(week.week)
            if week.is_holiday:
                label = f'<font color="red">{label}</font>'
            cells.append(Paragraph(f'{label}<br/><font size="6">{escape(week.date)}</font>', cell_style))
        columns.append(cells)

    header = [turn.name for turn in dates.turns] + padding
    body = [list(row) + padding for row in zip_longest(*columns, fillvalue="")]
    table = _grid(
        [header] + body,
        [("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#00c000")), ("ALIGN", (0, 0), (-1, -1), "CENTER")],
    )

    title = Paragraph(escape(f"Unterrichtstage am {dates.weekday_name} {dates.class_name}"), styles["Title"])
    doc.build([title, Spacer(1, 6), table])
    buffer.seek(0)
    return buffer.getvalue()


def _grade_cell(slot):
    if slot is None:
        return ""
    first = "" if slot["first"] is None else f"{slot['first']:g}"
    second = "" if slot["second"] is None else f"{slot['second']:g}"
    return f"{first} / {second}"


def render_grade_sheet_pdf(sheet: GradeSheet) -> bytes:
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=landscape(A4))
    styles = getSampleStyleSheet()

    teachers = sheet.am_teachers + sheet.pm_teachers
    header = ["Schüler"] + [f"{t.last_name.upper()} {t.first_name}" for t in teachers]
    body = []
    for student in sheet.students:
        student_grades = sheet.grades.get(student.id, {})
        body.append(
            [f"{student.last_name} {student.first_name}"]
            + [_grade_cell(student_grades.get(t.id)) for t in teachers]
        )

    title = f"Notensammler {sheet.class_name}"
    if sheet.subject_name:
        title = f"{title} - {sheet.subject_name}"
    doc.build([Paragraph(escape(title), styles["Title"]), Spacer(1, 12), _grid([header] + body)])
    buffer.seek(0)
    return buffer.getvalue()


def render_group_list_xlsx(report: ScheduleReport) -> bytes:
    """Write the "Gruppenliste" sheet: rosters in B.., class info in F1:H1, turn dates from I3, teachers in Q/R."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Gruppenliste"

    for group_index, group in enumerate(report.groups):
        column = group_index + 2
        for student_index, student in enumerate(group.students):
            cell = ws.cell(row=student_index + 1, column=column, value=f"{student.last_name} {student.first_name}")
            cell.fill = PatternFill(start_color=group.color[1:], end_color=group.color[1:], fill_type="solid")

    ws["F1"] = report.class_name
    ws["G1"] = "" if report.class_head == NO_NAME else report.class_head
    ws["H1"] = "" if report.class_lead == NO_NAME else report.class_lead

    headers = [f"Turnustage Gruppe {n}" for n in range(1, MAX_TURN_COLUMNS + 1)]
    headers += ["Lehrer Vormittag", "Lehrer Nachmittag"]
    for index, header in enumerate(headers):
        cell = ws.cell(row=1, column=FIRST_TURN_COLUMN + index, value=header)
        cell.font = Font(bold=True)
        cell.alignment = Alignment(horizontal="center")

    for turn_index, turn in enumerate(report.turns[:MAX_TURN_COLUMNS]):
        for date_index, printed in enumerate(turn.dates):
            ws.cell(row=date_index + 3, column=FIRST_TURN_COLUMN + turn_index, value=printed)

    for column, assignments in ((AM_TEACHER_COLUMN, report.am_assignments), (PM_TEACHER_COLUMN, report.pm_assignments)):
        for index, assignment in enumerate(assignments):
            name = f"{assignment.teacher_last_name.upper()} {assignment.teacher_first_name}"
            ws.cell(row=index + 3, column=column, value=name)

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer.getvalue()


def render_grade_export_xlsx(rows) -> bytes:
    """All grades as one "Noten" sheet, one row per grade, headed by ``GRADE_EXPORT_COLUMNS``."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Noten"

    ws.append(GRADE_EXPORT_COLUMNS)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for row in rows:
        ws.append(list(row))

    buffer = BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    return buffer.getvalue()


def _cell_text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def read_spreadsheet_records(content: bytes):
    """Rows of the first sheet as dicts keyed by the header row; blank rows are skipped.

    Raises ``InvalidFileException`` or ``BadZipFile`` when ``content`` is not an xlsx workbook.
    """
    wb = openpyxl.load_workbook(BytesIO(content), read_only=True, data_only=True)
    try:
        rows = wb.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        keys = [_cell_text(value) for value in header]

        records = []
        for row in rows:
            values = [_cell_text(value) for value in row]
            if not any(values):
                continue
            records.append({key: value for key, value in zip(keys, values) if key})
        return records
    finally:
        wb.close()
