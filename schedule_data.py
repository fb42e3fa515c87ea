"""Conversion between the legacy ``schedule_data`` JSON blob and turn/week rows.

The legacy blob looks like::

    {
        "Turnus 1": {
            "weeks": [{"date": "09.09.24", "week": "KW37", "isHoliday": false}],
            "holidays": [{"id": 3, "name": "Herbstferien", ...}],
            "customLength": 4
        }
    }

It was edited by hand for years, so parsing is lenient: entries that do not
look like a turn are dropped instead of rejected.
"""
import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from database import ScheduleTurn, ScheduleTurnHoliday, ScheduleWeek

logger = logging.getLogger(__name__)


class SkipReason(str, enum.Enum):
    NOT_AN_OBJECT = "not_an_object"
    MISSING_WEEKS = "missing_weeks"


@dataclass
class WeekData:
    date: str
    week: str
    is_holiday: bool = False


@dataclass
class ScheduleTurnData:
    name: str
    custom_length: Optional[int] = None
    weeks: List[WeekData] = field(default_factory=list)
    holiday_ids: List[int] = field(default_factory=list)


def _coerce_week(raw: Dict[str, Any]) -> WeekData:
    raw_date = raw.get("date")
    raw_week = raw.get("week")
    return WeekData(
        date="" if raw_date is None else str(raw_date),
        week="" if raw_week is None else str(raw_week),
        is_holiday=bool(raw.get("isHoliday")),
    )


def _coerce_holiday_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _holiday_ids(raw_holidays: Any) -> List[int]:
    if not isinstance(raw_holidays, list):
        return []
    ids = []
    for holiday in raw_holidays:
        if not isinstance(holiday, dict):
            continue
        holiday_id = _coerce_holiday_id(holiday.get("id"))
        if holiday_id is not None and holiday_id > 0:
            ids.append(holiday_id)
    return ids


def parse_turn_entry(name: str, value: Any) -> Union[ScheduleTurnData, SkipReason]:
    """Parse one ``name -> turn`` entry of the legacy blob."""
    if not isinstance(value, dict):
        return SkipReason.NOT_AN_OBJECT
    weeks = value.get("weeks")
    if not isinstance(weeks, list):
        return SkipReason.MISSING_WEEKS

    custom_length = value.get("customLength")
    if isinstance(custom_length, bool) or not isinstance(custom_length, int):
        custom_length = None

    return ScheduleTurnData(
        name=str(name),
        custom_length=custom_length,
        weeks=[_coerce_week(week) for week in weeks if isinstance(week, dict)],
        holiday_ids=_holiday_ids(value.get("holidays")),
    )


def parse_json_to_normalized(schedule_data: Any) -> List[ScheduleTurnData]:
    """Turn the legacy blob into a list of turns, in key order.

    Anything that is not a JSON object yields an empty list; malformed turns
    are skipped. The position of a turn in the result is its ``order``.
    """
    if not isinstance(schedule_data, dict):
        return []

    turns = []
    for name, value in schedule_data.items():
        parsed = parse_turn_entry(name, value)
        if isinstance(parsed, SkipReason):
            logger.debug(f"Skipping turn {name!r}: {parsed.value}")
            continue
        turns.append(parsed)
    return turns


def create_schedule_turn_data(turn_data: ScheduleTurnData, order: int) -> ScheduleTurn:
    """Build an unsaved ``ScheduleTurn`` with its weeks and holiday links.

    Holiday ids are not checked here; an unknown id fails on flush with an
    ``IntegrityError``.
    """
    turn = ScheduleTurn(
        name=turn_data.name,
        custom_length=turn_data.custom_length,
        order=order,
    )
    turn.weeks = [
        ScheduleWeek(date=week.date, week=week.week, is_holiday=week.is_holiday)
        for week in turn_data.weeks
    ]
    if turn_data.holiday_ids:
        turn.holidays = [
            ScheduleTurnHoliday(holiday_id=holiday_id) for holiday_id in dict.fromkeys(turn_data.holiday_ids)
        ]
    return turn


def _iso(value: Union[date, datetime, str]) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def normalize_to_json_format(turns) -> Dict[str, Dict[str, Any]]:
    """Rebuild the legacy blob from turn rows (or ``ScheduleTurnData``)."""
    result = {}
    for turn in turns:
        entry = {
            "name": turn.name,
            "weeks": [
                {"date": week.date, "week": week.week, "isHoliday": bool(week.is_holiday)}
                for week in turn.weeks
            ],
            "holidays": [
                {
                    "id": link.holiday.id,
                    "name": link.holiday.name,
                    "startDate": _iso(link.holiday.start_date),
                    "endDate": _iso(link.holiday.end_date),
                }
                for link in (getattr(turn, "holidays", None) or [])
                if link.holiday is not None
            ],
        }
        if turn.custom_length is not None:
            entry["customLength"] = turn.custom_length
        result[turn.name] = entry
    return result
