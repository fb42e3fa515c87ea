"""Round-robin assignment of teachers to groups across rotation turns."""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

PERIODS = ("AM", "PM")


@dataclass
class GroupRotation:
    group_id: int
    turns: List[Optional[int]] = field(default_factory=list)


def rotate_array(items: Sequence, n: int) -> list:
    """Rotate ``items`` left by ``n`` positions. Period is ``len(items)``."""
    if not items:
        return []
    n %= len(items)
    return list(items[n:]) + list(items[:n])


def unique_teachers(teacher_ids: Iterable[Optional[int]]) -> List[int]:
    """Distinct teacher ids in first-appearance order; ``0`` and ``None`` mean unset."""
    seen = []
    for teacher_id in teacher_ids:
        if teacher_id and teacher_id not in seen:
            seen.append(teacher_id)
    return seen


def teacher_for(teachers: Sequence[int], group_index: int, turn_index: int) -> Optional[int]:
    # Groups beyond the number of teachers stay unassigned, they do not wrap.
    if group_index >= len(teachers):
        return None
    return teachers[(group_index + turn_index) % len(teachers)]


def build_rotation(group_ids: Sequence[int], turn_keys: Sequence[str], teachers: Sequence[int]) -> List[GroupRotation]:
    """Build the group x turn matrix for one period.

    Group ``g`` is taught by ``teachers[(g + t) % len(teachers)]`` in turn ``t``.
    """
    return [
        GroupRotation(
            group_id=group_id,
            turns=[teacher_for(teachers, group_index, turn_index) for turn_index in range(len(turn_keys))],
        )
        for group_index, group_id in enumerate(group_ids)
    ]


def rotation_rows(turn_keys: Sequence[str], rotation: Sequence[GroupRotation], period: str) -> List[Tuple[int, str, int, str]]:
    """Flatten a matrix into ``(group_id, turn_key, teacher_id, period)`` rows, skipping gaps."""
    rows = []
    for group_rotation in rotation:
        for turn_index, turn_key in enumerate(turn_keys):
            if turn_index >= len(group_rotation.turns):
                break
            teacher_id = group_rotation.turns[turn_index]
            if teacher_id is not None:
                rows.append((group_rotation.group_id, turn_key, teacher_id, period))
    return rows
