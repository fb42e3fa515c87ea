"""Move legacy ``schedule_data`` JSON into turn/week rows.

Run after the turn/week tables exist::

    python migrate_schedule_data.py            # create turns
    python migrate_schedule_data.py --clear    # ... and null the migrated blobs
"""
import argparse
import logging

from sqlalchemy.orm import Session

import database
from database import Base, SessionLocal, engine
from schedule_data import create_schedule_turn_data, parse_json_to_normalized

logger = logging.getLogger(__name__)


def migrate_schedule(db: Session, schedule: database.Schedule, known_holidays: set) -> int:
    """Create turns for one schedule; returns how many were created."""
    turns = parse_json_to_normalized(schedule.schedule_data)
    for order, turn_data in enumerate(turns):
        turn_data.holiday_ids = [hid for hid in dict.fromkeys(turn_data.holiday_ids) if hid in known_holidays]
        schedule.turns.append(create_schedule_turn_data(turn_data, order))
    db.flush()
    return len(turns)


def migrate_all(db: Session, clear: bool = False) -> dict:
    known_holidays = {row[0] for row in db.query(database.SchoolHoliday.id).all()}
    schedules = db.query(database.Schedule).filter(database.Schedule.schedule_data.isnot(None)).all()
    logger.info(f"Found {len(schedules)} schedules with legacy data")

    summary = {"migrated": 0, "skipped": 0, "failed": 0}
    for schedule in schedules:
        if schedule.turns:
            logger.info(f"Skipping schedule {schedule.id}: already has turns")
            summary["skipped"] += 1
            continue
        if not isinstance(schedule.schedule_data, dict):
            logger.info(f"Skipping schedule {schedule.id}: invalid schedule data")
            summary["skipped"] += 1
            continue

        try:
            count = migrate_schedule(db, schedule, known_holidays)
            if clear:
                schedule.schedule_data = None
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Error migrating schedule {schedule.id}")
            summary["failed"] += 1
            continue

        logger.info(f"Migrated schedule {schedule.id} ({count} turns)")
        summary["migrated"] += 1

    return summary


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--clear", action="store_true", help="clear schedule_data after migrating")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        summary = migrate_all(db, clear=args.clear)
    finally:
        db.close()
    logger.info(f"Migration completed: {summary}")


if __name__ == "__main__":
    main()
