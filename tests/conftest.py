import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# Project root on PYTHONPATH
sys.path.insert(0, str(Path(__file__).parent.parent))

import auth
import database
from database import Base, make_engine
from main import app

TEST_DB_URL = "sqlite:///./test.db"
engine = make_engine(TEST_DB_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_token(username="admin", role="admin"):
    return auth.create_access_token({"sub": username, "role": role}, auth.get_settings().auth)


def bearer(username="admin", role="admin"):
    return {"Authorization": f"Bearer {make_token(username, role)}"}


@pytest.fixture(scope="function")
def db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    def override_get_db():
        try:
            yield db
        finally:
            db.rollback()

    app.dependency_overrides[database.get_db] = override_get_db
    test_client = TestClient(app)
    test_client.headers.update(bearer())
    yield test_client
    app.dependency_overrides.clear()
    app.state.directory = None


@pytest.fixture
def teachers(db):
    rows = [
        database.Teacher(first_name="Anna", last_name="Berger", username="aberger"),
        database.Teacher(first_name="Karl", last_name="Huber", username="khuber"),
        database.Teacher(first_name="Eva", last_name="Mayer", username="emayer"),
        database.Teacher(first_name="Paul", last_name="Wolf", username="pwolf"),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def school_class(db, teachers):
    db_class = database.SchoolClass(name="3AHET", class_head_id=teachers[0].id)
    db.add(db_class)
    db.commit()

    db.add_all([
        database.Student(first_name="Lena", last_name="Zach", username="lzach", class_id=db_class.id, group_id=1),
        database.Student(first_name="Max", last_name="Auer", username="mauer", class_id=db_class.id, group_id=1),
        database.Student(first_name="Jonas", last_name="Bauer", class_id=db_class.id, group_id=2),
        database.Student(first_name="Mia", last_name="Auer", class_id=db_class.id, group_id=2),
        database.Student(first_name="Tim", last_name="Ohne", class_id=db_class.id, group_id=None),
    ])
    db.add_all([
        database.Subject(name="WEPT-Elektronik"),
        database.Room(name="E02"),
        database.LearningContent(name="Löten"),
    ])
    db.commit()
    db.refresh(db_class)
    return db_class


@pytest.fixture
def schedule_payload(school_class):
    return {
        "name": "Wechselplan 3AHET",
        "start_date": "2024-09-09",
        "end_date": "2025-06-27",
        "selected_weekday": 1,
        "class_id": school_class.id,
        "additional_info": "Werkstättenkleidung mitbringen",
        "schedule": {
            "Turnus 1": {"weeks": [
                {"date": "16.09.24", "week": "KW38", "isHoliday": False},
                {"date": "09.09.24", "week": "KW37", "isHoliday": False},
            ]},
            "Turnus 2": {"weeks": [
                {"date": "23.09.24", "week": "KW39", "isHoliday": False},
                {"date": "30.09.24", "week": "KW40", "isHoliday": True},
            ]},
            "Turnus 3": {"weeks": [{"date": "07.10.24", "week": "KW41", "isHoliday": False}]},
        },
    }
