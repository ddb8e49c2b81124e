"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key")

import struct
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

import pytest
from fitparse.records import Crc
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import Base, CompletedActivity, PlannedSession, UploadedFile
from app.db.session import _enable_sqlite_foreign_keys

TCX_NAMESPACE = "http://www.garmin.com/xmlschemas/TrainingCenterDatabase/v2"

# FIT timestamps count seconds from 1989-12-31T00:00:00Z
FIT_EPOCH = datetime(1989, 12, 31, tzinfo=UTC)


@pytest.fixture
def test_user_id() -> str:
    return "athlete_123"


@pytest.fixture
def other_user_id() -> str:
    return "athlete_456"


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides an isolated in-memory SQLite DB session for tests.

    This fixture:
    - Creates a fresh in-memory SQLite database per test (foreign keys on)
    - Patches the engine getter so app startup uses it too
    - Lets services commit freely; the database is discarded afterwards
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    Base.metadata.create_all(engine)

    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()

    monkeypatch.setattr("app.db.session._get_engine", lambda: engine)

    try:
        yield session
    finally:
        session.rollback()
        session.close()
        engine.dispose()


@pytest.fixture
def make_planned_session(db_session, test_user_id) -> Callable[..., PlannedSession]:
    """Factory for planned sessions owned by the test user by default."""

    def _make(
        *,
        day: date = date(2024, 1, 15),
        sport: str = "run",
        starts_at: datetime | None = None,
        duration_minutes: int | None = 60,
        distance_m: float | None = None,
        user_id: str | None = None,
        title: str | None = None,
    ) -> PlannedSession:
        planned = PlannedSession(
            user_id=user_id or test_user_id,
            date=day,
            starts_at=starts_at,
            sport=sport,
            title=title or f"{sport} session",
            duration_minutes=duration_minutes,
            distance_m=distance_m,
        )
        db_session.add(planned)
        db_session.commit()
        return planned

    return _make


@pytest.fixture
def make_completed_activity(db_session, test_user_id) -> Callable[..., CompletedActivity]:
    """Factory for an already-parsed upload and its completed activity."""
    counter = {"n": 0}

    def _make(
        *,
        sport: str = "run",
        start_time: datetime = datetime(2024, 1, 15, 6, 5, tzinfo=UTC),
        duration_seconds: int = 3600,
        distance_meters: float = 10000.0,
        user_id: str | None = None,
        status: str = "parsed",
    ) -> CompletedActivity:
        counter["n"] += 1
        owner = user_id or test_user_id
        upload = UploadedFile(
            user_id=owner,
            filename=f"activity_{counter['n']}.tcx",
            file_type="tcx",
            file_size=100,
            sha256=f"{counter['n']:064x}",
            status=status,
        )
        db_session.add(upload)
        db_session.flush()
        activity = CompletedActivity(
            user_id=owner,
            upload_id=upload.id,
            sport=sport,
            start_time=start_time,
            end_time=start_time + timedelta(seconds=duration_seconds),
            duration_seconds=duration_seconds,
            distance_meters=distance_meters,
        )
        db_session.add(activity)
        db_session.commit()
        return activity

    return _make


def build_tcx(
    laps: list[dict],
    *,
    sport: str = "Running",
    activity_id: str | None = "2024-01-15T06:05:00Z",
    extra: str = "",
) -> bytes:
    """Build a minimal namespaced TCX document.

    Each lap dict may carry seconds, meters, calories and hr.
    """
    lap_xml = []
    for lap in laps:
        parts = [f"<TotalTimeSeconds>{lap.get('seconds', 0)}</TotalTimeSeconds>"]
        if "meters" in lap:
            parts.append(f"<DistanceMeters>{lap['meters']}</DistanceMeters>")
        if "calories" in lap:
            parts.append(f"<Calories>{lap['calories']}</Calories>")
        if "hr" in lap:
            parts.append(f"<AverageHeartRateBpm><Value>{lap['hr']}</Value></AverageHeartRateBpm>")
        lap_xml.append(f'<Lap StartTime="2024-01-15T06:05:00Z">{"".join(parts)}</Lap>')

    id_xml = f"<Id>{activity_id}</Id>" if activity_id is not None else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<TrainingCenterDatabase xmlns="{TCX_NAMESPACE}">'
        f'<Activities><Activity Sport="{sport}">{id_xml}{"".join(lap_xml)}{extra}</Activity></Activities>'
        "</TrainingCenterDatabase>"
    ).encode("utf-8")


@pytest.fixture
def tcx_bytes() -> Callable[..., bytes]:
    return build_tcx


def _fit_definition(local_num: int, global_num: int, fields: list[tuple[int, int, int]]) -> bytes:
    """Little-endian definition message: (field number, size, base type) per field."""
    body = struct.pack("<BBBHB", 0x40 | local_num, 0, 0, global_num, len(fields))
    return body + b"".join(struct.pack("<BBB", *field) for field in fields)


def build_fit(
    *,
    start_time: datetime,
    elapsed_seconds: float,
    distance_meters: float = 0.0,
    sport: int = 1,
    avg_hr: int | None = None,
    avg_power: int | None = None,
    calories: int | None = None,
    record_count: int = 0,
) -> bytes:
    """Encode a minimal FIT file: one session message plus optional records.

    Sport numbers follow the FIT profile (1 running, 2 cycling, 5 swimming).
    Absent optional values are written as the FIT invalid sentinel.
    """
    timestamp = int((start_time - FIT_EPOCH).total_seconds())

    data = _fit_definition(
        0,
        18,  # session
        [
            (2, 4, 0x86),  # start_time
            (5, 1, 0x00),  # sport
            (7, 4, 0x86),  # total_elapsed_time, ms
            (9, 4, 0x86),  # total_distance, cm
            (11, 2, 0x84),  # total_calories
            (16, 1, 0x02),  # avg_heart_rate
            (20, 2, 0x84),  # avg_power
        ],
    )
    data += struct.pack(
        "<BIBIIHBH",
        0x00,
        timestamp,
        sport,
        round(elapsed_seconds * 1000),
        round(distance_meters * 100),
        0xFFFF if calories is None else calories,
        0xFF if avg_hr is None else avg_hr,
        0xFFFF if avg_power is None else avg_power,
    )
    if record_count:
        data += _fit_definition(1, 20, [(253, 4, 0x86), (3, 1, 0x02)])  # record: timestamp, heart_rate
        for n in range(record_count):
            data += struct.pack("<BIB", 0x01, timestamp + n, 140)

    # Header CRC of zero means "not computed"; the file CRC covers header and data
    header = struct.pack("<BBHI4sH", 14, 0x20, 2132, len(data), b".FIT", 0)
    return header + data + struct.pack("<H", Crc.calculate(header + data))


@pytest.fixture
def fit_bytes() -> Callable[..., bytes]:
    return build_fit
