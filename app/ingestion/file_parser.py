"""Activity file parser for FIT and TCX formats.

Pure parsing module with no database access or business logic.
Converts file bytes into a ParsedActivity; both decoders share that one
output model and are told apart by its ``format`` field.

Only session-level summary data is read. Per-second records are counted
for diagnostics but never stored.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import fitparse
from loguru import logger
from lxml import etree
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic import ValidationError as ModelValidationError

from app.core.errors import ParseError, ValidationError
from app.ingestion.sport import Sport, normalize_sport

# completed_activities.duration_seconds is a 32-bit INTEGER
MAX_DURATION_SECONDS = 2**31 - 1


class ActivityFormat(str, Enum):
    FIT = "fit"
    TCX = "tcx"

    @property
    def extension(self) -> str:
        return f".{self.value}"


class ParsedActivity(BaseModel):
    """Parsed activity summary from a file upload."""

    format: ActivityFormat
    sport: Sport
    start_time: datetime
    end_time: datetime
    duration_seconds: int = Field(ge=0)
    distance_meters: float = Field(default=0.0, ge=0)
    avg_hr: float | None = None
    avg_power: float | None = None
    calories: float | None = None
    parse_summary: dict[str, Any] = Field(default_factory=dict)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_utc(cls, v: datetime) -> datetime:
        """Store every timestamp as aware UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @model_validator(mode="after")
    def validate_end_time(self) -> ParsedActivity:
        """End time is always derived from start plus duration."""
        try:
            expected = self.start_time + timedelta(seconds=self.duration_seconds)
        except OverflowError as e:
            raise ValueError("start_time + duration_seconds is out of range") from e
        if self.end_time != expected:
            raise ValueError("end_time must equal start_time + duration_seconds")
        return self


def detect_format(filename: str) -> ActivityFormat:
    """Determine the file format from its extension.

    Args:
        filename: Original filename

    Returns:
        ActivityFormat for the extension

    Raises:
        ValidationError: If the extension is not .fit or .tcx
    """
    name = (filename or "").lower()
    dot = name.rfind(".")
    extension = name[dot:] if dot >= 0 else ""
    for activity_format in ActivityFormat:
        if extension == activity_format.extension:
            return activity_format
    raise ValidationError("Unsupported file type. Please upload .fit or .tcx")


def parse_activity_file(file_bytes: bytes, activity_format: ActivityFormat) -> ParsedActivity:
    """Parse activity file bytes into a ParsedActivity.

    Args:
        file_bytes: Raw file bytes
        activity_format: Format discriminant (see detect_format)

    Returns:
        ParsedActivity with extracted data

    Raises:
        ParseError: If the content is malformed or lacks required fields
    """
    if activity_format is ActivityFormat.FIT:
        return _parse_fit(file_bytes)
    if activity_format is ActivityFormat.TCX:
        return _parse_tcx(file_bytes)
    raise ParseError(f"Unsupported activity format: {activity_format}")


def _build_activity(**fields: Any) -> ParsedActivity:
    try:
        return ParsedActivity(**fields)
    except ModelValidationError as e:
        raise ParseError(f"Parsed activity is invalid: {e.errors()[0]['msg']}") from e


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _end_time(start_time: datetime, duration_seconds: int, source: str) -> datetime:
    """start + duration, rejecting durations the store or the calendar cannot hold."""
    if duration_seconds > MAX_DURATION_SECONDS:
        raise ParseError(f"{source} duration out of range: {duration_seconds}s")
    try:
        return start_time + timedelta(seconds=duration_seconds)
    except (OverflowError, ValueError) as e:
        raise ParseError(f"{source} end time out of range: {e}") from e


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _optional_number(value: Any) -> float | None:
    """FIT fields that are missing or zero are reported as absent."""
    if value is None:
        return None
    number = float(value)
    return number if number else None


def _read_fit_session(file_bytes: bytes) -> tuple[dict[str, Any] | None, dict[str, int]]:
    """Decode FIT bytes and return the first session message's values."""
    fit_file = fitparse.FitFile(file_bytes)

    first_session: dict[str, Any] | None = None
    session_count = 0
    for message in fit_file.get_messages("session"):
        session_count += 1
        if first_session is None:
            first_session = message.get_values()

    record_count = sum(1 for _ in fit_file.get_messages("record"))
    return first_session, {"records": record_count, "sessions": session_count}


def _parse_fit(file_bytes: bytes) -> ParsedActivity:
    """Parse FIT file using fitparse.

    Args:
        file_bytes: Raw FIT file bytes

    Returns:
        ParsedActivity

    Raises:
        ParseError: If decoding fails or the session summary is missing
    """
    try:
        session, diagnostics = _read_fit_session(file_bytes)
    except Exception as e:
        raise ParseError(f"Failed to parse FIT file: {e}") from e

    if session is None or not session.get("start_time"):
        raise ParseError("FIT file missing session start time.")

    start_time = session["start_time"]
    if not isinstance(start_time, datetime):
        raise ParseError(f"FIT session start time is invalid: {start_time!r}")
    start_time = _as_utc(start_time)

    elapsed = session.get("total_elapsed_time")
    if elapsed is None:
        elapsed = session.get("total_timer_time")
    try:
        duration_seconds = _round_half_up(float(elapsed or 0))
        distance_meters = float(session.get("total_distance") or 0)
        avg_hr = _optional_number(session.get("avg_heart_rate"))
        avg_power = _optional_number(session.get("avg_power"))
        calories = _optional_number(session.get("total_calories"))
    except (TypeError, ValueError) as e:
        raise ParseError(f"FIT session has invalid summary values: {e}") from e

    if duration_seconds < 0 or distance_meters < 0:
        raise ParseError("FIT session has negative duration or distance")

    logger.debug(
        "Parsed FIT session: sport={} start={} duration={}s records={}",
        session.get("sport"),
        start_time.isoformat(),
        duration_seconds,
        diagnostics["records"],
    )

    return _build_activity(
        format=ActivityFormat.FIT,
        sport=normalize_sport(str(session.get("sport") or "")),
        start_time=start_time,
        end_time=_end_time(start_time, duration_seconds, "FIT"),
        duration_seconds=duration_seconds,
        distance_meters=distance_meters,
        avg_hr=avg_hr,
        avg_power=avg_power,
        calories=calories,
        parse_summary=diagnostics,
    )


def _local_children(element: etree._Element, name: str) -> list[etree._Element]:
    """Direct children with the given local name, ignoring XML namespaces."""
    return [child for child in element if isinstance(child.tag, str) and etree.QName(child).localname == name]


def _local_child_text(element: etree._Element, name: str) -> str | None:
    children = _local_children(element, name)
    if not children or children[0].text is None:
        return None
    return children[0].text.strip()


def _lap_number(lap: etree._Element, name: str, *path: str) -> float:
    """Numeric lap field (missing counts as zero)."""
    node = lap
    for step in path:
        nested = _local_children(node, step)
        if not nested:
            return 0.0
        node = nested[0]
    text = _local_child_text(node, name)
    if not text:
        return 0.0
    try:
        value = float(text)
    except ValueError as e:
        raise ParseError(f"TCX lap has invalid {name}: {text!r}") from e
    if not math.isfinite(value):
        raise ParseError(f"TCX lap has invalid {name}: {text!r}")
    return value


def _parse_tcx_start(raw: str | None) -> datetime:
    if not raw:
        raise ParseError("TCX activity start time is invalid.")
    try:
        start_time = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseError("TCX activity start time is invalid.") from e
    return _as_utc(start_time)


_TCX_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)


def _parse_tcx(file_bytes: bytes) -> ParsedActivity:
    """Parse TCX file using lxml.

    Elements outside Activities/Activity/Lap are ignored.

    Args:
        file_bytes: Raw TCX file bytes (UTF-8 XML)

    Returns:
        ParsedActivity

    Raises:
        ParseError: If parsing fails or required fields are missing
    """
    try:
        root = etree.fromstring(file_bytes, parser=_TCX_PARSER)
    except etree.XMLSyntaxError as e:
        raise ParseError(f"Failed to parse TCX file: {e}") from e

    activities: list[etree._Element] = []
    if etree.QName(root).localname == "TrainingCenterDatabase":
        for container in _local_children(root, "Activities"):
            activities.extend(_local_children(container, "Activity"))
    if not activities:
        raise ParseError("No activity found in TCX file.")

    activity = activities[0]
    start_time = _parse_tcx_start(_local_child_text(activity, "Id"))
    laps = _local_children(activity, "Lap")

    duration_seconds = _round_half_up(sum(_lap_number(lap, "TotalTimeSeconds") for lap in laps))
    distance_meters = sum(_lap_number(lap, "DistanceMeters") for lap in laps)
    calories = _round_half_up(sum(_lap_number(lap, "Calories") for lap in laps))
    hr_values = [value for value in (_lap_number(lap, "Value", "AverageHeartRateBpm") for lap in laps) if value > 0]
    avg_hr = _round_half_up(sum(hr_values) / len(hr_values)) if hr_values else None

    if duration_seconds < 0 or distance_meters < 0:
        raise ParseError("TCX laps have negative duration or distance")

    return _build_activity(
        format=ActivityFormat.TCX,
        sport=normalize_sport(activity.get("Sport")),
        start_time=start_time,
        end_time=_end_time(start_time, duration_seconds, "TCX"),
        duration_seconds=duration_seconds,
        distance_meters=distance_meters,
        avg_hr=avg_hr,
        avg_power=None,
        calories=calories,
        parse_summary={"lap_count": len(laps)},
    )
