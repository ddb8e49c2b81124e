"""Unit tests for the FIT and TCX activity parsers.

FIT decoding goes through fitparse. Most tests replace fitparse.FitFile with a
stand-in so session summaries can be described directly; a few decode small
FIT files built by the build_fit fixture.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from app.core.errors import ParseError, ValidationError
from app.ingestion.file_parser import ActivityFormat, ParsedActivity, detect_format, parse_activity_file
from app.ingestion.sport import Sport


class _FakeMessage:
    def __init__(self, values: dict):
        self._values = values

    def get_values(self) -> dict:
        return dict(self._values)


def _fake_fit_file(sessions: list[dict], record_count: int = 0):
    class FakeFitFile:
        def __init__(self, _fileish):
            pass

        def get_messages(self, name=None):
            if name == "session":
                return [_FakeMessage(values) for values in sessions]
            if name == "record":
                return [_FakeMessage({}) for _ in range(record_count)]
            return []

    return FakeFitFile


@pytest.fixture
def fake_fit(monkeypatch):
    """Install a FitFile stand-in returning the given session summaries."""

    def _install(sessions: list[dict], record_count: int = 0) -> None:
        monkeypatch.setattr("app.ingestion.file_parser.fitparse.FitFile", _fake_fit_file(sessions, record_count))

    return _install


class TestDetectFormat:
    def test_known_extensions(self):
        assert detect_format("morning.fit") is ActivityFormat.FIT
        assert detect_format("Morning.TCX") is ActivityFormat.TCX

    @pytest.mark.parametrize("filename", ["ride.gpx", "notes.txt", "fit", "archive.fit.zip", ""])
    def test_unsupported_extension_rejected(self, filename):
        with pytest.raises(ValidationError):
            detect_format(filename)


class TestTcxParser:
    def test_two_laps_are_summed(self, tcx_bytes):
        """Two laps of 1800s/5000m give one hour and ten kilometres."""
        data = tcx_bytes([{"seconds": 1800, "meters": 5000}, {"seconds": 1800, "meters": 5000}])

        parsed = parse_activity_file(data, ActivityFormat.TCX)

        assert parsed.format is ActivityFormat.TCX
        assert parsed.duration_seconds == 3600
        assert parsed.distance_meters == 10000
        assert parsed.start_time == datetime(2024, 1, 15, 6, 5, tzinfo=UTC)
        assert parsed.end_time == parsed.start_time + timedelta(seconds=3600)
        assert parsed.parse_summary == {"lap_count": 2}

    def test_sport_calories_and_heart_rate(self, tcx_bytes):
        data = tcx_bytes(
            [
                {"seconds": 600.4, "meters": 2000, "calories": 100, "hr": 140},
                {"seconds": 600.4, "meters": 2000, "calories": 120, "hr": 0},
                {"seconds": 600.4, "meters": 2000, "calories": 130, "hr": 151},
            ],
            sport="Cycling",
        )

        parsed = parse_activity_file(data, ActivityFormat.TCX)

        assert parsed.sport is Sport.BIKE
        assert parsed.duration_seconds == 1801
        assert parsed.calories == 350
        # Zero-valued lap HR is ignored; mean of 140 and 151 rounds half up
        assert parsed.avg_hr == 146
        assert parsed.avg_power is None

    def test_no_heart_rate_gives_none(self, tcx_bytes):
        parsed = parse_activity_file(tcx_bytes([{"seconds": 60, "meters": 100}]), ActivityFormat.TCX)
        assert parsed.avg_hr is None

    def test_activity_without_laps_is_zero_length(self, tcx_bytes):
        parsed = parse_activity_file(tcx_bytes([], sport="Other"), ActivityFormat.TCX)
        assert parsed.duration_seconds == 0
        assert parsed.distance_meters == 0
        assert parsed.sport is Sport.OTHER
        assert parsed.end_time == parsed.start_time

    def test_offset_start_time_converted_to_utc(self, tcx_bytes):
        data = tcx_bytes([{"seconds": 60}], activity_id="2024-01-15T08:05:00+02:00")
        parsed = parse_activity_file(data, ActivityFormat.TCX)
        assert parsed.start_time == datetime(2024, 1, 15, 6, 5, tzinfo=timezone.utc)

    def test_naive_start_time_treated_as_utc(self, tcx_bytes):
        data = tcx_bytes([{"seconds": 60}], activity_id="2024-01-15T06:05:00")
        parsed = parse_activity_file(data, ActivityFormat.TCX)
        assert parsed.start_time == datetime(2024, 1, 15, 6, 5, tzinfo=UTC)

    def test_unknown_elements_are_ignored(self, tcx_bytes):
        extra = "<Creator><Name>Forerunner</Name></Creator><Notes>easy</Notes>"
        parsed = parse_activity_file(tcx_bytes([{"seconds": 60, "meters": 100}], extra=extra), ActivityFormat.TCX)
        assert parsed.duration_seconds == 60

    def test_tcx_without_namespace(self, tcx_bytes):
        data = (
            b"<TrainingCenterDatabase><Activities><Activity Sport='Running'>"
            b"<Id>2024-01-15T06:05:00Z</Id><Lap><TotalTimeSeconds>30</TotalTimeSeconds></Lap>"
            b"</Activity></Activities></TrainingCenterDatabase>"
        )
        parsed = parse_activity_file(data, ActivityFormat.TCX)
        assert parsed.duration_seconds == 30
        assert parsed.sport is Sport.RUN

    def test_missing_id_fails(self, tcx_bytes):
        with pytest.raises(ParseError, match="start time is invalid"):
            parse_activity_file(tcx_bytes([{"seconds": 60}], activity_id=None), ActivityFormat.TCX)

    def test_invalid_id_fails(self, tcx_bytes):
        with pytest.raises(ParseError, match="start time is invalid"):
            parse_activity_file(tcx_bytes([{"seconds": 60}], activity_id="yesterday"), ActivityFormat.TCX)

    def test_no_activity_fails(self, tcx_bytes):
        data = b'<?xml version="1.0"?><TrainingCenterDatabase><Activities/></TrainingCenterDatabase>'
        with pytest.raises(ParseError, match="No activity found"):
            parse_activity_file(data, ActivityFormat.TCX)

    def test_malformed_xml_fails(self, tcx_bytes):
        with pytest.raises(ParseError, match="Failed to parse TCX file"):
            parse_activity_file(b"<TrainingCenterDatabase><Activities>", ActivityFormat.TCX)

    def test_non_numeric_lap_value_fails(self, tcx_bytes):
        data = tcx_bytes([{"seconds": "abc"}])
        with pytest.raises(ParseError, match="TotalTimeSeconds"):
            parse_activity_file(data, ActivityFormat.TCX)

    def test_huge_lap_duration_fails(self, tcx_bytes):
        data = tcx_bytes([{"seconds": "1e20", "meters": 1}])
        with pytest.raises(ParseError, match="duration out of range"):
            parse_activity_file(data, ActivityFormat.TCX)

    def test_end_time_past_year_9999_fails(self, tcx_bytes):
        data = tcx_bytes([{"seconds": 3600}], activity_id="9999-12-31T23:30:00Z")
        with pytest.raises(ParseError, match="end time out of range"):
            parse_activity_file(data, ActivityFormat.TCX)


class TestFitParser:
    def test_first_session_summary_is_used(self, fake_fit):
        fake_fit(
            [
                {
                    "start_time": datetime(2024, 1, 15, 6, 5),
                    "total_elapsed_time": 3599.6,
                    "total_timer_time": 3500.0,
                    "total_distance": 10012.5,
                    "avg_heart_rate": 148,
                    "avg_power": 210,
                    "total_calories": 720,
                    "sport": "running",
                },
                {"start_time": datetime(2024, 1, 15, 8, 0), "total_elapsed_time": 60, "sport": "cycling"},
            ],
            record_count=3600,
        )

        parsed = parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

        assert parsed.format is ActivityFormat.FIT
        assert parsed.sport is Sport.RUN
        assert parsed.start_time == datetime(2024, 1, 15, 6, 5, tzinfo=UTC)
        assert parsed.duration_seconds == 3600
        assert parsed.end_time == datetime(2024, 1, 15, 7, 5, tzinfo=UTC)
        assert parsed.distance_meters == 10012.5
        assert parsed.avg_hr == 148
        assert parsed.avg_power == 210
        assert parsed.calories == 720
        assert parsed.parse_summary == {"records": 3600, "sessions": 2}

    def test_timer_time_used_when_elapsed_missing(self, fake_fit):
        fake_fit([{"start_time": datetime(2024, 1, 15, 6, 5), "total_timer_time": 1200.2}])
        parsed = parse_activity_file(b"fit-bytes", ActivityFormat.FIT)
        assert parsed.duration_seconds == 1200

    def test_missing_optional_fields_are_absent(self, fake_fit):
        fake_fit([{"start_time": datetime(2024, 1, 15, 6, 5), "sport": "training"}])

        parsed = parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

        assert parsed.duration_seconds == 0
        assert parsed.distance_meters == 0
        assert parsed.avg_hr is None
        assert parsed.avg_power is None
        assert parsed.calories is None
        assert parsed.sport is Sport.OTHER

    def test_no_session_fails(self, fake_fit):
        fake_fit([])
        with pytest.raises(ParseError, match="missing session start time"):
            parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

    def test_session_without_start_time_fails(self, fake_fit):
        fake_fit([{"total_elapsed_time": 100}])
        with pytest.raises(ParseError, match="missing session start time"):
            parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

    def test_end_time_out_of_range_fails(self, fake_fit):
        fake_fit([{"start_time": datetime(9999, 12, 31, 23, 30), "total_elapsed_time": 3600}])
        with pytest.raises(ParseError, match="end time out of range"):
            parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

    def test_decoder_failure_becomes_parse_error(self, monkeypatch):
        def broken(_fileish):
            raise RuntimeError("bad header")

        monkeypatch.setattr("app.ingestion.file_parser.fitparse.FitFile", broken)
        with pytest.raises(ParseError, match="Failed to parse FIT file: bad header"):
            parse_activity_file(b"fit-bytes", ActivityFormat.FIT)

    def test_garbage_bytes_fail_with_real_decoder(self):
        with pytest.raises(ParseError, match="Failed to parse FIT file"):
            parse_activity_file(b"definitely not a fit file", ActivityFormat.FIT)


class TestFitParserWithRealDecoder:
    """Encoded FIT bytes decoded by fitparse itself, no stand-in."""

    def test_session_summary(self, fit_bytes):
        data = fit_bytes(
            start_time=datetime(2024, 1, 15, 6, 5, tzinfo=UTC),
            elapsed_seconds=3599.6,
            distance_meters=10012.5,
            avg_hr=148,
            avg_power=210,
            calories=720,
            record_count=2,
        )

        parsed = parse_activity_file(data, ActivityFormat.FIT)

        assert parsed.sport is Sport.RUN
        assert parsed.start_time == datetime(2024, 1, 15, 6, 5, tzinfo=UTC)
        assert parsed.duration_seconds == 3600
        assert parsed.end_time == datetime(2024, 1, 15, 7, 5, tzinfo=UTC)
        assert parsed.distance_meters == pytest.approx(10012.5)
        assert parsed.avg_hr == 148
        assert parsed.avg_power == 210
        assert parsed.calories == 720
        assert parsed.parse_summary == {"records": 2, "sessions": 1}

    def test_cycling_without_optional_values(self, fit_bytes):
        data = fit_bytes(
            start_time=datetime(2024, 1, 15, 17, 0, tzinfo=UTC),
            elapsed_seconds=1800,
            distance_meters=15000,
            sport=2,
        )

        parsed = parse_activity_file(data, ActivityFormat.FIT)

        assert parsed.sport is Sport.BIKE
        assert parsed.duration_seconds == 1800
        assert parsed.avg_hr is None
        assert parsed.avg_power is None
        assert parsed.calories is None

    def test_corrupted_checksum_fails(self, fit_bytes):
        data = bytearray(fit_bytes(start_time=datetime(2024, 1, 15, 6, 5, tzinfo=UTC), elapsed_seconds=60))
        data[-1] ^= 0xFF
        with pytest.raises(ParseError, match="Failed to parse FIT file"):
            parse_activity_file(bytes(data), ActivityFormat.FIT)


class TestParsedActivityModel:
    def test_end_time_must_match_duration(self):
        start = datetime(2024, 1, 15, 6, 5, tzinfo=UTC)
        with pytest.raises(ValueError):
            ParsedActivity(
                format=ActivityFormat.TCX,
                sport=Sport.RUN,
                start_time=start,
                end_time=start,
                duration_seconds=60,
            )

    def test_negative_distance_rejected(self):
        start = datetime(2024, 1, 15, 6, 5, tzinfo=UTC)
        with pytest.raises(ValueError):
            ParsedActivity(
                format=ActivityFormat.FIT,
                sport=Sport.RUN,
                start_time=start,
                end_time=start,
                duration_seconds=0,
                distance_meters=-1,
            )
