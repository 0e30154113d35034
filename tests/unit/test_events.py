"""Unit tests for stream events.

Covers parsing of backend NDJSON records and their text rendering.
"""

from __future__ import annotations

import pytest

from pacman_console.protocol.events import (
    CompleteEvent,
    DownloadEvent,
    LogEvent,
    MirrorTestEvent,
    MirrorTestResult,
    NamedEvent,
    ProgressEvent,
    parse_event,
    render_event,
)

# =============================================================================
# parse_event Tests
# =============================================================================


class TestParseEvent:
    """Tests for parse_event - tagged union decoding."""

    def test_progress(self) -> None:
        """Progress records decode to ProgressEvent."""
        event = parse_event(
            '{"type":"progress","operation":"upgrade_start","package":"linux",'
            '"current":1,"total":5,"percent":20}'
        )
        assert event == ProgressEvent(
            operation="upgrade_start", package="linux", current=1, total=5, percent=20
        )

    def test_log(self) -> None:
        """Log records decode to LogEvent."""
        event = parse_event('{"type":"log","level":"warning","message":"disk low"}')
        assert isinstance(event, LogEvent)
        assert event.level == "warning"

    def test_download_without_counts(self) -> None:
        """Download completion may omit byte counts."""
        event = parse_event('{"type":"download","filename":"core.db","event":"completed"}')
        assert isinstance(event, DownloadEvent)
        assert event.downloaded is None
        assert event.total is None

    def test_named_event_without_package(self) -> None:
        """Named events have an optional package."""
        event = parse_event('{"type":"event","event":"hooks_start"}')
        assert event == NamedEvent(event="hooks_start")

    def test_mirror_test(self) -> None:
        """Mirror probe results decode with a nested result."""
        event = parse_event(
            '{"type":"mirror_test","url":"https://m.example/","current":2,"total":3,'
            '"result":{"url":"https://m.example/","success":true,"latency_ms":42}}'
        )
        assert isinstance(event, MirrorTestEvent)
        assert event.result.latency_ms == 42
        assert event.result.speed_bps is None

    def test_complete_without_message(self) -> None:
        """Complete records may omit the message."""
        event = parse_event('{"type":"complete","success":true}')
        assert event == CompleteEvent(success=True)

    @pytest.mark.parametrize(
        "line",
        [
            "error: could not open file",
            "",
            "[1, 2, 3]",
            '{"type":"unknown","foo":1}',
            '{"type":"progress","operation":"x"}',
            '{"message":"no type"}',
        ],
    )
    def test_rejects_non_events(self, line: str) -> None:
        """Anything that is not a known record returns None."""
        assert parse_event(line) is None


# =============================================================================
# render_event Tests
# =============================================================================


class TestRenderEvent:
    """Tests for render_event - text mirror of events."""

    def test_log(self) -> None:
        event = LogEvent(level="info", message="Synchronizing package databases")
        assert render_event(event) == "[info] Synchronizing package databases\n"

    def test_progress(self) -> None:
        event = ProgressEvent(
            operation="upgrade_start", package="linux", current=1, total=5, percent=20
        )
        assert render_event(event) == "[upgrade_start] linux 20%\n"

    def test_download_progress(self) -> None:
        """Download percentage rounds half up."""
        event = DownloadEvent(filename="linux.pkg", event="progress", downloaded=1, total=8)
        assert render_event(event) == "Downloading linux.pkg: 13%\n"

        event = DownloadEvent(filename="linux.pkg", event="progress", downloaded=1, total=200)
        assert render_event(event) == "Downloading linux.pkg: 1%\n"

    def test_download_progress_without_total(self) -> None:
        """Progress without a usable total has no text."""
        assert render_event(DownloadEvent(filename="f", event="progress")) is None
        assert (
            render_event(DownloadEvent(filename="f", event="progress", downloaded=5, total=0))
            is None
        )

    def test_download_completed(self) -> None:
        event = DownloadEvent(filename="core.db", event="completed")
        assert render_event(event) == "Downloaded core.db\n"

    def test_named_event(self) -> None:
        assert render_event(NamedEvent(event="hooks_start")) == "hooks_start\n"
        assert render_event(NamedEvent(event="scriptlet", package="glibc")) == (
            "scriptlet: glibc\n"
        )

    def test_mirror_test(self) -> None:
        ok = MirrorTestEvent(
            url="https://a/",
            current=1,
            total=2,
            result=MirrorTestResult(url="https://a/", success=True, latency_ms=35),
        )
        failed = MirrorTestEvent(
            url="https://b/",
            current=2,
            total=2,
            result=MirrorTestResult(url="https://b/", success=False, error="HTTP 404"),
        )
        assert render_event(ok) == "[1/2] https://a/: 35ms\n"
        assert render_event(failed) == "[2/2] https://b/: HTTP 404\n"

    def test_complete_has_no_text(self) -> None:
        assert render_event(CompleteEvent(success=True, message="done")) is None
