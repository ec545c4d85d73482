"""Tests for the command-line driver."""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

import main
from oncall_sync.config import Settings
from oncall_sync.errors import AuthenticationFailure, MalformedEntry, SourceFetchFailure
from oncall_sync.models import Transition
from oncall_sync.pagerduty import SourceResult
from oncall_sync.prompt import ConsolePrompt, StaticPrompt
from tests.fixtures import FakeCalendarStore, at, entry, gcal_item

ARGS = ["--start-date", "2023-01-06", "--duration-days", "7", "--pd-schedule", "PSCHED1"]


@pytest.fixture
def settings():
    return Settings(
        google_client_id="id",
        google_client_secret="secret",
        pd_api_key="pd",
        calendar_id="primary",
        timezone=ZoneInfo("Asia/Singapore"),
        match_tolerance=timedelta(0),
    )


def pagerduty_returning(*entries, rejected=()):
    client = MagicMock()
    client.fetch_entries.return_value = SourceResult(list(entries), list(rejected))
    return client


class TestParseArgs:
    def test_required_flags(self):
        args = main.parse_args(ARGS)
        assert args.start_date == date(2023, 1, 6)
        assert args.duration_days == 7
        assert args.pd_schedule == "PSCHED1"
        assert args.on_oscillation == "ask"
        assert not args.dry_run

    @pytest.mark.parametrize(
        "argv",
        [
            ["--start-date", "06/01/2023", "--duration-days", "7", "--pd-schedule", "P"],
            ["--start-date", "2023-01-06", "--duration-days", "0", "--pd-schedule", "P"],
            ["--start-date", "2023-01-06", "--duration-days", "7"],
        ],
    )
    def test_invalid_arguments_exit(self, argv):
        with pytest.raises(SystemExit):
            main.parse_args(argv)

    def test_prompt_policy(self):
        assert isinstance(main.make_prompt("ask"), ConsolePrompt)
        assert main.make_prompt("accept").answer is True
        assert main.make_prompt("skip").answer is False


class TestRun:
    def test_full_success_returns_zero(self, settings, capsys):
        store = FakeCalendarStore()
        pagerduty = pagerduty_returning(entry("alice", at(6, 0), at(6, 8)))

        code = main.run(main.parse_args(ARGS), settings, pagerduty=pagerduty, store=store)

        assert code == main.EXIT_OK
        assert len(store.items) == 1
        since, until = pagerduty.fetch_entries.call_args.args[1:]
        assert since == at(6, 0) and until == at(13, 0)
        out = capsys.readouterr().out
        assert "created" in out and "alice" in out

    def test_mutation_failure_returns_one(self, settings):
        store = FakeCalendarStore()
        store.fail_creates_for.add("alice")
        pagerduty = pagerduty_returning(entry("alice", at(6, 0), at(6, 8)), entry("bob", at(7, 0), at(7, 8)))

        code = main.run(main.parse_args(ARGS), settings, pagerduty=pagerduty, store=store)

        assert code == main.EXIT_MUTATION_FAILED
        assert store.calls == [("create", "alice"), ("create", "bob")]
        assert len(store.items) == 1

    def test_dry_run_leaves_calendar_alone(self, settings):
        store = FakeCalendarStore([gcal_item("e1", "carol", at(6, 0), at(6, 8))])
        pagerduty = pagerduty_returning(entry("alice", at(7, 0), at(7, 8)))

        code = main.run(main.parse_args(ARGS + ["--dry-run"]), settings, pagerduty=pagerduty, store=store)

        assert code == main.EXIT_OK
        assert store.calls == []
        assert list(store.items) == ["e1"]

    def test_rejected_source_records_are_reported(self, settings, capsys):
        bad = MalformedEntry("Unreadable start/end", {"user": {"summary": "Dana"}})
        pagerduty = pagerduty_returning(rejected=[bad])

        code = main.run(main.parse_args(ARGS), settings, pagerduty=pagerduty, store=FakeCalendarStore())

        assert code == main.EXIT_OK
        out = capsys.readouterr().out
        assert "rejected" in out and "Dana" in out

    def test_oscillation_uses_injected_prompt(self, settings):
        history = (Transition("alice", "bob"), Transition("bob", "alice"))
        store = FakeCalendarStore([gcal_item("e1", "alice", at(6, 0), at(6, 8), history=history)])
        prompt = StaticPrompt(False)

        code = main.run(
            main.parse_args(ARGS),
            settings,
            pagerduty=pagerduty_returning(entry("bob", at(6, 0), at(6, 8))),
            store=store,
            prompt=prompt,
        )

        assert code == main.EXIT_OK
        assert len(prompt.asked) == 1
        assert store.calls == []

    def test_fetch_failure_applies_nothing(self, settings):
        store = FakeCalendarStore([gcal_item("e1", "carol", at(6, 0), at(6, 8))])
        pagerduty = MagicMock()
        pagerduty.fetch_entries.side_effect = SourceFetchFailure("PagerDuty GET /schedules/PSCHED1 failed")

        with pytest.raises(SourceFetchFailure):
            main.run(main.parse_args(ARGS), settings, pagerduty=pagerduty, store=store)
        assert store.calls == []


class TestMain:
    def test_missing_environment_is_fatal(self, monkeypatch):
        for name in ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET", "PD_API_KEY"):
            monkeypatch.delenv(name, raising=False)
        with patch("main.run") as run:
            assert main.main(ARGS) == main.EXIT_FATAL
        run.assert_not_called()

    def test_authentication_failure_is_fatal(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("PD_API_KEY", "pd")
        with patch("main.run", side_effect=AuthenticationFailure("Google OAuth flow on port 8080 failed")):
            assert main.main(ARGS) == main.EXIT_FATAL

    def test_run_exit_code_is_returned(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "id")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "secret")
        monkeypatch.setenv("PD_API_KEY", "pd")
        with patch("main.run", return_value=main.EXIT_MUTATION_FAILED):
            assert main.main(ARGS) == main.EXIT_MUTATION_FAILED
