from __future__ import annotations

from datetime import datetime, timedelta, timezone

from habitloop.domain.models import JournalEntry
from habitloop.errors import NetworkFailure
from habitloop.services.job_runner import InlineJobRunner
from habitloop.services.weekly_analysis import WeeklyAnalysisTrigger, prepare_batch

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entry(days_ago: float, content: str = "entry", **kwargs) -> JournalEntry:
    return JournalEntry(content=content, date=NOW - timedelta(days=days_ago), **kwargs)


def test_batch_collects_only_entries_older_than_a_week() -> None:
    eight, nine, yesterday = _entry(8, "eight"), _entry(9, "nine"), _entry(1, "yesterday")

    batch = prepare_batch([eight, nine, yesterday], NOW)

    assert [entry.content for entry in batch.entries] == ["eight", "nine"]
    assert batch.entry_ids == [eight.id, nine.id]
    assert batch.week_end_date == eight.date
    assert batch.week_start_date == eight.date - timedelta(days=7)


def test_no_batch_when_everything_is_recent() -> None:
    assert prepare_batch([_entry(1), _entry(6.9)], NOW) is None
    assert prepare_batch([], NOW) is None


def test_cutoff_is_inclusive() -> None:
    assert prepare_batch([_entry(7)], NOW) is not None


def test_visible_and_excluded_entries_are_skipped() -> None:
    shown = _entry(10, is_visible=True)
    claimed = _entry(9)
    fresh = _entry(8)

    batch = prepare_batch([shown, claimed, fresh], NOW, exclude_ids={claimed.id})

    assert batch.entry_ids == [fresh.id]


def test_trigger_releases_claim_after_failure(coach) -> None:
    coach.fail_weekly_with = NetworkFailure("offline")
    trigger = WeeklyAnalysisTrigger(coach, InlineJobRunner(), window_days=7)
    applied = []

    batch = trigger.claim([_entry(8)], NOW)
    assert trigger.in_flight == set(batch.entry_ids)

    result = trigger.dispatch(batch, lambda summary, b: applied.append(summary) or True).result()

    assert result is None
    assert applied == []
    assert trigger.in_flight == set()


def test_failed_analysis_is_retried_on_next_append(engine, coach, clock) -> None:
    coach.fail_weekly_with = NetworkFailure("offline")
    engine.append_journal_entry("nine days ago", entry_date=clock.now - timedelta(days=9))
    engine.append_journal_entry("eight days ago", entry_date=clock.now - timedelta(days=8))
    assert engine.weekly_summaries() == []

    coach.fail_weekly_with = None
    engine.append_journal_entry("yesterday", entry_date=clock.now - timedelta(days=1))

    assert [len(batch) for batch in coach.weekly_batches] == [1, 2, 2]
    summaries = engine.weekly_summaries()
    assert len(summaries) == 1
    assert summaries[0].ai_analysis == "2 entries reviewed"
    assert summaries[0].suggested_goals == ["Sleep earlier", "Walk daily", "Read more"]
    assert [entry.content for entry in engine.visible_entries()] == ["nine days ago", "eight days ago"]


def test_processed_entries_are_never_reanalysed(engine, coach, clock) -> None:
    engine.append_journal_entry("old", entry_date=clock.now - timedelta(days=10))
    engine.append_journal_entry("today")
    clock.advance(days=8)
    engine.append_journal_entry("later")

    contents = [[entry.content for entry in batch] for batch in coach.weekly_batches]
    assert contents == [["old"], ["today"]]
    assert len(engine.weekly_summaries()) == 2


def test_appends_during_analysis_do_not_shift_marked_entries(make_engine, deferred_jobs, clock) -> None:
    engine = make_engine(jobs=deferred_jobs)
    engine.append_journal_entry("old", entry_date=clock.now - timedelta(days=8))
    engine.append_journal_entry("new one")
    engine.append_journal_entry("new two")

    assert deferred_jobs.run_pending() == ["weekly_analysis"]

    visible = [entry.content for entry in engine.visible_entries()]
    assert visible == ["old"]
    assert len(engine.weekly_summaries()) == 1


def test_in_flight_entries_are_not_claimed_twice(make_engine, deferred_jobs, coach, clock) -> None:
    engine = make_engine(jobs=deferred_jobs)
    engine.append_journal_entry("first", entry_date=clock.now - timedelta(days=9))
    engine.append_journal_entry("second", entry_date=clock.now - timedelta(days=8))

    deferred_jobs.run_pending()

    contents = [[entry.content for entry in batch] for batch in coach.weekly_batches]
    assert contents == [["first"], ["second"]]


def test_weekly_result_after_reset_is_discarded(make_engine, deferred_jobs, clock) -> None:
    engine = make_engine(jobs=deferred_jobs)
    engine.append_journal_entry("old", entry_date=clock.now - timedelta(days=8))

    engine.reset_plan()
    deferred_jobs.run_pending()

    assert engine.weekly_summaries() == []
    assert engine.journal_entries() == []
