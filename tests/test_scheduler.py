"""Tests for the billing scheduler lifecycle."""

import pytest

from billing.checks import DailyChecks
from billing.generator import MonthlyBillGenerator
from scheduler.config import SchedulerConfig
from scheduler.engine import (
    BILLING_JOB_ID, FLUSH_JOB_ID, LEASE_CHECK_JOB_ID, OVERDUE_CHECK_JOB_ID, BillingScheduler,
)
from scheduler.models import SchedulerState


@pytest.fixture
def config():
    return SchedulerConfig(heartbeat_interval_seconds=3600)


@pytest.fixture
def generator(sessions, dispatcher, alerts):
    return MonthlyBillGenerator(sessions, dispatcher, alerts)


@pytest.fixture
def scheduler(config, sessions, generator, dispatcher, alerts):
    checks = DailyChecks(sessions, alerts, timezone=config.timezone)
    scheduler = BillingScheduler(config, sessions, generator, dispatcher, checks)
    yield scheduler
    if scheduler.is_running:
        scheduler.stop(wait=False)


def state(sessions):
    with sessions.session_scope() as session:
        row = session.get(SchedulerState, 1)
        return row.to_dict() if row else None


def job_ids(scheduler):
    return sorted(job['id'] for job in scheduler.get_jobs())


def test_start_registers_all_jobs(scheduler, set_setting):
    set_setting('billing_day', '15')

    scheduler.start()

    assert scheduler.is_running is True
    assert job_ids(scheduler) == sorted([BILLING_JOB_ID, FLUSH_JOB_ID, LEASE_CHECK_JOB_ID, OVERDUE_CHECK_JOB_ID])
    billing_job = next(job for job in scheduler.get_jobs() if job['id'] == BILLING_JOB_ID)
    assert "day='15'" in billing_job['trigger']
    assert "hour='9'" in billing_job['trigger']


def test_status_while_running(scheduler, sessions, set_setting):
    set_setting('billing_day', '5')
    scheduler.start()

    status = scheduler.status()

    assert status['running'] is True
    assert status['jobActive'] is True
    assert status['billingInProgress'] is False
    assert status['billingDay'] == 5
    assert status['timezone'] == 'Africa/Nairobi'
    assert status['nextBillingRun'] is not None
    assert '-05T09:00:00' in status['nextBillingRun']
    assert state(sessions)['status'] == 'running'
    assert state(sessions)['billing_day'] == 5


def test_invalid_billing_day_falls_back_to_default(scheduler, set_setting):
    set_setting('billing_day', '31')

    scheduler.start()

    assert scheduler.billing_day == 28


def test_daily_checks_can_be_disabled(config, sessions, generator, dispatcher, alerts):
    config.daily_checks_enabled = False
    scheduler = BillingScheduler(config, sessions, generator, dispatcher, DailyChecks(sessions, alerts))
    scheduler.start()
    try:
        assert job_ids(scheduler) == sorted([BILLING_JOB_ID, FLUSH_JOB_ID])
    finally:
        scheduler.stop(wait=False)


def test_stop_clears_jobs_and_state(scheduler, sessions):
    scheduler.start()

    scheduler.stop()

    assert scheduler.is_running is False
    assert scheduler.get_jobs() == []
    assert scheduler.status()['jobActive'] is False
    assert state(sessions)['status'] == 'stopped'


def test_start_twice_is_harmless(scheduler):
    scheduler.start()
    scheduler.start()

    assert len(scheduler.get_jobs()) == 4


def test_restart_picks_up_new_billing_day(scheduler, sessions, set_setting):
    from billing.settings import save_setting

    set_setting('billing_day', '10')
    scheduler.start()
    with sessions.session_scope() as session:
        save_setting(session, 'billing_day', '20')

    scheduler.restart()

    assert scheduler.billing_day == 20
    assert scheduler.is_running is True


def test_manual_run_updates_last_billing_run(scheduler, sessions, make_lease):
    make_lease()

    result = scheduler.trigger_manual_billing_run('2024-05')

    assert result['billsGenerated'] == 1
    last = scheduler.status()['lastBillingRun']
    assert last['month'] == '2024-05'
    assert last['runId'] == result['runId']
    assert last['billsGenerated'] == 1


def test_status_falls_back_to_recorded_run(config, sessions, generator, dispatcher, make_lease):
    make_lease()
    generator.generate('2024-05')

    status = BillingScheduler(config, sessions, generator, dispatcher).status()

    assert status['running'] is False
    assert status['nextBillingRun'] is None
    assert status['lastBillingRun']['month'] == '2024-05'


def test_scheduled_job_swallows_run_in_progress(scheduler, generator, make_lease):
    make_lease()
    generator._local_lock.acquire()
    try:
        scheduler._run_billing_job()
    finally:
        generator._local_lock.release()

    assert scheduler.last_billing_run is None


def test_scheduled_job_records_scheduler_trigger(scheduler, sessions, make_lease):
    make_lease()
    scheduler.start()

    scheduler._run_billing_job()

    runs = scheduler.generator.recent_runs()
    assert runs[0]['triggered_by'] == 'scheduler'
    assert state(sessions)['last_billing_run_at'] is not None


def test_flush_job_delivers_queue(scheduler, sessions, dispatcher, channel):
    dispatcher.enqueue('0712345678', 'Hello', 'reminder')
    scheduler.start()

    scheduler._run_flush_job()

    assert channel.calls == 1
    assert state(sessions)['last_flush_at'] is not None


def test_stop_joins_heartbeat_thread(scheduler):
    scheduler.start()
    heartbeat = scheduler._heartbeat_thread

    scheduler.stop()

    assert heartbeat.is_alive() is False
    assert scheduler._heartbeat_thread is None


def test_restart_leaves_one_heartbeat_thread(scheduler):
    scheduler.start()
    first = scheduler._heartbeat_thread

    scheduler.restart()

    assert first.is_alive() is False
    assert scheduler._heartbeat_thread.is_alive() is True
