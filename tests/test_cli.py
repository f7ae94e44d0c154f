"""Tests for the billing CLI."""

import pytest
from click.testing import CliRunner

from scheduler.cli import cli
from scheduler.config import SchedulerConfig
from scheduler.services import build_services


@pytest.fixture
def services(sessions, channel):
    return build_services(
        config=SchedulerConfig(heartbeat_interval_seconds=3600),
        sessions=sessions,
        channel=channel,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def invoke(services):
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, list(args), obj={'services': services})

    return _invoke


def test_bills_run_with_flush(invoke, channel, make_lease):
    make_lease(first_name='Jane', unit_code='A1')

    result = invoke('bills', 'run', '--month', '2024-05', '--flush')

    assert result.exit_code == 0, result.output
    assert 'Bills: 1' in result.output
    assert 'Delivered 1/1' in result.output
    assert channel.calls == 1


def test_bills_run_reports_busy_generator(invoke, services, make_lease):
    make_lease()
    services.generator._local_lock.acquire()
    try:
        result = invoke('bills', 'run', '--month', '2024-05')
    finally:
        services.generator._local_lock.release()

    assert result.exit_code == 1
    assert 'already in progress' in result.output


def test_bills_show_unknown_lease(invoke):
    result = invoke('bills', 'show', '99', '99', '--month', '2024-05')

    assert result.exit_code == 1
    assert 'No active tenant allocation' in result.output


def test_bills_history_lists_runs(invoke, services, make_lease):
    make_lease()
    services.generator.generate('2024-05', triggered_by='cli')

    result = invoke('bills', 'history')

    assert result.exit_code == 0, result.output
    assert '2024-05' in result.output


def test_queue_flush_and_stats(invoke, services, channel):
    services.dispatcher.enqueue('0712345678', 'Hello', 'manual')

    flushed = invoke('queue', 'flush')
    stats = invoke('queue', 'stats')

    assert flushed.exit_code == 0, flushed.output
    assert 'Processed 1' in flushed.output
    assert stats.exit_code == 0, stats.output
    assert 'sent' in stats.output


def test_queue_retry_resets_failed(invoke, services, channel):
    services.dispatcher.settings.max_attempts = 1
    channel.fail_on = {1}
    services.dispatcher.enqueue('0712345678', 'Hello', 'manual')
    services.dispatcher.flush()

    result = invoke('queue', 'retry')

    assert result.exit_code == 0, result.output
    assert 'Reset 1 message(s)' in result.output
    assert services.dispatcher.queue_stats()['pending'] == 1


def test_status_before_scheduler_started(invoke):
    result = invoke('status')

    assert result.exit_code == 0, result.output
    assert 'NOT INITIALIZED' in result.output
