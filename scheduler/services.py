"""
Wiring for the billing engine.

Builds the engine, session manager, dispatcher, generator, payment
service, daily checks and scheduler from configuration, so the CLI, the
daemon and the API share one object graph.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from billing.checks import DailyChecks
from billing.generator import MonthlyBillGenerator
from billing.payments import PaymentService
from common.config_loader import get_database_url
from common.engine import create_engine_from_url, init_db
from common.session import SessionManager
from notifications.alert_manager import AlertManager
from notifications.channels import OutboundChannel, create_channel
from notifications.dispatcher import NotificationDispatcher
from scheduler.config import SchedulerConfig
from scheduler.engine import BillingScheduler

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    """Everything a caller needs to drive the billing engine."""
    config: SchedulerConfig
    sessions: SessionManager
    dispatcher: NotificationDispatcher
    alerts: AlertManager
    generator: MonthlyBillGenerator
    payments: PaymentService
    checks: DailyChecks
    scheduler: BillingScheduler

    def close(self):
        if self.scheduler.is_running:
            self.scheduler.stop(wait=False)
        self.dispatcher.channel.close()
        self.sessions.engine.dispose()


def build_services(
    config: Optional[SchedulerConfig] = None,
    db_url: Optional[str] = None,
    channel: Optional[OutboundChannel] = None,
    sessions: Optional[SessionManager] = None,
    create_tables: bool = False,
    sleep=None,
) -> BillingServices:
    """
    Build the billing engine.

    Args:
        config: Scheduler configuration (loaded from YAML if omitted)
        db_url: Database URL (config loader if omitted)
        channel: Outbound SMS channel (built from sms settings if omitted)
        sessions: Existing session manager (tests)
        create_tables: Create missing tables on start-up
        sleep: Pause function between sends (tests)

    Returns:
        BillingServices
    """
    config = config or SchedulerConfig.from_config()

    if sessions is None:
        engine = create_engine_from_url(db_url or get_database_url('billing'))
        sessions = SessionManager(engine)

    if create_tables:
        init_db(sessions.engine)

    dispatcher_kwargs = {'sleep': sleep} if sleep is not None else {}
    dispatcher = NotificationDispatcher(
        sessions,
        channel or create_channel(config.sms),
        config.dispatcher,
        **dispatcher_kwargs,
    )
    alerts = AlertManager(sessions, config.alerts)
    generator = MonthlyBillGenerator(sessions, dispatcher, alerts, config.billing, timezone=config.timezone)
    payments = PaymentService(sessions, dispatcher)
    checks = DailyChecks(sessions, alerts, timezone=config.timezone, lease_expiry_days=config.lease_expiry_days)
    scheduler = BillingScheduler(config, sessions, generator, dispatcher, checks)

    logger.info("Billing services initialized")

    return BillingServices(
        config=config,
        sessions=sessions,
        dispatcher=dispatcher,
        alerts=alerts,
        generator=generator,
        payments=payments,
        checks=checks,
        scheduler=scheduler,
    )
