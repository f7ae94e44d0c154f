"""
Scheduler and billing configuration.

Typed dataclasses built from the YAML sections loaded by
common.config_loader (billing.yaml, scheduler.yaml). Every field has a
default so a missing file or key never stops the daemon.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from common.config_loader import AppConfig, ConfigSection, get_config

logger = logging.getLogger(__name__)


def _section_value(section: Optional[ConfigSection], key: str, default: Any, cast: type = None) -> Any:
    """Read a key from a config section, casting and falling back to default."""
    if section is None:
        return default
    value = section.get(key)
    if value is None or value == '':
        return default
    if cast is None:
        return value
    try:
        if cast == bool:
            if isinstance(value, str):
                return value.lower() in ('true', '1', 'yes', 'on')
            return bool(value)
        return cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid config value for {key}: {value!r}; using {default!r}")
        return default


@dataclass
class BillingConfig:
    """Monthly bill generator settings."""
    roll_arrears: bool = True
    run_lock_timeout_seconds: int = 3600


@dataclass
class DispatcherSettings:
    """SMS queue flush settings."""
    batch_size: int = 10
    send_delay_seconds: float = 0.2
    max_attempts: int = 3
    claim_timeout_seconds: int = 300


@dataclass
class SmsSettings:
    """Outbound SMS provider settings (Celcom Africa)."""
    provider: str = 'celcom'
    api_url: str = 'https://isms.celcomafrica.com/api/services/sendsms/'
    partner_id: str = ''
    api_key: str = ''
    shortcode: str = ''
    timeout_seconds: int = 15
    pool_maxsize: int = 10

    @property
    def is_configured(self) -> bool:
        return bool(self.partner_id and self.api_key and self.shortcode)


@dataclass
class SlackConfig:
    """Slack alert configuration."""
    enabled: bool = False
    webhook_url: str = ''
    channel: str = '#billing-alerts'
    username: str = 'Billing Scheduler'
    on_success: bool = True


@dataclass
class EmailConfig:
    """Email alert configuration."""
    enabled: bool = False
    smtp_host: str = ''
    smtp_port: int = 587
    smtp_user: str = ''
    smtp_password: str = ''
    from_address: str = ''
    to_addresses: List[str] = field(default_factory=list)


@dataclass
class AlertsConfig:
    """Alert channels configuration."""
    slack: SlackConfig = field(default_factory=SlackConfig)
    email: EmailConfig = field(default_factory=EmailConfig)


@dataclass
class SchedulerConfig:
    """
    Main scheduler configuration.
    Loaded from the YAML config directory; see config/scheduler.yaml.
    """
    # Calendar
    timezone: str = 'Africa/Nairobi'
    billing_hour: int = 9
    billing_minute: int = 0
    flush_interval_minutes: int = 5

    # Daily operator checks
    daily_checks_enabled: bool = True
    lease_check_hour: int = 8
    overdue_check_hour: int = 10
    lease_expiry_days: int = 30

    # APScheduler job defaults
    coalesce: bool = True
    max_instances: int = 1
    misfire_grace_time: int = 3600

    heartbeat_interval_seconds: int = 30
    wait_for_jobs: bool = True

    billing: BillingConfig = field(default_factory=BillingConfig)
    dispatcher: DispatcherSettings = field(default_factory=DispatcherSettings)
    sms: SmsSettings = field(default_factory=SmsSettings)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    # API server
    web_host: str = '0.0.0.0'
    web_port: int = 5000

    @classmethod
    def from_config(cls, app_config: AppConfig = None) -> 'SchedulerConfig':
        """
        Build configuration from loaded YAML sections.

        Args:
            app_config: Loaded configuration (global instance if omitted)
        """
        app_config = app_config or get_config()
        config = cls()

        sched = app_config.scheduler.scheduler
        if sched is not None:
            config.timezone = _section_value(sched, 'timezone', config.timezone, str)
            config.billing_hour = _section_value(sched, 'billing_hour', config.billing_hour, int)
            config.billing_minute = _section_value(sched, 'billing_minute', config.billing_minute, int)
            config.flush_interval_minutes = _section_value(
                sched, 'flush_interval_minutes', config.flush_interval_minutes, int)
            config.heartbeat_interval_seconds = _section_value(
                sched, 'heartbeat_interval_seconds', config.heartbeat_interval_seconds, int)
            config.wait_for_jobs = _section_value(sched, 'wait_for_jobs', config.wait_for_jobs, bool)

            checks = sched.daily_checks
            if checks is not None:
                config.daily_checks_enabled = _section_value(checks, 'enabled', config.daily_checks_enabled, bool)
                config.lease_check_hour = _section_value(checks, 'lease_check_hour', config.lease_check_hour, int)
                config.overdue_check_hour = _section_value(
                    checks, 'overdue_check_hour', config.overdue_check_hour, int)
                config.lease_expiry_days = _section_value(checks, 'lease_expiry_days', config.lease_expiry_days, int)

            defaults = sched.job_defaults
            if defaults is not None:
                config.coalesce = _section_value(defaults, 'coalesce', config.coalesce, bool)
                config.max_instances = _section_value(defaults, 'max_instances', config.max_instances, int)
                config.misfire_grace_time = _section_value(
                    defaults, 'misfire_grace_time', config.misfire_grace_time, int)

            web = sched.web
            if web is not None:
                config.web_host = _section_value(web, 'host', config.web_host, str)
                config.web_port = _section_value(web, 'port', config.web_port, int)

        billing = app_config.billing.billing
        if billing is not None:
            config.billing = BillingConfig(
                roll_arrears=_section_value(billing, 'roll_arrears', True, bool),
                run_lock_timeout_seconds=_section_value(billing, 'run_lock_timeout_seconds', 3600, int),
            )

        notifications = app_config.billing.notifications
        if notifications is not None:
            config.dispatcher = DispatcherSettings(
                batch_size=_section_value(notifications, 'batch_size', 10, int),
                send_delay_seconds=_section_value(notifications, 'send_delay_seconds', 0.2, float),
                max_attempts=_section_value(notifications, 'max_attempts', 3, int),
                claim_timeout_seconds=_section_value(notifications, 'claim_timeout_seconds', 300, int),
            )

        sms = app_config.billing.sms
        if sms is not None:
            defaults = SmsSettings()
            config.sms = SmsSettings(
                provider=_section_value(sms, 'provider', defaults.provider, str),
                api_url=_section_value(sms, 'api_url', defaults.api_url, str),
                partner_id=_section_value(sms, 'partner_id_env', '', str),
                api_key=_section_value(sms, 'api_key_env', '', str),
                shortcode=_section_value(sms, 'shortcode_env', '', str),
                timeout_seconds=_section_value(sms, 'timeout_seconds', defaults.timeout_seconds, int),
                pool_maxsize=_section_value(sms, 'pool_maxsize', defaults.pool_maxsize, int),
            )

        alerts = app_config.scheduler.alerts
        if alerts is not None:
            slack = alerts.slack
            if slack is not None:
                config.alerts.slack = SlackConfig(
                    enabled=_section_value(slack, 'enabled', False, bool),
                    webhook_url=_section_value(slack, 'webhook_url', '', str),
                    channel=_section_value(slack, 'channel', '#billing-alerts', str),
                    username=_section_value(slack, 'username', 'Billing Scheduler', str),
                    on_success=_section_value(slack, 'on_success', True, bool),
                )
            email = alerts.email
            if email is not None:
                config.alerts.email = EmailConfig(
                    enabled=_section_value(email, 'enabled', False, bool),
                    smtp_host=_section_value(email, 'smtp_host', '', str),
                    smtp_port=_section_value(email, 'smtp_port', 587, int),
                    smtp_user=_section_value(email, 'smtp_user', '', str),
                    smtp_password=_section_value(email, 'smtp_password_env', '', str),
                    from_address=_section_value(email, 'from_address', '', str),
                    to_addresses=list(email.get('to_addresses', []) or []),
                )

        return config
