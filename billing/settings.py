"""
Billing settings read from the admin_settings store.

Missing or invalid values never block billing: they are logged and the
documented default is used instead.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.orm import Session

from common.models import AdminSetting
from billing.exceptions import ConfigurationMissing

logger = logging.getLogger(__name__)

DEFAULT_BILLING_DAY = 28
DEFAULT_PAYBILL = 'YOUR_PAYBILL_HERE'
DEFAULT_COMPANY_NAME = 'Rental Management'

# Days 29-31 do not exist in every month, so a cron trigger on them would skip months
MIN_BILLING_DAY = 1
MAX_BILLING_DAY = 28


@dataclass
class BillingSettings:
    """Settings the billing run and bill notices depend on."""
    billing_day: int = DEFAULT_BILLING_DAY
    paybill_number: str = DEFAULT_PAYBILL
    company_name: str = DEFAULT_COMPANY_NAME

    def to_dict(self) -> Dict[str, object]:
        return {
            'billing_day': self.billing_day,
            'paybill_number': self.paybill_number,
            'company_name': self.company_name,
        }


def _parse_billing_day(raw: Optional[str]) -> int:
    if raw is None or str(raw).strip() == '':
        raise ConfigurationMissing("billing_day is not set")
    try:
        day = int(str(raw).strip())
    except ValueError:
        raise ConfigurationMissing(f"billing_day is not a number: {raw!r}")
    if not MIN_BILLING_DAY <= day <= MAX_BILLING_DAY:
        raise ConfigurationMissing(f"billing_day {day} outside {MIN_BILLING_DAY}-{MAX_BILLING_DAY}")
    return day


def load_billing_settings(session: Session) -> BillingSettings:
    """
    Load billing settings, falling back to defaults for anything missing.

    Args:
        session: Open database session

    Returns:
        BillingSettings
    """
    rows = session.query(AdminSetting).filter(
        AdminSetting.setting_key.in_(['billing_day', 'paybill_number', 'company_name'])
    ).all()
    values = {row.setting_key: row.setting_value for row in rows}

    settings = BillingSettings()

    try:
        settings.billing_day = _parse_billing_day(values.get('billing_day'))
    except ConfigurationMissing as e:
        logger.warning(f"{e.message}; using default billing day {DEFAULT_BILLING_DAY}")

    paybill = (values.get('paybill_number') or '').strip()
    if paybill:
        settings.paybill_number = paybill
    else:
        logger.warning(f"paybill_number is not set; using placeholder {DEFAULT_PAYBILL}")

    company = (values.get('company_name') or '').strip()
    if company:
        settings.company_name = company

    return settings


def save_setting(session: Session, key: str, value: str):
    """Insert or update a single admin setting."""
    row = session.query(AdminSetting).filter_by(setting_key=key).first()
    if row is None:
        session.add(AdminSetting(setting_key=key, setting_value=value))
    else:
        row.setting_value = value
