"""
Common infrastructure for the tenant billing engine.

Shared by the billing, notification and scheduler packages:
- Unified YAML configuration (config_loader)
- Database engine factory and transactional sessions (engine, session)
- Ledger ORM models (models)
- Month and money helpers (date_utils, data_utils)

Example Usage:
    from common import get_config, create_engine_from_url, SessionManager

    engine = create_engine_from_url(get_database_url())
    sessions = SessionManager(engine)

    with sessions.session_scope() as session:
        allocation = session.query(TenantAllocation).first()
"""

__version__ = '1.0.0'

from .config_loader import AppConfig, ConfigSection, get_config, get_database_url, reload_config
from .engine import create_engine_from_url
from .session import SessionManager
from .models import (
    Base, BaseModel, TimestampMixin,
    Tenant, PropertyUnit, TenantAllocation, WaterBill, Payment,
    SmsQueueItem, AdminSetting, OperatorNotification, BillingRun,
)
from .date_utils import parse_month, format_month, add_months, current_month, utcnow
from .data_utils import to_money, format_amount, ZERO

__all__ = [
    '__version__',
    'AppConfig',
    'ConfigSection',
    'get_config',
    'get_database_url',
    'reload_config',
    'create_engine_from_url',
    'SessionManager',
    'Base',
    'BaseModel',
    'TimestampMixin',
    'Tenant',
    'PropertyUnit',
    'TenantAllocation',
    'WaterBill',
    'Payment',
    'SmsQueueItem',
    'AdminSetting',
    'OperatorNotification',
    'BillingRun',
    'parse_month',
    'format_month',
    'add_months',
    'current_month',
    'utcnow',
    'to_money',
    'format_amount',
    'ZERO',
]
