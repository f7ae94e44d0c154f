"""
Outbound notifications: tenant SMS queue and operator alerts.
"""

from notifications.alert_manager import AlertManager, AlertContext, AlertChannel
from notifications.channels import (
    OutboundChannel, DeliveryReceipt, CelcomSmsChannel, LoggingChannel,
    create_channel, normalize_phone, is_valid_phone,
)
from notifications.dispatcher import NotificationDispatcher, MAX_ATTEMPTS

__all__ = [
    'AlertManager',
    'AlertContext',
    'AlertChannel',
    'OutboundChannel',
    'DeliveryReceipt',
    'CelcomSmsChannel',
    'LoggingChannel',
    'create_channel',
    'normalize_phone',
    'is_valid_phone',
    'NotificationDispatcher',
    'MAX_ATTEMPTS',
]
