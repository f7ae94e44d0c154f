"""
Outbound SMS channels.

A channel delivers one message to one recipient and either returns a
DeliveryReceipt or raises DeliveryFailure. Timeouts and transport errors
are converted to DeliveryFailure so the dispatcher treats them like any
other rejected send.
"""

import logging
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from billing.exceptions import DeliveryFailure
from notifications.http_client import HTTPClient
from scheduler.config import SmsSettings

logger = logging.getLogger(__name__)

_KENYAN_MOBILE = re.compile(r'^254(7\d{8}|1\d{8}|0\d{8})$')

# Celcom Africa response codes
CELCOM_ERROR_CODES = {
    200: 'Success',
    1001: 'Invalid sender ID - Check your shortcode is registered with Celcom',
    1002: 'Network not allowed',
    1003: 'Invalid mobile number - Check phone number format',
    1004: 'Low bulk credits - Please top up your Celcom account',
    1005: 'System error - Try again later',
    1006: 'Invalid credentials - Check your Partner ID and API Key',
    1007: 'System error - Try again later',
    1008: 'No Delivery Report available',
    1009: 'Unsupported data type',
    1010: 'Unsupported request type',
    4090: 'Internal Error - Try again after 5 minutes',
    4091: 'No Partner ID is set',
    4092: 'No API Key provided',
    4093: 'Details not found',
}


def normalize_phone(phone: Optional[str]) -> str:
    """
    Convert a Kenyan phone number to 254XXXXXXXXX.

    Accepts 07XXXXXXXX, 7XXXXXXXX, 1XXXXXXXX, 254XXXXXXXXX and +254XXXXXXXXX.
    Other shapes are returned as bare digits.

    Raises:
        ValueError: If phone is empty
    """
    if not phone:
        raise ValueError("Phone number is required")

    digits = re.sub(r'\D', '', str(phone))

    if digits.startswith('0') and len(digits) == 10:
        return '254' + digits[1:]
    if digits.startswith('254') and len(digits) == 12:
        return digits
    if digits[:1] in ('7', '1') and len(digits) == 9:
        return '254' + digits

    logger.warning(f"Unusual phone number format: {digits}")
    return digits


def is_valid_phone(phone: Optional[str]) -> bool:
    try:
        return bool(_KENYAN_MOBILE.match(normalize_phone(phone)))
    except ValueError:
        return False


def describe_celcom_code(code) -> str:
    try:
        return CELCOM_ERROR_CODES.get(int(code), f"Unknown error (code: {code})")
    except (TypeError, ValueError):
        return f"Unknown error (code: {code})"


@dataclass
class DeliveryReceipt:
    """Confirmation of a successful send."""
    message_id: Optional[str] = None
    simulated: bool = False


class OutboundChannel(ABC):
    """Base class for outbound message channels."""

    @abstractmethod
    def send(self, recipient: str, message: str) -> DeliveryReceipt:
        """
        Deliver one message.

        Raises:
            DeliveryFailure: If the provider rejects the message or cannot be reached
        """
        pass

    def close(self):
        pass


class LoggingChannel(OutboundChannel):
    """Development channel: logs the message and reports a simulated success."""

    def send(self, recipient: str, message: str) -> DeliveryReceipt:
        if not is_valid_phone(recipient):
            raise DeliveryFailure(f"Invalid phone number format: {recipient}", provider_code=1003)
        logger.info(f"[simulated SMS] to {normalize_phone(recipient)}: {message[:60]}")
        return DeliveryReceipt(message_id=f"simulated-{uuid.uuid4().hex[:12]}", simulated=True)


class CelcomSmsChannel(OutboundChannel):
    """Celcom Africa bulk SMS API."""

    def __init__(self, settings: SmsSettings, http_client: HTTPClient = None):
        self.settings = settings
        self.http = http_client or HTTPClient(
            pool_maxsize=settings.pool_maxsize,
            default_timeout=settings.timeout_seconds,
        )
        logger.info(f"Celcom SMS channel initialized (shortcode={settings.shortcode}, url={settings.api_url})")

    def send(self, recipient: str, message: str) -> DeliveryReceipt:
        if not is_valid_phone(recipient):
            raise DeliveryFailure(f"Invalid phone number format: {recipient}", provider_code=1003)

        mobile = normalize_phone(recipient)
        payload = {
            'partnerID': self.settings.partner_id,
            'apikey': self.settings.api_key,
            'mobile': mobile,
            'message': message,
            'shortcode': self.settings.shortcode,
            'pass_type': 'plain',
        }

        try:
            response = self.http.post(
                self.settings.api_url,
                json=payload,
                headers={'Content-Type': 'application/json'},
                timeout=self.settings.timeout_seconds,
            )
            data = response.json()
        except requests.exceptions.Timeout:
            raise DeliveryFailure(f"SMS provider timed out after {self.settings.timeout_seconds}s")
        except requests.exceptions.RequestException as e:
            raise DeliveryFailure(f"SMS provider request failed: {e}")
        except ValueError:
            raise DeliveryFailure("SMS provider returned a non-JSON response")

        responses = data.get('responses') if isinstance(data, dict) else None
        if not responses:
            raise DeliveryFailure(f"Unexpected response format from SMS provider: {data!r}")

        first = responses[0]
        # The provider misspells the key on some responses
        code = first.get('response-code', first.get('respose-code'))

        if str(code) != '200':
            raise DeliveryFailure(f"SMS failed: {describe_celcom_code(code)}", provider_code=code)

        message_id = first.get('messageid')
        logger.info(f"SMS sent to {mobile} (message id {message_id})")
        return DeliveryReceipt(message_id=str(message_id) if message_id is not None else None)

    def close(self):
        self.http.close()


def create_channel(settings: SmsSettings) -> OutboundChannel:
    """Celcom when credentials are present, otherwise the logging channel."""
    if settings.is_configured:
        return CelcomSmsChannel(settings)
    logger.warning("SMS credentials not configured; messages will be logged and marked sent")
    return LoggingChannel()
