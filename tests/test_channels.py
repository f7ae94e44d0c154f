"""Tests for phone normalization and the outbound SMS channels."""

import pytest
import requests

from billing.exceptions import DeliveryFailure
from notifications.channels import (
    CelcomSmsChannel, LoggingChannel, create_channel, describe_celcom_code, is_valid_phone, normalize_phone,
)
from scheduler.config import SmsSettings


class FakeResponse:
    def __init__(self, data=None, invalid_json=False):
        self.data = data
        self.invalid_json = invalid_json

    def json(self):
        if self.invalid_json:
            raise ValueError("No JSON object could be decoded")
        return self.data


class FakeHTTP:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []
        self.closed = False

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


@pytest.fixture
def settings():
    return SmsSettings(partner_id='1234', api_key='secret', shortcode='ACME', timeout_seconds=7)


@pytest.mark.parametrize('raw, expected', [
    ('0712345678', '254712345678'),
    ('712345678', '254712345678'),
    ('110345678', '254110345678'),
    ('254712345678', '254712345678'),
    ('+254 712 345 678', '254712345678'),
    ('0712-345-678', '254712345678'),
])
def test_normalize_kenyan_numbers(raw, expected):
    assert normalize_phone(raw) == expected


def test_normalize_requires_a_value():
    with pytest.raises(ValueError):
        normalize_phone('')


def test_unusual_numbers_returned_as_digits():
    assert normalize_phone('+44 20 7946 0958') == '442079460958'
    assert is_valid_phone('+44 20 7946 0958') is False
    assert is_valid_phone(None) is False
    assert is_valid_phone('0712345678') is True


def test_describe_known_and_unknown_codes():
    assert describe_celcom_code(1004).startswith('Low bulk credits')
    assert describe_celcom_code('1006').startswith('Invalid credentials')
    assert describe_celcom_code('abc') == 'Unknown error (code: abc)'


def test_logging_channel_simulates_success():
    receipt = LoggingChannel().send('0712345678', 'Hello')

    assert receipt.simulated is True
    assert receipt.message_id.startswith('simulated-')


def test_logging_channel_rejects_invalid_numbers():
    with pytest.raises(DeliveryFailure) as exc_info:
        LoggingChannel().send('12345', 'Hello')

    assert exc_info.value.provider_code == 1003


def test_celcom_success(settings):
    http = FakeHTTP(FakeResponse({'responses': [{'response-code': 200, 'messageid': 987654}]}))
    channel = CelcomSmsChannel(settings, http_client=http)

    receipt = channel.send('0712345678', 'Your bill')

    assert receipt.message_id == '987654'
    assert receipt.simulated is False
    url, kwargs = http.requests[0]
    assert url == settings.api_url
    assert kwargs['timeout'] == 7
    assert kwargs['json'] == {
        'partnerID': '1234',
        'apikey': 'secret',
        'mobile': '254712345678',
        'message': 'Your bill',
        'shortcode': 'ACME',
        'pass_type': 'plain',
    }


def test_celcom_accepts_misspelled_response_key(settings):
    http = FakeHTTP(FakeResponse({'responses': [{'respose-code': '200', 'messageid': 'abc'}]}))

    receipt = CelcomSmsChannel(settings, http_client=http).send('0712345678', 'Hi')

    assert receipt.message_id == 'abc'


def test_celcom_error_code_raises(settings):
    http = FakeHTTP(FakeResponse({'responses': [{'response-code': 1004}]}))

    with pytest.raises(DeliveryFailure) as exc_info:
        CelcomSmsChannel(settings, http_client=http).send('0712345678', 'Hi')

    assert exc_info.value.provider_code == 1004
    assert 'Low bulk credits' in exc_info.value.message


@pytest.mark.parametrize('error, text', [
    (requests.exceptions.Timeout("read timed out"), 'timed out after 7s'),
    (requests.exceptions.ConnectionError("refused"), 'request failed'),
])
def test_celcom_transport_errors_become_delivery_failures(settings, error, text):
    http = FakeHTTP(error=error)

    with pytest.raises(DeliveryFailure) as exc_info:
        CelcomSmsChannel(settings, http_client=http).send('0712345678', 'Hi')

    assert text in exc_info.value.message


@pytest.mark.parametrize('response', [
    FakeResponse(invalid_json=True),
    FakeResponse({'status': 'ok'}),
    FakeResponse({'responses': []}),
])
def test_celcom_malformed_responses_raise(settings, response):
    with pytest.raises(DeliveryFailure):
        CelcomSmsChannel(settings, http_client=FakeHTTP(response)).send('0712345678', 'Hi')


def test_celcom_rejects_invalid_number_without_calling_provider(settings):
    http = FakeHTTP(FakeResponse({'responses': [{'response-code': 200}]}))

    with pytest.raises(DeliveryFailure):
        CelcomSmsChannel(settings, http_client=http).send('999', 'Hi')

    assert http.requests == []


def test_celcom_close_releases_http_session(settings):
    http = FakeHTTP()
    CelcomSmsChannel(settings, http_client=http).close()
    assert http.closed is True


def test_create_channel_without_credentials_logs_only():
    assert isinstance(create_channel(SmsSettings()), LoggingChannel)


def test_create_channel_with_credentials_uses_celcom(settings):
    channel = create_channel(settings)
    try:
        assert isinstance(channel, CelcomSmsChannel)
    finally:
        channel.close()
