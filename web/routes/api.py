"""
REST API routes for the billing engine.

Bills, payments, the SMS queue and the scheduler, all under /api.
Billing errors are turned into JSON responses by the app-level handler.
"""

from datetime import datetime

import pytz
from flask import Blueprint, jsonify, request, current_app

from billing.calculator import BillCalculator
from common.date_utils import format_month

api_bp = Blueprint('api', __name__, url_prefix='/api')

UTC = pytz.UTC


def now_utc():
    """Get current time in UTC."""
    return datetime.now(UTC)


def _services():
    return current_app.services


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValueError('Request body must be a JSON object')
    return body


def _required_int(source, key: str) -> int:
    value = source.get(key)
    if value is None or value == '':
        raise ValueError(f'{key} is required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f'{key} must be an integer')


def _month(source, required: bool = False):
    value = source.get('month')
    if not value:
        if required:
            raise ValueError('month is required')
        return None
    return format_month(value)


# =============================================================================
# Health
# =============================================================================

@api_bp.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({
        'status': 'healthy',
        'timestamp': now_utc().isoformat()
    })


# =============================================================================
# Bills
# =============================================================================

@api_bp.route('/bills/generate', methods=['POST'])
def generate_bills():
    """Run the Monthly Bill Generator now (single-flight; 409 when busy)."""
    body = _json_body()
    result = _services().scheduler.trigger_manual_billing_run(_month(body), triggered_by='api')
    return jsonify(result)


@api_bp.route('/bills/preview')
def preview_bill():
    """Current dues for one tenant/unit/month, without side effects."""
    tenant_id = _required_int(request.args, 'tenantId')
    unit_id = _required_int(request.args, 'unitId')
    month = _month(request.args, required=True)

    with _services().sessions.session_scope() as session:
        bill = BillCalculator(session).calculate(tenant_id, unit_id, month)

    return jsonify(bill.to_dict())


@api_bp.route('/billing-runs')
def billing_runs():
    """Recent Monthly Bill Generator runs, newest first."""
    limit = request.args.get('limit', default=20, type=int)
    limit = max(1, min(limit, 200))
    return jsonify({'runs': _services().generator.recent_runs(limit)})


# =============================================================================
# Payments
# =============================================================================

@api_bp.route('/payments/allocate', methods=['POST'])
def allocate_payment():
    """Preview how an amount would be split, without recording it."""
    body = _json_body()
    result = _services().payments.preview_allocation(
        _required_int(body, 'tenantId'),
        _required_int(body, 'unitId'),
        body.get('amount'),
        _month(body, required=True),
    )
    return jsonify(result.to_dict())


@api_bp.route('/payments', methods=['POST'])
def record_payment():
    """Record a completed payment, its carry-forward rows and confirmation SMS."""
    body = _json_body()

    payment_date = body.get('paymentDate')
    if payment_date:
        payment_date = datetime.fromisoformat(payment_date)

    result = _services().payments.record_payment(
        _required_int(body, 'tenantId'),
        _required_int(body, 'unitId'),
        body.get('amount'),
        _month(body, required=True),
        receipt_number=body.get('receiptNumber') or None,
        payment_method=body.get('paymentMethod') or 'mpesa',
        payment_date=payment_date,
    )
    return jsonify(result), 201


# =============================================================================
# Notification queue
# =============================================================================

@api_bp.route('/notifications', methods=['POST'])
def enqueue_notification():
    """Queue an ad-hoc message."""
    body = _json_body()
    item_id = _services().dispatcher.enqueue(
        body.get('recipient'),
        body.get('message'),
        body.get('type') or 'manual',
        billing_month=_month(body),
        tenant_id=body.get('tenantId'),
        unit_id=body.get('unitId'),
    )
    return jsonify({'id': item_id, 'status': 'pending'}), 201


@api_bp.route('/notifications/flush', methods=['POST'])
def flush_notifications():
    body = _json_body()
    limit = body.get('limit')
    result = _services().dispatcher.flush(int(limit) if limit else None)
    return jsonify(result)


@api_bp.route('/notifications/retry', methods=['POST'])
def retry_notifications():
    """Reset failed messages (all, or the given ids) to pending."""
    body = _json_body()
    ids = body.get('ids')
    if ids is not None and not isinstance(ids, list):
        return jsonify({'error': 'ids must be a list'}), 400

    count = _services().dispatcher.retry_failed([int(i) for i in ids] if ids else None)
    return jsonify({'reset': count})


@api_bp.route('/notifications/stats')
def notification_stats():
    return jsonify(_services().dispatcher.queue_stats())


@api_bp.route('/notifications/failed')
def failed_notifications():
    limit = request.args.get('limit', default=50, type=int)
    return jsonify({'items': _services().dispatcher.failed_items(max(1, min(limit, 500)))})


# =============================================================================
# Scheduler
# =============================================================================

@api_bp.route('/scheduler/status')
def scheduler_status():
    return jsonify(_services().scheduler.status())


@api_bp.route('/scheduler/start', methods=['POST'])
def scheduler_start():
    scheduler = _services().scheduler
    if scheduler.is_running:
        return jsonify({'error': 'Scheduler is already running'}), 409
    scheduler.start()
    return jsonify(scheduler.status())


@api_bp.route('/scheduler/stop', methods=['POST'])
def scheduler_stop():
    scheduler = _services().scheduler
    if not scheduler.is_running:
        return jsonify({'error': 'Scheduler is not running'}), 409
    scheduler.stop(wait=False)
    return jsonify(scheduler.status())


@api_bp.route('/scheduler/trigger', methods=['POST'])
def scheduler_trigger():
    """Manual billing run through the scheduler (same guard as the calendar job)."""
    body = _json_body()
    result = _services().scheduler.trigger_manual_billing_run(_month(body))
    return jsonify(result)
