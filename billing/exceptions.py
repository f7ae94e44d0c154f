"""
Billing error taxonomy.

Each error carries an HTTP-style status code so the API layer can turn it
into a JSON response without knowing the individual types.
"""

from typing import Any, Dict, Optional


class BillingError(Exception):
    """Base class for billing engine errors."""
    status_code = 400
    code = 'billing_error'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class NoActiveAllocation(BillingError):
    """Tenant/unit pair has no active lease."""
    status_code = 404
    code = 'no_active_allocation'

    def __init__(self, tenant_id: int, unit_id: int):
        super().__init__(
            f"No active tenant allocation found for tenant {tenant_id}, unit {unit_id}",
            {'tenant_id': tenant_id, 'unit_id': unit_id},
        )
        self.tenant_id = tenant_id
        self.unit_id = unit_id


class InvalidAmount(BillingError):
    """Payment amount is missing, non-numeric or not positive."""
    code = 'invalid_amount'


class DuplicatePayment(BillingError):
    """A payment with the same receipt number has already been recorded."""
    status_code = 409
    code = 'duplicate_payment'


class DeliveryFailure(BillingError):
    """Outbound channel rejected or failed to deliver a message."""
    status_code = 502
    code = 'delivery_failure'

    def __init__(self, message: str, provider_code: Any = None):
        super().__init__(message, {'provider_code': provider_code} if provider_code is not None else None)
        self.provider_code = provider_code


class RunAlreadyInProgress(BillingError):
    """A billing run is already executing; the new run is rejected, not queued."""
    status_code = 409
    code = 'run_already_in_progress'


class ConfigurationMissing(BillingError):
    """A setting is unset or invalid; callers fall back to documented defaults."""
    code = 'configuration_missing'
