"""
Tenant billing engine.

- Bill Calculator: dues per stream for one tenant/unit/month (calculator)
- Payment Allocator: arrears -> water -> rent -> advance waterfall (allocator)
- Payment recording with carry-forward (payments)
- Monthly Bill Generator (generator)
- Arrears roll-over and daily operator checks (arrears, checks)

Only the leaf modules are re-exported here; import the generator and
payment service from their modules.
"""

from billing.exceptions import (
    BillingError, NoActiveAllocation, InvalidAmount, DuplicatePayment,
    DeliveryFailure, RunAlreadyInProgress, ConfigurationMissing,
)
from billing.calculator import BillCalculator, BillBreakdown
from billing.allocator import PaymentAllocator, AllocationResult, split_payment

__all__ = [
    'BillingError',
    'NoActiveAllocation',
    'InvalidAmount',
    'DuplicatePayment',
    'DeliveryFailure',
    'RunAlreadyInProgress',
    'ConfigurationMissing',
    'BillCalculator',
    'BillBreakdown',
    'PaymentAllocator',
    'AllocationResult',
    'split_payment',
]
