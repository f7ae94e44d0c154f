"""
Billing Scheduler

Drives the billing engine on a calendar:
- Monthly bill generation on the configured billing day
- Fixed-interval SMS queue flush
- Daily lease-expiry and overdue-rent checks
- CLI and API control (start/stop/status/manual trigger)

The engine lives in scheduler.engine; import it from there.
"""

__version__ = '1.0.0'


def get_version():
    """Return the current scheduler version."""
    return __version__


from scheduler.config import SchedulerConfig  # noqa: E402
from scheduler.models import BillingRunLock, SchedulerState  # noqa: E402

__all__ = [
    '__version__',
    'get_version',
    'SchedulerConfig',
    'BillingRunLock',
    'SchedulerState',
]
