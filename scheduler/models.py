"""
SQLAlchemy models for scheduler state and billing run locking.
Shares the declarative Base with common/models.py so init_db creates everything.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, CheckConstraint

from common.date_utils import utcnow
from common.models import Base


class BillingRunLock(Base):
    """
    Singleton row guarding the Monthly Bill Generator.

    Acquired with a conditional UPDATE (locked = false OR locked_at stale),
    so at most one run executes across every process sharing the database.
    """
    __tablename__ = 'billing_run_lock'

    id = Column(Integer, primary_key=True, default=1)
    locked = Column(Boolean, nullable=False, default=False)
    holder = Column(String(200))
    target_month = Column(String(7))
    locked_at = Column(DateTime)

    __table_args__ = (
        CheckConstraint('id = 1', name='chk_billing_lock_singleton'),
    )

    def __repr__(self):
        return f"<BillingRunLock(locked={self.locked}, holder={self.holder})>"

    def to_dict(self) -> dict:
        return {
            'locked': self.locked,
            'holder': self.holder,
            'target_month': self.target_month,
            'locked_at': self.locked_at.isoformat() if self.locked_at else None,
        }


class SchedulerState(Base):
    """
    Singleton table for scheduler daemon state.
    Used for health checks and the CLI status command.
    """
    __tablename__ = 'scheduler_state'

    id = Column(Integer, primary_key=True, default=1)
    status = Column(String(20), nullable=False, default='stopped')
    started_at = Column(DateTime)
    host_name = Column(String(100))
    pid = Column(Integer)
    billing_day = Column(Integer)
    last_billing_run_at = Column(DateTime)
    last_flush_at = Column(DateTime)
    last_heartbeat = Column(DateTime)
    version = Column(String(20))

    __table_args__ = (
        CheckConstraint('id = 1', name='chk_singleton'),
        CheckConstraint(
            "status IN ('running', 'stopped', 'starting', 'stopping')",
            name='chk_scheduler_status'
        ),
    )

    def __repr__(self):
        return f"<SchedulerState(status={self.status}, pid={self.pid})>"

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            'status': self.status,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'host_name': self.host_name,
            'pid': self.pid,
            'billing_day': self.billing_day,
            'last_billing_run_at': self.last_billing_run_at.isoformat() if self.last_billing_run_at else None,
            'last_flush_at': self.last_flush_at.isoformat() if self.last_flush_at else None,
            'last_heartbeat': self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            'version': self.version,
        }
