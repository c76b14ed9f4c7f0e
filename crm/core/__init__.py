"""
Core follow-up logic: business calendar, countdown clock, actions and sweep.
"""

from crm.core.business_calendar import add_business_days
from crm.core.clock import ClockState, FollowUpClock
from crm.core.followups import FollowUpService
from crm.core.scheduler import FollowUpScheduler, NotifiedSet, SweepResult

__all__ = [
    'add_business_days',
    'ClockState',
    'FollowUpClock',
    'FollowUpService',
    'FollowUpScheduler',
    'NotifiedSet',
    'SweepResult'
]
