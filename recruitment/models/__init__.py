"""Recruitment portal database models."""

from .base import Base
from .cycle import RecruitmentCycle
from .application import Application, ApplicationQuestionSet
from .phase import PhaseConfig, PhaseReview, RankingGeneration, RankedApplicant, PhaseDecision
from .slot import RecruitmentSlot, SlotBooking
from .event import RecruitmentEvent, EventRsvp
from .notification import NotificationDispatch
from .activity import Activity

__all__ = [
    "Base",
    "RecruitmentCycle",
    "Application",
    "ApplicationQuestionSet",
    "PhaseConfig",
    "PhaseReview",
    "RankingGeneration",
    "RankedApplicant",
    "PhaseDecision",
    "RecruitmentSlot",
    "SlotBooking",
    "RecruitmentEvent",
    "EventRsvp",
    "NotificationDispatch",
    "Activity",
]
