"""Nomina engine services."""

from nomina_engine.services.benefit_service import SocialBenefitService
from nomina_engine.services.closure_service import ClosureCoordinator, ClosureResult
from nomina_engine.services.period_service import PeriodService, suggest_next_period
from nomina_engine.services.recalculation_service import (
    AdjustmentChange,
    AdjustmentRecalculationPipeline,
    ChangeAction,
)
from nomina_engine.services.retry import RetryPolicy
from nomina_engine.services.state_machine import PeriodStateMachine, PeriodStatus
from nomina_engine.services.version_service import PeriodVersionService, VersionComparison

__all__ = [
    "AdjustmentChange",
    "AdjustmentRecalculationPipeline",
    "ChangeAction",
    "ClosureCoordinator",
    "ClosureResult",
    "PeriodService",
    "PeriodStateMachine",
    "PeriodStatus",
    "PeriodVersionService",
    "RetryPolicy",
    "SocialBenefitService",
    "VersionComparison",
    "suggest_next_period",
]
