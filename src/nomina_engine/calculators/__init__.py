"""Payroll calculation modules."""

from nomina_engine.calculators.benefits import (
    BenefitAccrual,
    BenefitType,
    Periodicity,
    SocialBenefitCalculator,
    infer_periodicity,
)
from nomina_engine.calculators.disability import DisabilityOrigin, DisabilityPolicy
from nomina_engine.calculators.engine import CompensationCalculator
from nomina_engine.calculators.ibc import constitutive_adjustments_total, resolve_ibc
from nomina_engine.calculators.legal_parameters import (
    DEFAULT_LEGAL_PARAMETERS,
    LegalParameterSet,
    LegalParameterTable,
    SolidarityBracket,
)
from nomina_engine.calculators.line_builder import PayLineBuilder
from nomina_engine.calculators.types import (
    AdjustmentCategory,
    AdjustmentInput,
    AdjustmentType,
    EmployeeInput,
    LineCandidate,
    LineType,
    PayBreakdown,
    PeriodType,
)

__all__ = [
    "AdjustmentCategory",
    "AdjustmentInput",
    "AdjustmentType",
    "BenefitAccrual",
    "BenefitType",
    "CompensationCalculator",
    "DEFAULT_LEGAL_PARAMETERS",
    "DisabilityOrigin",
    "DisabilityPolicy",
    "EmployeeInput",
    "LegalParameterSet",
    "LegalParameterTable",
    "LineCandidate",
    "LineType",
    "PayBreakdown",
    "PayLineBuilder",
    "Periodicity",
    "PeriodType",
    "SocialBenefitCalculator",
    "SolidarityBracket",
    "constitutive_adjustments_total",
    "infer_periodicity",
    "resolve_ibc",
]
