"""Pay line builder with per-line rounding."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from nomina_engine.calculators.types import LineCandidate, LineType


class PayLineBuilder:
    """Builds pay slip lines.

    Sign conventions (non-negotiable):
    - EARNING: positive
    - DEDUCTION (employee): negative
    - EMPLOYER_CONTRIBUTION: positive (liability)

    Rounding:
    - Each line is rounded to whole pesos, half-up, when it is created
    - Totals are sums of already-rounded lines
    """

    CURRENCY_UNIT = Decimal("1")

    @staticmethod
    def round_currency(amount: Decimal) -> Decimal:
        """Round amount to the smallest currency unit (half-up)."""
        return amount.quantize(PayLineBuilder.CURRENCY_UNIT, rounding=ROUND_HALF_UP)

    @staticmethod
    def create_earning_line(
        code: str,
        amount: Decimal,
        quantity: Decimal | None = None,
        rate: Decimal | None = None,
        source_adjustment_id: UUID | None = None,
        explanation: str | None = None,
        constitutive: bool = False,
    ) -> LineCandidate:
        """Create an earning line item (positive amount)."""
        return LineCandidate(
            line_type=LineType.EARNING,
            code=code,
            amount=PayLineBuilder.round_currency(abs(amount)),
            quantity=quantity,
            rate=rate,
            source_adjustment_id=source_adjustment_id,
            explanation=explanation,
            constitutive=constitutive,
        )

    @staticmethod
    def create_deduction_line(
        code: str,
        amount: Decimal,
        rate: Decimal | None = None,
        source_adjustment_id: UUID | None = None,
        explanation: str | None = None,
    ) -> LineCandidate:
        """Create an employee deduction line item (negative amount)."""
        return LineCandidate(
            line_type=LineType.DEDUCTION,
            code=code,
            amount=-PayLineBuilder.round_currency(abs(amount)),
            rate=rate,
            source_adjustment_id=source_adjustment_id,
            explanation=explanation,
        )

    @staticmethod
    def create_employer_line(
        code: str,
        base: Decimal,
        rate: Decimal,
        explanation: str | None = None,
    ) -> LineCandidate:
        """Create an employer contribution line (positive amount, liability)."""
        return LineCandidate(
            line_type=LineType.EMPLOYER_CONTRIBUTION,
            code=code,
            amount=PayLineBuilder.round_currency(abs(base * rate)),
            quantity=base,
            rate=rate,
            explanation=explanation,
        )

    @staticmethod
    def calculate_gross_from_lines(lines: list[LineCandidate]) -> Decimal:
        """GROSS = sum(EARNING)."""
        return sum(
            (line.amount for line in lines if line.line_type == LineType.EARNING),
            Decimal("0"),
        )
