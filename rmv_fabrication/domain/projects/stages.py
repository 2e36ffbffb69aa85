"""Three-stage payment split of an approved project amount"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from ...config import PAYMENT_STAGE_PERCENTAGES
from ...errors import ValidationError
from ...models import PAYMENT_STAGES

WHOLE_UNIT = Decimal("1")


def validate_percentages(percentages: dict[str, int]) -> dict[str, int]:
    """Percentages must cover every stage, be non-negative and sum to 100"""
    missing = [stage for stage in PAYMENT_STAGES if stage not in percentages]
    if missing:
        raise ValidationError(f"Missing stage percentages: {', '.join(missing)}")
    if any(percentages[stage] < 0 for stage in PAYMENT_STAGES):
        raise ValidationError("Stage percentages cannot be negative")
    if sum(percentages[stage] for stage in PAYMENT_STAGES) != 100:
        raise ValidationError("Stage percentages must sum to 100")
    return {stage: percentages[stage] for stage in PAYMENT_STAGES}


def derive_stage_amounts(
    total: Decimal, percentages: Optional[dict[str, int]] = None
) -> dict[str, Decimal]:
    """Split ``total`` into initial, midpoint and final amounts.

    Initial and midpoint are rounded half-up to whole pesos; final takes the
    remainder so the three always add back to ``total``.
    """
    percentages = validate_percentages(percentages or PAYMENT_STAGE_PERCENTAGES)
    total = Decimal(total)

    initial = (total * percentages["initial"] / 100).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
    midpoint = (total * percentages["midpoint"] / 100).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)
    return {
        "initial": initial,
        "midpoint": midpoint,
        "final": total - initial - midpoint,
    }
