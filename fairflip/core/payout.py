from decimal import Decimal
from typing import Dict, Union

from fairflip.core.exceptions import FlipValidationError

# Default split of the gross payout. 2% house edge: 1.5% fee, 0.5% burned.
HOUSE_FEE_BPS = 150
BURN_BPS = 50
BPS_DENOMINATOR = 10_000

# Even-money bet
BASE_PAYOUT_FACTOR = 2


def multiplier_hundredths(multiplier: Union[Decimal, str, int]) -> int:
    """Convert a multiplier like 1.2 to 120 without going through float."""
    hundredths = Decimal(str(multiplier)) * 100
    if hundredths != hundredths.to_integral_value():
        raise FlipValidationError(f"Streak multiplier {multiplier} has more than 2 decimals")
    if hundredths < 100:
        raise FlipValidationError("Streak multiplier cannot be below 1.0")
    return int(hundredths)


def calculate_payout(
    bet_amount: int,
    is_winner: bool,
    streak_multiplier: Union[Decimal, str, int] = Decimal("1.0"),
    house_fee_bps: int = HOUSE_FEE_BPS,
    burn_bps: int = BURN_BPS,
) -> Dict[str, int]:
    """
    Split the payout of a resolved bet.

    A loss pays nothing: the wager already belongs to the house.
    A win pays bet * 2 * multiplier, from which the house fee and burn are
    taken in basis points. The net payout is the remainder, so
    net_payout + house_fee + burn_amount == gross_payout always holds.

    All amounts are integers in the token's smallest unit.
    """
    if bet_amount < 0:
        raise FlipValidationError("Bet amount cannot be negative")

    if not is_winner:
        return {"gross_payout": 0, "net_payout": 0, "house_fee": 0, "burn_amount": 0}

    gross = bet_amount * BASE_PAYOUT_FACTOR * multiplier_hundredths(streak_multiplier) // 100
    house_fee = gross * house_fee_bps // BPS_DENOMINATOR
    burn_amount = gross * burn_bps // BPS_DENOMINATOR
    net = gross - house_fee - burn_amount

    return {
        "gross_payout": gross,
        "net_payout": net,
        "house_fee": house_fee,
        "burn_amount": burn_amount,
    }
