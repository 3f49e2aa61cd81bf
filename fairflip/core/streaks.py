from decimal import Decimal

# consecutive wins -> payout multiplier. Changing these numbers changes the
# house edge: the expected return of every streak level must be re-derived.
STREAK_MULTIPLIERS = {
    0: Decimal("1.0"),
    1: Decimal("1.0"),
    2: Decimal("1.2"),
    3: Decimal("1.5"),
    4: Decimal("2.0"),
    5: Decimal("3.0"),
}
MAX_STREAK_MULTIPLIER = Decimal("5.0")


def streak_multiplier(consecutive_wins: int) -> Decimal:
    """Multiplier applied to a bet placed at the given streak level."""
    if consecutive_wins < 0:
        raise ValueError("consecutive_wins cannot be negative")
    return STREAK_MULTIPLIERS.get(consecutive_wins, MAX_STREAK_MULTIPLIER)
