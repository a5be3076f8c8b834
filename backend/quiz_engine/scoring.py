import math

MAX_TIME_BONUS = 0.5


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (12.5 -> 13)."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def calculate_points(base_points: int, correct: bool, time_taken: float, time_limit: float) -> int:
    """Points awarded for one answer.

    A wrong answer earns nothing. A correct one earns ``base_points`` plus a
    speed bonus of up to 50%, shrinking linearly to zero at ``time_limit``.
    """
    if not correct:
        return 0

    time_taken = max(0.0, time_taken)
    bonus_fraction = 0.0
    if time_limit > 0:
        bonus_fraction = max(0.0, (time_limit - time_taken) / time_limit) * MAX_TIME_BONUS

    return round_half_up(base_points * (1 + bonus_fraction))
