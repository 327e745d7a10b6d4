"""Coarse 0-100 health score for a usage or pressure score."""

# (exceeds, penalty) checked high to low; first match only
PENALTY_TIERS: tuple[tuple[float, float], ...] = ((90.0, 40.0), (70.0, 25.0), (50.0, 15.0))
BONUS_BELOW = 30.0
BONUS = 10.0


def quality_score(score: float) -> float:
    """Map a usage/pressure score onto a health score.

    Starts at 100, subtracts the penalty of the highest threshold the score
    exceeds, adds a bonus for low scores, and clamps to [0, 100].
    """
    quality = 100.0
    for threshold, penalty in PENALTY_TIERS:
        if score > threshold:
            quality -= penalty
            break
    if score < BONUS_BELOW:
        quality += BONUS
    return max(0.0, min(100.0, quality))
