import math

import config


def score(elapsed_seconds: float) -> int:
    """Points for a correct answer given `elapsed_seconds` since the song's start.

    Decays linearly from MAX_SCORE by DECAY_RATE per second and never drops
    below FLOOR_SCORE. Answers that land before the start time count as instant.
    """
    elapsed = max(0.0, elapsed_seconds)
    return max(config.FLOOR_SCORE, math.floor(config.MAX_SCORE - elapsed * config.DECAY_RATE))


def is_correct(submitted: str, correct_answer: str) -> bool:
    """Lenient match: the normalized answer only has to appear inside the submission."""
    expected = correct_answer.strip().lower()
    if not expected:
        return False
    return expected in submitted.strip().lower()
