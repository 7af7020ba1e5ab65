"""Per-execution sampling decision."""

import random

from perfbeacon.core.config import ApmConfig

_system_random = random.SystemRandom()


def should_sample(rate: int, rng: random.Random | None = None) -> bool:
    """Decide whether one execution's telemetry is transmitted.

    Args:
        rate: Sample rate in percent. 100 or more always samples, 0 or less
            never does.
        rng: Random source (default: a process-wide SystemRandom).

    Returns:
        True if a uniform draw from [1, 100] is at most ``rate``.
    """
    if rate >= 100:
        return True
    if rate <= 0:
        return False
    source = rng if rng is not None else _system_random
    return source.randint(1, 100) <= rate


class Sampler:
    """Sampling decisions bound to a configuration snapshot."""

    def __init__(self, config: ApmConfig, rng: random.Random | None = None) -> None:
        self.config = config
        self._rng = rng

    def should_sample(self) -> bool:
        return should_sample(self.config.sample_rate, self._rng)
