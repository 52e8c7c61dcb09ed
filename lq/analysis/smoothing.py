"""
Exponential moving averages for the per-channel link scores.
"""

from __future__ import annotations

from dataclasses import dataclass, field

CHANNELS = ("tx", "rx", "combined")


@dataclass
class Ema:
    """
    Single exponential moving average accumulator.

    Parameters
    ----------
    alpha : float
        Weight of the newest sample.
    seed : float
        Starting value, restored on reset.
    """
    alpha: float = 0.4
    seed: float = 100.0
    value: float = field(init=False)

    def __post_init__(self) -> None:
        self.value = self.seed

    def update(self, raw: float) -> float:
        self.value = self.alpha * raw + (1.0 - self.alpha) * self.value
        return self.value

    def reset(self) -> None:
        self.value = self.seed


class SmoothingState:
    """
    One EMA per channel (tx, rx, combined), kept for the lifetime of a peer.
    """
    def __init__(self, alpha: float = 0.4, seed: float = 100.0) -> None:
        self.alpha = alpha
        self.seed = seed
        self.emas: dict[str, Ema] = {name: Ema(alpha, seed) for name in CHANNELS}

    def update(self, channel: str, raw: float) -> float:
        return self.emas[channel].update(raw)

    def value(self, channel: str) -> float:
        return self.emas[channel].value

    def reset(self) -> None:
        for ema in self.emas.values():
            ema.reset()
