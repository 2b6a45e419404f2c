"""Probability distributions used for returns, inflation, lifespans and event timing."""

from __future__ import annotations

from dataclasses import dataclass
import random

DISTRIBUTION_TYPES = {"fixed", "uniform", "normal"}


@dataclass(slots=True, frozen=True)
class Distribution:
    type: str
    value: float = 0.0
    lower: float = 0.0
    upper: float = 0.0
    mean: float = 0.0
    stdev: float = 0.0

    @classmethod
    def fixed(cls, value: float) -> "Distribution":
        return cls(type="fixed", value=float(value))

    @classmethod
    def uniform(cls, lower: float, upper: float) -> "Distribution":
        return cls(type="uniform", lower=float(lower), upper=float(upper))

    @classmethod
    def normal(cls, mean: float, stdev: float) -> "Distribution":
        return cls(type="normal", mean=float(mean), stdev=float(stdev))


def distribution_errors(dist: Distribution, path: str) -> list[str]:
    """Configuration problems for one distribution; empty when it can be sampled."""
    if dist.type not in DISTRIBUTION_TYPES:
        return [f"{path}.type: invalid value '{dist.type}'"]
    if dist.type == "uniform" and dist.lower > dist.upper:
        return [f"{path}: uniform lower ({dist.lower:g}) must be <= upper ({dist.upper:g})"]
    if dist.type == "normal" and dist.stdev < 0:
        return [f"{path}.stdev: must be >= 0"]
    return []


def sample(dist: Distribution, rng: random.Random) -> float:
    if dist.type == "fixed":
        return dist.value
    if dist.type == "uniform":
        return rng.uniform(dist.lower, dist.upper)
    if dist.type == "normal":
        if dist.stdev == 0:
            return dist.mean
        return rng.gauss(dist.mean, dist.stdev)
    raise ValueError(f"unknown distribution type '{dist.type}'")
