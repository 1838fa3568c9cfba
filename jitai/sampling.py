"""
Random variate sampling for Thompson Sampling.

Beta draws are built from two Gamma draws; Gamma draws use Marsaglia and
Tsang's squeeze method with Box-Muller normals. All randomness comes from an
injected numpy Generator so selections are reproducible under a fixed seed.
"""

import math
from typing import Optional

import numpy as np

from jitai.config_loader import get_section
from jitai.models import MIN_BETA_PARAMETER

# Floor for non-positive Gamma/Beta shapes
MIN_SHAPE = get_section("intervention_engine").get("min_shape", MIN_BETA_PARAMETER)


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create a generator for intervention selection. None seeds from OS entropy."""
    return np.random.default_rng(seed)


def _uniform(rng: np.random.Generator) -> float:
    # Generator.random() is on [0, 1); flip it so logs and powers stay finite
    return 1.0 - float(rng.random())


def gaussian_sample(rng: np.random.Generator) -> float:
    """Standard normal variate via the Box-Muller transform."""
    u1 = _uniform(rng)
    u2 = _uniform(rng)
    return math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)


def gamma_sample(shape: float, rng: np.random.Generator) -> float:
    """Gamma(shape, 1) variate."""
    if shape <= 0:
        shape = MIN_SHAPE

    if shape < 1:
        return gamma_sample(shape + 1.0, rng) * _uniform(rng) ** (1.0 / shape)

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)

    while True:
        x = gaussian_sample(rng)
        v = 1.0 + c * x
        if v <= 0:
            continue

        v = v * v * v
        u = _uniform(rng)

        if u < 1.0 - 0.0331 * x ** 4:
            return d * v
        if math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v


def beta_sample(alpha: float, beta: float, rng: np.random.Generator) -> float:
    """Beta(alpha, beta) variate as X / (X + Y) with independent Gamma draws."""
    if alpha <= 0:
        alpha = MIN_SHAPE
    if beta <= 0:
        beta = MIN_SHAPE

    x = gamma_sample(alpha, rng)
    y = gamma_sample(beta, rng)
    if x + y == 0.0:
        # Both draws underflowed (tiny shapes); fall back to the prior mean
        return alpha / (alpha + beta)
    return x / (x + y)
