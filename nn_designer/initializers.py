"""
Weight Initializers

Keras-style kernel initializers selectable through the `kernelInitializer`
parameter of dense, output and conv2d layers. Each initializer receives the
weight shape plus its fan-in and fan-out and draws from numpy's global random
state, so `np.random.seed` makes model construction reproducible.

Reference:
    - "Understanding the difficulty of training deep feedforward neural
      networks" (Glorot & Bengio, 2010)
    - "Delving Deep into Rectifiers" (He et al., 2015)
"""

from typing import Callable, Dict, Tuple

import numpy as np

Initializer = Callable[[Tuple[int, ...], int, int], np.ndarray]

# Defaults used by Keras for the plain random initializers
RANDOM_MIN = -0.05
RANDOM_MAX = 0.05
RANDOM_STDDEV = 0.05


def _truncated_normal(shape: Tuple[int, ...], stddev: float) -> np.ndarray:
    """Normal samples redrawn until they fall within two standard deviations."""
    values = np.random.randn(*shape)
    outside = np.abs(values) > 2.0
    while np.any(outside):
        values[outside] = np.random.randn(int(np.sum(outside)))
        outside = np.abs(values) > 2.0
    return values * stddev


def glorot_uniform(shape, fan_in, fan_out):
    limit = np.sqrt(6.0 / (fan_in + fan_out))
    return np.random.uniform(-limit, limit, size=shape)


def glorot_normal(shape, fan_in, fan_out):
    return _truncated_normal(shape, np.sqrt(2.0 / (fan_in + fan_out)))


def he_uniform(shape, fan_in, fan_out):
    limit = np.sqrt(6.0 / fan_in)
    return np.random.uniform(-limit, limit, size=shape)


def he_normal(shape, fan_in, fan_out):
    return _truncated_normal(shape, np.sqrt(2.0 / fan_in))


def lecun_uniform(shape, fan_in, fan_out):
    limit = np.sqrt(3.0 / fan_in)
    return np.random.uniform(-limit, limit, size=shape)


def lecun_normal(shape, fan_in, fan_out):
    return _truncated_normal(shape, np.sqrt(1.0 / fan_in))


def zeros(shape, fan_in, fan_out):
    return np.zeros(shape)


def ones(shape, fan_in, fan_out):
    return np.ones(shape)


def random_uniform(shape, fan_in, fan_out):
    return np.random.uniform(RANDOM_MIN, RANDOM_MAX, size=shape)


def random_normal(shape, fan_in, fan_out):
    return np.random.randn(*shape) * RANDOM_STDDEV


def truncated_normal(shape, fan_in, fan_out):
    return _truncated_normal(shape, RANDOM_STDDEV)


INITIALIZERS: Dict[str, Initializer] = {
    "glorotUniform": glorot_uniform,
    "glorotNormal": glorot_normal,
    "heUniform": he_uniform,
    "heNormal": he_normal,
    "leCunUniform": lecun_uniform,
    "leCunNormal": lecun_normal,
    "zeros": zeros,
    "ones": ones,
    "randomUniform": random_uniform,
    "randomNormal": random_normal,
    "truncatedNormal": truncated_normal,
}


def initialize(
    name: str, shape: Tuple[int, ...], fan_in: int, fan_out: int
) -> np.ndarray:
    """
    Create a weight array with the named initializer.

    Args:
        name: Initializer name, e.g. "glorotUniform"
        shape: Shape of the weight array
        fan_in: Number of input units feeding each output
        fan_out: Number of output units each input feeds

    Raises:
        ValueError: If the initializer name is unknown
    """
    if name not in INITIALIZERS:
        raise ValueError(
            f"Unknown initializer: {name}. Expected one of: {', '.join(INITIALIZERS)}"
        )
    return INITIALIZERS[name](tuple(shape), fan_in, fan_out).astype(np.float64)
