"""
Activation Functions for Designer Layers

Element-wise activations selectable on dense, output and conv2d layers, each
paired with a backward function so compiled models can be trained without an
autodiff engine.

Every backward function has the signature backward(upstream_gradient, x),
where x is the *pre-activation* input that was passed to the forward function.

Functions:
    softmax, sigmoid, tanh, relu, gelu, elu, selu, softplus, softsign,
    swish, mish, linear: Forward activations
    *_backward: Matching gradient functions
    get_activation: Look up a (forward, backward) pair by name

Constants:
    ACTIVATIONS: Mapping of activation name -> (forward, backward)
"""

from typing import Callable, Dict, Tuple

import numpy as np

ActivationPair = Tuple[
    Callable[[np.ndarray], np.ndarray],
    Callable[[np.ndarray, np.ndarray], np.ndarray],
]

SELU_ALPHA = 1.6732632423543772
SELU_SCALE = 1.0507009873554805


def softmax(logits: np.ndarray, axis: int = -1) -> np.ndarray:
    """
    Convert logits into a probability distribution along an axis.

    The maximum is subtracted before exponentiation so large logits cannot
    overflow; the result is unchanged because the shift cancels in the ratio.

    Args:
        logits: Input array of any shape
        axis: Axis that should sum to 1 (default: last)

    Returns:
        probabilities: Same shape as logits

    Example:
        >>> softmax(np.array([1.0, 2.0, 3.0]))
        array([0.090, 0.245, 0.665])
    """
    shifted = logits - np.max(logits, axis=axis, keepdims=True)
    exponentials = np.exp(shifted)
    return exponentials / np.sum(exponentials, axis=axis, keepdims=True)


def softmax_backward(
    upstream_gradient: np.ndarray, softmax_output: np.ndarray
) -> np.ndarray:
    """
    Gradient of softmax given its *output*.

    Uses the vector form of the Jacobian product:
        d_x = s * (upstream - sum(upstream * s))

    Args:
        upstream_gradient: Gradient w.r.t. the softmax output
        softmax_output: Result of the forward softmax

    Returns:
        Gradient w.r.t. the logits
    """
    weighted_sum = np.sum(upstream_gradient * softmax_output, axis=-1, keepdims=True)
    return softmax_output * (upstream_gradient - weighted_sum)


def _softmax_from_input(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return softmax_backward(upstream_gradient, softmax(x))


def linear(x: np.ndarray) -> np.ndarray:
    """Identity activation."""
    return x


def linear_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return upstream_gradient


def relu(x: np.ndarray) -> np.ndarray:
    """
    ReLU(x) = max(0, x)

    Example:
        >>> relu(np.array([-2.0, 0.0, 2.0]))
        array([0., 0., 2.])
    """
    return np.maximum(0, x)


def relu_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    """Gradient of ReLU; 0 is used as the subgradient at x == 0."""
    return upstream_gradient * (x > 0).astype(np.float64)


def sigmoid(x: np.ndarray) -> np.ndarray:
    """
    Logistic sigmoid, 1 / (1 + exp(-x)).

    Written through tanh so that large negative inputs do not overflow exp().
    """
    return 0.5 * (1.0 + np.tanh(0.5 * x))


def sigmoid_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return upstream_gradient * s * (1.0 - s)


def tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def tanh_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return upstream_gradient * (1.0 - np.tanh(x) ** 2)


def gelu(x: np.ndarray) -> np.ndarray:
    """
    GELU using the tanh approximation:
        0.5 * x * (1 + tanh(sqrt(2/pi) * (x + 0.044715 * x^3)))

    Reference:
        "Gaussian Error Linear Units (GELUs)" (Hendrycks & Gimpel, 2016)
    """
    inner = np.sqrt(2.0 / np.pi) * (x + 0.044715 * np.power(x, 3))
    return 0.5 * x * (1.0 + np.tanh(inner))


def gelu_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    """
    Gradient of the tanh-approximated GELU.

        d/dx = 0.5 * (1 + tanh(z)) + 0.5 * x * (1 - tanh(z)^2) * dz/dx
        z = sqrt(2/pi) * (x + 0.044715 * x^3)
    """
    sqrt_2_over_pi = np.sqrt(2.0 / np.pi)
    tanh_z = np.tanh(sqrt_2_over_pi * (x + 0.044715 * np.power(x, 3)))
    dz_dx = sqrt_2_over_pi * (1.0 + 3.0 * 0.044715 * np.power(x, 2))
    derivative = 0.5 * (1.0 + tanh_z) + 0.5 * x * (1.0 - tanh_z**2) * dz_dx
    return upstream_gradient * derivative


def elu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    """ELU: x for x > 0, alpha * (exp(x) - 1) otherwise."""
    return np.where(x > 0, x, alpha * np.expm1(np.minimum(x, 0)))


def elu_backward(
    upstream_gradient: np.ndarray, x: np.ndarray, alpha: float = 1.0
) -> np.ndarray:
    return upstream_gradient * np.where(x > 0, 1.0, alpha * np.exp(np.minimum(x, 0)))


def selu(x: np.ndarray) -> np.ndarray:
    """
    Scaled ELU with the fixed constants from "Self-Normalizing Neural
    Networks" (Klambauer et al., 2017).
    """
    return SELU_SCALE * elu(x, SELU_ALPHA)


def selu_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return SELU_SCALE * elu_backward(upstream_gradient, x, SELU_ALPHA)


def softplus(x: np.ndarray) -> np.ndarray:
    """softplus(x) = log(1 + exp(x)), computed as logaddexp(0, x)."""
    return np.logaddexp(0.0, x)


def softplus_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return upstream_gradient * sigmoid(x)


def softsign(x: np.ndarray) -> np.ndarray:
    return x / (1.0 + np.abs(x))


def softsign_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    return upstream_gradient / np.square(1.0 + np.abs(x))


def swish(x: np.ndarray) -> np.ndarray:
    """swish(x) = x * sigmoid(x)"""
    return x * sigmoid(x)


def swish_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return upstream_gradient * (s + x * s * (1.0 - s))


def mish(x: np.ndarray) -> np.ndarray:
    """mish(x) = x * tanh(softplus(x))"""
    return x * np.tanh(softplus(x))


def mish_backward(upstream_gradient: np.ndarray, x: np.ndarray) -> np.ndarray:
    tanh_sp = np.tanh(softplus(x))
    derivative = tanh_sp + x * (1.0 - tanh_sp**2) * sigmoid(x)
    return upstream_gradient * derivative


ACTIVATIONS: Dict[str, ActivationPair] = {
    "linear": (linear, linear_backward),
    "relu": (relu, relu_backward),
    "sigmoid": (sigmoid, sigmoid_backward),
    "tanh": (tanh, tanh_backward),
    "softmax": (softmax, _softmax_from_input),
    "elu": (elu, elu_backward),
    "selu": (selu, selu_backward),
    "softplus": (softplus, softplus_backward),
    "softsign": (softsign, softsign_backward),
    "swish": (swish, swish_backward),
    "mish": (mish, mish_backward),
    "gelu": (gelu, gelu_backward),
}


def get_activation(name: str) -> ActivationPair:
    """
    Look up an activation by name.

    Raises:
        ValueError: If the name is not a known activation
    """
    if name not in ACTIVATIONS:
        raise ValueError(
            f"Unknown activation: {name}. Expected one of: {', '.join(ACTIVATIONS)}"
        )
    return ACTIVATIONS[name]
