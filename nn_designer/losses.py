"""
Loss Functions

Losses selectable in a TrainingConfig, each with its gradient w.r.t. the
model output. Like the Keras losses they are named after, they operate on
the model's *output values* (e.g. softmax probabilities), not on logits.

Functions:
    categorical_crossentropy: -sum(y * log(p)) averaged over the batch
    mean_squared_error: mean((p - y)^2)
    binary_crossentropy: -mean(y * log(p) + (1 - y) * log(1 - p))
    *_backward: Gradients of the above
    accuracy: Fraction of correct predictions
    get_loss: Look up a (loss, backward) pair by name
"""

from typing import Callable, Dict, Tuple

import numpy as np

# Probabilities are clipped away from 0 and 1 before taking logs
EPSILON = 1e-7

LossPair = Tuple[
    Callable[[np.ndarray, np.ndarray], float],
    Callable[[np.ndarray, np.ndarray], np.ndarray],
]


def categorical_crossentropy(predictions: np.ndarray, targets: np.ndarray) -> float:
    """
    Cross-entropy between one-hot targets and predicted probabilities.

    Args:
        predictions: Probabilities, shape (batch, num_classes)
        targets: One-hot labels, same shape

    Returns:
        Scalar loss averaged over the batch
    """
    clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
    per_sample = -np.sum(targets * np.log(clipped), axis=-1)
    return float(np.mean(per_sample))


def categorical_crossentropy_backward(
    predictions: np.ndarray, targets: np.ndarray
) -> np.ndarray:
    """
    d_loss/d_p = -y / p / batch

    Chained through a softmax output this reduces to (p - y) / batch.
    """
    clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
    batch_size = predictions.reshape(-1, predictions.shape[-1]).shape[0]
    return -targets / clipped / batch_size


def mean_squared_error(predictions: np.ndarray, targets: np.ndarray) -> float:
    return float(np.mean(np.square(predictions - targets)))


def mean_squared_error_backward(
    predictions: np.ndarray, targets: np.ndarray
) -> np.ndarray:
    return 2.0 * (predictions - targets) / predictions.size


def binary_crossentropy(predictions: np.ndarray, targets: np.ndarray) -> float:
    clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
    losses = targets * np.log(clipped) + (1.0 - targets) * np.log(1.0 - clipped)
    return float(-np.mean(losses))


def binary_crossentropy_backward(
    predictions: np.ndarray, targets: np.ndarray
) -> np.ndarray:
    clipped = np.clip(predictions, EPSILON, 1.0 - EPSILON)
    return (clipped - targets) / (clipped * (1.0 - clipped)) / predictions.size


def accuracy(predictions: np.ndarray, targets: np.ndarray) -> float:
    """
    Fraction of correct predictions.

    Single-unit outputs are thresholded at 0.5; otherwise the argmax of the
    prediction is compared with the argmax of the one-hot target.
    """
    if predictions.shape[-1] == 1:
        return float(np.mean((predictions > 0.5) == (targets > 0.5)))
    return float(np.mean(np.argmax(predictions, axis=-1) == np.argmax(targets, axis=-1)))


LOSSES: Dict[str, LossPair] = {
    "categoricalCrossentropy": (
        categorical_crossentropy,
        categorical_crossentropy_backward,
    ),
    "meanSquaredError": (mean_squared_error, mean_squared_error_backward),
    "binaryCrossentropy": (binary_crossentropy, binary_crossentropy_backward),
}


def get_loss(name: str) -> LossPair:
    """
    Raises:
        ValueError: If the loss name is unknown
    """
    if name not in LOSSES:
        raise ValueError(f"Unknown loss: {name}. Expected one of: {', '.join(LOSSES)}")
    return LOSSES[name]
