"""
Tests for loss functions and accuracy.
"""

import numpy as np
import pytest


def numerical_gradient(f, x, eps=1e-6):
    grad = np.zeros_like(x)
    it = np.nditer(x, flags=["multi_index"])
    while not it.finished:
        idx = it.multi_index
        original = x[idx]
        x[idx] = original + eps
        plus = f(x)
        x[idx] = original - eps
        minus = f(x)
        x[idx] = original
        grad[idx] = (plus - minus) / (2 * eps)
        it.iternext()
    return grad


class TestLosses:
    def test_categorical_crossentropy_value(self):
        from nn_designer.losses import categorical_crossentropy

        predictions = np.array([[0.7, 0.2, 0.1], [0.1, 0.1, 0.8]])
        targets = np.array([[1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])

        expected = -(np.log(0.7) + np.log(0.8)) / 2
        assert np.isclose(categorical_crossentropy(predictions, targets), expected)

    def test_crossentropy_is_finite_for_zero_probability(self):
        from nn_designer.losses import binary_crossentropy, categorical_crossentropy

        assert np.isfinite(categorical_crossentropy(np.array([[0.0, 1.0]]), np.array([[1.0, 0.0]])))
        assert np.isfinite(binary_crossentropy(np.array([[1.0]]), np.array([[0.0]])))

    def test_mean_squared_error_value(self):
        from nn_designer.losses import mean_squared_error

        assert np.isclose(mean_squared_error(np.array([[1.0, 3.0]]), np.array([[0.0, 1.0]])), 2.5)

    @pytest.mark.parametrize(
        "name", ["categoricalCrossentropy", "meanSquaredError", "binaryCrossentropy"]
    )
    def test_backward_matches_numerical_gradient(self, name):
        from nn_designer.losses import get_loss

        np.random.seed(42)
        loss, backward = get_loss(name)
        predictions = np.random.uniform(0.1, 0.9, size=(3, 4))
        targets = np.eye(4)[[0, 2, 3]]

        analytical = backward(predictions, targets)
        numerical = numerical_gradient(lambda p: loss(p, targets), predictions.copy())

        assert np.allclose(analytical, numerical, atol=1e-5), (
            f"{name} gradient mismatch"
        )

    def test_softmax_chain_gives_probability_minus_target(self):
        """Cross-entropy through a softmax output yields (p - y) / batch."""
        from nn_designer.activations import softmax, softmax_backward
        from nn_designer.losses import categorical_crossentropy_backward

        np.random.seed(42)
        probabilities = softmax(np.random.randn(2, 5))
        targets = np.eye(5)[[1, 4]]

        upstream = categorical_crossentropy_backward(probabilities, targets)
        logits_gradient = softmax_backward(upstream, probabilities)

        assert np.allclose(logits_gradient, (probabilities - targets) / 2, atol=1e-6)

    def test_unknown_loss(self):
        from nn_designer.losses import get_loss

        with pytest.raises(ValueError, match="Unknown loss: hinge"):
            get_loss("hinge")


class TestAccuracy:
    def test_argmax_accuracy(self):
        from nn_designer.losses import accuracy

        predictions = np.array([[0.9, 0.1], [0.2, 0.8], [0.6, 0.4], [0.3, 0.7]])
        targets = np.array([[1, 0], [0, 1], [0, 1], [1, 0]])

        assert accuracy(predictions, targets) == 0.5

    def test_single_unit_threshold(self):
        from nn_designer.losses import accuracy

        predictions = np.array([[0.9], [0.2], [0.6]])
        targets = np.array([[1.0], [0.0], [0.0]])

        assert np.isclose(accuracy(predictions, targets), 2 / 3)
