"""
Tests for the operator layers module.

Tests cover:
- Dense: output shape, activation, numerical gradient
- Conv2D: same/valid output sizes, strides, numerical gradient
- MaxPool2D: max selection, gradient routing, padding
- Dropout, Flatten, GlobalAveragePooling1D
- LayerNorm: normalization, optional gamma/beta, numerical gradient
- Embedding: lookup, gradient accumulation, frozen tables
- PositionalEncoding and PositionalEncodingSpec
- dispose(): weights are dropped
"""

import numpy as np
import pytest


def numerical_gradient(function, array, epsilon=1e-5):
    """Central-difference gradient of function() w.r.t. array (modified in place)."""
    gradient = np.zeros_like(array)
    for index in np.ndindex(array.shape):
        original = array[index]
        array[index] = original + epsilon
        plus = function()
        array[index] = original - epsilon
        minus = function()
        array[index] = original
        gradient[index] = (plus - minus) / (2 * epsilon)
    return gradient


class TestDense:
    """
    Test suite for the Dense layer.

    Dense computes: y = activation(x @ W^T + b)
    where W has shape (units, input_features)
    """

    def test_dense_output_shape(self):
        """Dense should map (batch, in) to (batch, units)."""
        from nn_designer.layers import Dense

        np.random.seed(42)
        layer = Dense(input_features=8, units=16)
        output = layer.forward(np.random.randn(4, 8))

        assert output.shape == (4, 16), f"Expected (4, 16), got {output.shape}"

    def test_dense_3d_input(self):
        """Dense should apply to the last axis of a sequence."""
        from nn_designer.layers import Dense

        layer = Dense(input_features=8, units=16)
        output = layer.forward(np.random.randn(2, 10, 8))

        assert output.shape == (2, 10, 16)

    def test_dense_parameter_count(self):
        from nn_designer.layers import Dense

        assert Dense(784, 128).parameter_count() == 784 * 128 + 128
        assert Dense(784, 128, use_bias=False).parameter_count() == 784 * 128

    def test_dense_relu_activation(self):
        """Output of a relu dense layer is never negative."""
        from nn_designer.layers import Dense

        np.random.seed(42)
        layer = Dense(5, 7, activation="relu")
        output = layer.forward(np.random.randn(10, 5))

        assert np.all(output >= 0.0)

    def test_dense_unknown_initializer_raises(self):
        from nn_designer.layers import Dense

        with pytest.raises(ValueError):
            Dense(3, 2, kernel_initializer="nope")

    def test_dense_backward_numerical_gradient(self):
        """Weight, bias and input gradients should match numerical gradients."""
        from nn_designer.layers import Dense

        np.random.seed(42)
        layer = Dense(3, 4, activation="tanh")
        inputs = np.random.randn(2, 3)
        upstream = np.random.randn(2, 4)

        layer.forward(inputs)
        input_gradient = layer.backward(upstream)

        def loss():
            return np.sum(layer.forward(inputs) * upstream)

        assert np.allclose(
            layer.weight_gradient, numerical_gradient(loss, layer.weights), atol=1e-5
        ), "Weight gradient should match numerical gradient"
        assert np.allclose(
            layer.bias_gradient, numerical_gradient(loss, layer.bias), atol=1e-5
        ), "Bias gradient should match numerical gradient"
        assert np.allclose(
            input_gradient, numerical_gradient(loss, inputs), atol=1e-5
        ), "Input gradient should match numerical gradient"


class TestConv2D:
    """
    Test suite for Conv2D over channels-last images.

    Output size per axis:
        same:  ceil(n / stride)
        valid: floor((n - kernel) / stride) + 1
    """

    def test_conv2d_same_padding_keeps_size(self):
        from nn_designer.layers import Conv2D

        np.random.seed(42)
        layer = Conv2D(in_channels=1, filters=32, kernel_size=3, padding="same")
        output = layer.forward(np.random.randn(2, 28, 28, 1))

        assert output.shape == (2, 28, 28, 32)

    def test_conv2d_valid_padding_shrinks(self):
        from nn_designer.layers import Conv2D

        layer = Conv2D(in_channels=3, filters=4, kernel_size=5, padding="valid")
        output = layer.forward(np.random.randn(1, 32, 32, 3))

        assert output.shape == (1, 28, 28, 4)

    def test_conv2d_strides(self):
        from nn_designer.layers import Conv2D

        same = Conv2D(1, 2, kernel_size=3, strides=2, padding="same")
        valid = Conv2D(1, 2, kernel_size=3, strides=2, padding="valid")
        inputs = np.random.randn(1, 7, 7, 1)

        assert same.forward(inputs).shape == (1, 4, 4, 2)
        assert valid.forward(inputs).shape == (1, 3, 3, 2)

    def test_conv2d_matches_direct_convolution(self):
        """The einsum path should equal a direct nested-loop convolution."""
        from nn_designer.layers import Conv2D

        np.random.seed(42)
        layer = Conv2D(2, 3, kernel_size=2, padding="valid")
        inputs = np.random.randn(1, 4, 4, 2)
        output = layer.forward(inputs)

        expected = np.zeros((1, 3, 3, 3))
        for row in range(3):
            for col in range(3):
                patch = inputs[0, row : row + 2, col : col + 2, :]
                for f in range(3):
                    expected[0, row, col, f] = (
                        np.sum(patch * layer.kernel[..., f]) + layer.bias[f]
                    )

        assert np.allclose(output, expected)

    def test_conv2d_wrong_channels_raises(self):
        from nn_designer.layers import Conv2D

        layer = Conv2D(in_channels=3, filters=2)
        with pytest.raises(ValueError, match="input channels"):
            layer.forward(np.random.randn(1, 5, 5, 1))

    @pytest.mark.parametrize("padding,strides", [("same", 1), ("valid", 2), ("same", 2)])
    def test_conv2d_backward_numerical_gradient(self, padding, strides):
        from nn_designer.layers import Conv2D

        np.random.seed(42)
        layer = Conv2D(2, 3, kernel_size=3, strides=strides, padding=padding)
        inputs = np.random.randn(2, 5, 5, 2)
        output = layer.forward(inputs)
        upstream = np.random.randn(*output.shape)
        input_gradient = layer.backward(upstream)

        def loss():
            return np.sum(layer.forward(inputs) * upstream)

        assert np.allclose(
            layer.kernel_gradient, numerical_gradient(loss, layer.kernel), atol=1e-5
        ), "Kernel gradient should match numerical gradient"
        assert np.allclose(
            input_gradient, numerical_gradient(loss, inputs), atol=1e-5
        ), "Input gradient should match numerical gradient"


class TestMaxPool2D:
    """Max pooling with strides defaulting to the pool size."""

    def test_maxpool_selects_window_maximum(self):
        from nn_designer.layers import MaxPool2D

        inputs = np.arange(16, dtype=float).reshape(1, 4, 4, 1)
        output = MaxPool2D(pool_size=2).forward(inputs)

        assert output.shape == (1, 2, 2, 1)
        assert np.array_equal(output[0, :, :, 0], np.array([[5.0, 7.0], [13.0, 15.0]]))

    def test_maxpool_backward_routes_to_max(self):
        """Only the winning cell of each window receives gradient."""
        from nn_designer.layers import MaxPool2D

        inputs = np.arange(16, dtype=float).reshape(1, 4, 4, 1)
        layer = MaxPool2D(pool_size=2)
        layer.forward(inputs)
        gradient = layer.backward(np.ones((1, 2, 2, 1)))

        expected = np.zeros((4, 4))
        expected[1, 1] = expected[1, 3] = expected[3, 1] = expected[3, 3] = 1.0
        assert np.array_equal(gradient[0, :, :, 0], expected)

    def test_maxpool_same_padding(self):
        from nn_designer.layers import MaxPool2D

        output = MaxPool2D(pool_size=2, padding="same").forward(np.random.randn(1, 5, 5, 3))
        assert output.shape == (1, 3, 3, 3)
        assert np.all(np.isfinite(output)), "Padded cells must never win the max"

    def test_maxpool_has_no_parameters(self):
        from nn_designer.layers import MaxPool2D

        assert MaxPool2D().parameter_count() == 0


class TestDropout:
    """Inverted dropout: identity at inference, scaled mask in training."""

    def test_dropout_inference_is_identity(self):
        from nn_designer.layers import Dropout

        inputs = np.random.randn(4, 10)
        assert np.array_equal(Dropout(0.5).forward(inputs), inputs)

    def test_dropout_training_scales_survivors(self):
        from nn_designer.layers import Dropout

        np.random.seed(42)
        output = Dropout(0.5).forward(np.ones((100, 100)), training=True)
        survivors = output[output != 0]

        assert np.allclose(survivors, 2.0), "Survivors should be scaled by 1 / (1 - rate)"
        assert 0.4 < np.mean(output == 0) < 0.6

    def test_dropout_rate_one_drops_everything(self):
        from nn_designer.layers import Dropout

        output = Dropout(1.0).forward(np.ones((3, 3)), training=True)
        assert np.all(output == 0.0)

    def test_dropout_invalid_rate_raises(self):
        from nn_designer.layers import Dropout

        with pytest.raises(ValueError):
            Dropout(1.5)


class TestReshapingLayers:
    def test_flatten_round_trip(self):
        from nn_designer.layers import Flatten

        layer = Flatten()
        inputs = np.random.randn(2, 7, 7, 4)
        output = layer.forward(inputs)

        assert output.shape == (2, 196)
        assert layer.backward(output).shape == inputs.shape

    def test_global_average_pooling_1d(self):
        from nn_designer.layers import GlobalAveragePooling1D

        layer = GlobalAveragePooling1D()
        inputs = np.random.randn(2, 5, 8)
        output = layer.forward(inputs)

        assert output.shape == (2, 8)
        assert np.allclose(output, inputs.mean(axis=1))

        gradient = layer.backward(np.ones((2, 8)))
        assert gradient.shape == (2, 5, 8)
        assert np.allclose(gradient, 0.2)


class TestLayerNorm:
    """
    Layer Normalization over the last axis.

        y = gamma * (x - mean) / sqrt(var + eps) + beta
    """

    def test_layernorm_normalizes(self):
        """Output should have ~0 mean and ~1 std per position."""
        from nn_designer.layers import LayerNorm

        np.random.seed(42)
        output = LayerNorm(16).forward(np.random.randn(4, 6, 16) * 5 + 3)

        assert np.allclose(output.mean(axis=-1), 0.0, atol=1e-6)
        assert np.allclose(output.std(axis=-1), 1.0, atol=1e-3)

    def test_layernorm_optional_parameters(self):
        from nn_designer.layers import LayerNorm

        assert set(LayerNorm(8).get_parameters()) == {"gamma", "beta"}
        assert set(LayerNorm(8, center=False).get_parameters()) == {"gamma"}
        assert LayerNorm(8, center=False, scale=False).parameter_count() == 0

    def test_layernorm_dimension_mismatch_raises(self):
        from nn_designer.layers import LayerNorm

        with pytest.raises(ValueError):
            LayerNorm(8).forward(np.random.randn(2, 4))

    def test_layernorm_backward_numerical_gradient(self):
        from nn_designer.layers import LayerNorm

        np.random.seed(42)
        layer = LayerNorm(5)
        layer.gamma = np.random.randn(5)
        layer.beta = np.random.randn(5)
        inputs = np.random.randn(3, 5)
        upstream = np.random.randn(3, 5)

        layer.forward(inputs)
        input_gradient = layer.backward(upstream)

        def loss():
            return np.sum(layer.forward(inputs) * upstream)

        assert np.allclose(input_gradient, numerical_gradient(loss, inputs), atol=1e-5)
        assert np.allclose(
            layer.gamma_gradient, numerical_gradient(loss, layer.gamma), atol=1e-5
        )
        assert np.allclose(
            layer.beta_gradient, numerical_gradient(loss, layer.beta), atol=1e-5
        )


class TestEmbedding:
    """Lookup table from token IDs to vectors."""

    def test_embedding_lookup(self):
        from nn_designer.layers import Embedding

        layer = Embedding(vocabulary_size=20, embedding_dimension=4)
        token_ids = np.array([[1, 2, 3], [4, 5, 6]])
        output = layer.forward(token_ids)

        assert output.shape == (2, 3, 4)
        assert np.array_equal(output[0, 1], layer.embedding_table[2])

    def test_embedding_accepts_whole_float_ids(self):
        from nn_designer.layers import Embedding

        layer = Embedding(10, 3)
        output = layer.forward(np.array([[1.0, 2.0]]))
        assert np.array_equal(output[0, 0], layer.embedding_table[1])

    def test_embedding_rejects_out_of_range_ids(self):
        from nn_designer.layers import Embedding

        with pytest.raises(ValueError):
            Embedding(10, 3).forward(np.array([[10]]))

    def test_embedding_gradient_accumulation(self):
        """Repeated tokens should accumulate gradient."""
        from nn_designer.layers import Embedding

        layer = Embedding(10, 3)
        layer.forward(np.array([[2, 2, 5]]))
        layer.backward(np.ones((1, 3, 3)))

        assert np.allclose(layer.embedding_gradient[2], 2.0)
        assert np.allclose(layer.embedding_gradient[5], 1.0)
        assert np.allclose(layer.embedding_gradient[0], 0.0)

    def test_frozen_embedding_is_non_trainable(self):
        from nn_designer.layers import Embedding

        layer = Embedding(100, 8, trainable=False)
        assert layer.parameter_count() == 0
        assert layer.total_parameter_count() == 800


class TestPositionalEncoding:
    """
    Positional encodings added to embeddings.

        PE(pos, 2i)   = sin(pos / 10000^(2i / d))
        PE(pos, 2i+1) = cos(pos / 10000^(2i / d))
    """

    def test_sinusoidal_table_values(self):
        from nn_designer.layers import sinusoidal_encoding_table

        table = sinusoidal_encoding_table(50, 16)
        assert table.shape == (50, 16)
        assert np.allclose(table[0, 0::2], 0.0), "sin(0) = 0"
        assert np.allclose(table[0, 1::2], 1.0), "cos(0) = 1"
        assert np.isclose(table[3, 0], np.sin(3.0))

    def test_zero_input_gives_nonzero_output(self):
        """Adding the encoding to zeros must produce a non-zero tensor."""
        from nn_designer.layers import PositionalEncodingSpec

        operator = PositionalEncodingSpec(max_length=100).build((1, 10, 16))
        output = operator.forward(np.zeros((1, 10, 16)))

        assert output.shape == (1, 10, 16)
        assert np.any(output != 0.0)

    def test_sinusoidal_encoding_is_a_buffer(self):
        from nn_designer.layers import PositionalEncoding

        layer = PositionalEncoding(20, 8)
        assert layer.parameter_count() == 0
        assert set(layer.get_buffers()) == {"encoding_table"}

    def test_learned_encoding_is_trainable(self):
        from nn_designer.layers import PositionalEncoding

        layer = PositionalEncoding(20, 8, encoding_type="learned")
        assert layer.parameter_count() == 160

        layer.forward(np.zeros((2, 5, 8)))
        layer.backward(np.ones((2, 5, 8)))
        assert np.allclose(layer.encoding_gradient[:5], 2.0)
        assert np.allclose(layer.encoding_gradient[5:], 0.0)

    def test_sequence_longer_than_max_length_raises(self):
        from nn_designer.layers import PositionalEncoding

        with pytest.raises(ValueError, match="exceeds"):
            PositionalEncoding(4, 8).forward(np.zeros((1, 5, 8)))

    @pytest.mark.parametrize("input_shape", [(16,), (1, 2, 3, 4)])
    def test_spec_rejects_wrong_rank(self, input_shape):
        from nn_designer.errors import OperatorBuildError
        from nn_designer.layers import PositionalEncodingSpec

        with pytest.raises(OperatorBuildError, match="Invalid input shape"):
            PositionalEncodingSpec(max_length=10).build(input_shape)

    def test_spec_rejects_long_sequence(self):
        from nn_designer.errors import OperatorBuildError
        from nn_designer.layers import PositionalEncodingSpec

        with pytest.raises(OperatorBuildError):
            PositionalEncodingSpec(max_length=5).build((10, 16))


class TestDispose:
    def test_dispose_drops_arrays(self):
        from nn_designer.layers import Dense

        layer = Dense(4, 2)
        layer.dispose()

        assert layer.disposed
        assert layer.weights is None
        assert layer.bias is None
