"""
Neural Network Layers for Designed Models

This module implements the concrete operators that a compiled layer list is
made of. Each layer has a forward pass and an explicit backward pass, so a
compiled model can be trained with plain NumPy.

Tensors are batch-first. Image tensors use the channels-last layout
(batch, height, width, channels); sequence tensors are (batch, seq, features).

Classes:
    Layer: Base class with parameter/gradient bookkeeping and disposal
    Dense: Fully connected layer with an optional activation
    Conv2D: 2D convolution (channels-last)
    MaxPool2D: 2D max pooling (channels-last)
    Dropout: Inverted dropout, active only in training mode
    Flatten: Collapse all non-batch dimensions
    LayerNorm: Layer normalization over the last axis
    Embedding: Token ID to dense vector lookup table
    PositionalEncoding: Sinusoidal or learned position embeddings
    PositionalEncodingSpec: Hyperparameters that build a PositionalEncoding
    GlobalAveragePooling1D: Mean over the sequence axis

Functions:
    same_padding: TensorFlow-style "same" padding amounts
    dropout_mask: Scaled keep-mask shared by every dropout site
    sinusoidal_encoding_table: Fixed positional encoding table

Reference:
    - "Attention Is All You Need" (Vaswani et al., 2017)
    - "Layer Normalization" (Ba et al., 2016)
    - "Dropout: A Simple Way to Prevent Neural Networks from Overfitting"
      (Srivastava et al., 2014)
"""

from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from nn_designer.activations import get_activation
from nn_designer.errors import OperatorBuildError
from nn_designer.initializers import initialize


class Layer:
    """
    Base class for all operators.

    Subclasses implement forward/backward and expose their learnable arrays
    through get_parameters(). Weights that exist but are frozen go in
    get_non_trainable(); constant tables that are not weights at all go in
    get_buffers().
    """

    layer_type = "layer"

    def __init__(self):
        self.disposed = False

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        raise NotImplementedError

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def get_parameters(self) -> Dict[str, np.ndarray]:
        """Return dictionary of learnable parameters."""
        return {}

    def get_gradients(self) -> Dict[str, np.ndarray]:
        """Return dictionary of parameter gradients."""
        return {}

    def get_non_trainable(self) -> Dict[str, np.ndarray]:
        return {}

    def get_buffers(self) -> Dict[str, np.ndarray]:
        return {}

    def parameter_count(self) -> int:
        """Number of trainable scalars."""
        return int(sum(p.size for p in self.get_parameters().values()))

    def total_parameter_count(self) -> int:
        """Trainable plus frozen weights (constant buffers are not weights)."""
        frozen = sum(p.size for p in self.get_non_trainable().values())
        return self.parameter_count() + int(frozen)

    def dispose(self) -> None:
        """
        Drop every array this layer (and any sub-layer) holds.

        A disposed layer cannot run forward or backward again.
        """
        for name, value in list(vars(self).items()):
            if isinstance(value, Layer):
                value.dispose()
            elif isinstance(value, np.ndarray):
                setattr(self, name, None)
        self.disposed = True


def _pair(value) -> Tuple[int, int]:
    """Expand a scalar size into (size, size); pass 2-sequences through."""
    if isinstance(value, (list, tuple)):
        return int(value[0]), int(value[1])
    return int(value), int(value)


def same_padding(size: int, kernel: int, stride: int) -> Tuple[int, int]:
    """
    Padding (before, after) that makes the output size ceil(size / stride).

    Extra padding goes after, matching TensorFlow's convention.
    """
    output_size = -(-size // stride)
    total = max((output_size - 1) * stride + kernel - size, 0)
    return total // 2, total - total // 2


class Dense(Layer):
    """
    Fully Connected Layer with activation.

    Computes: y = activation(x @ W^T + b)

    Applied to the last axis, so it works on (batch, features) as well as on
    (batch, seq, features) inputs.

    Attributes:
        weights: Weight matrix of shape (units, input_features)
        bias: Bias vector of shape (units,) or None
    """

    layer_type = "dense"

    def __init__(
        self,
        input_features: int,
        units: int,
        activation: str = "linear",
        use_bias: bool = True,
        kernel_initializer: str = "glorotUniform",
    ):
        """
        Args:
            input_features: Size of input dimension (fan_in)
            units: Size of output dimension (fan_out)
            activation: Name of the activation applied after the affine map
            use_bias: Whether to include a bias term
            kernel_initializer: Name of the weight initializer
        """
        super().__init__()
        self.input_features = input_features
        self.units = units
        self.activation = activation
        self.use_bias = use_bias
        self._activation_forward, self._activation_backward = get_activation(
            activation
        )

        self.weights = initialize(
            kernel_initializer, (units, input_features), input_features, units
        )
        self.bias = np.zeros(units) if use_bias else None

        self.weight_gradient = None
        self.bias_gradient = None

        self._input_cache = None
        self._pre_activation_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        self._input_cache = input_tensor

        # (..., in) @ (in, units) -> (..., units)
        pre_activation = input_tensor @ self.weights.T
        if self.use_bias:
            pre_activation = pre_activation + self.bias
        self._pre_activation_cache = pre_activation

        return self._activation_forward(pre_activation)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """
        Backward pass through activation and affine map.

            d_W = d_pre^T @ x    (summed over all leading axes)
            d_b = sum(d_pre)
            d_x = d_pre @ W
        """
        d_pre = self._activation_backward(
            upstream_gradient, self._pre_activation_cache
        )

        input_2d = self._input_cache.reshape(-1, self.input_features)
        d_pre_2d = d_pre.reshape(-1, self.units)

        self.weight_gradient = d_pre_2d.T @ input_2d
        if self.use_bias:
            self.bias_gradient = np.sum(d_pre_2d, axis=0)

        return d_pre @ self.weights

    def get_parameters(self) -> dict:
        params = {"weight": self.weights}
        if self.use_bias:
            params["bias"] = self.bias
        return params

    def get_gradients(self) -> dict:
        grads = {"weight": self.weight_gradient}
        if self.use_bias:
            grads["bias"] = self.bias_gradient
        return grads


class Conv2D(Layer):
    """
    2D Convolution over channels-last images.

    The input is padded (for "same"), sliced into sliding windows with
    numpy's stride tricks, and contracted against the kernel with einsum.

    Attributes:
        kernel: Array of shape (kernel_h, kernel_w, in_channels, filters)
        bias: Array of shape (filters,) or None
    """

    layer_type = "conv2d"

    def __init__(
        self,
        in_channels: int,
        filters: int,
        kernel_size=3,
        strides=1,
        padding: str = "same",
        activation: str = "linear",
        use_bias: bool = True,
        kernel_initializer: str = "glorotUniform",
    ):
        super().__init__()
        self.in_channels = in_channels
        self.filters = filters
        self.kernel_size = _pair(kernel_size)
        self.strides = _pair(strides)
        self.padding = padding
        self.activation = activation
        self.use_bias = use_bias
        self._activation_forward, self._activation_backward = get_activation(
            activation
        )

        kernel_h, kernel_w = self.kernel_size
        receptive_field = kernel_h * kernel_w
        self.kernel = initialize(
            kernel_initializer,
            (kernel_h, kernel_w, in_channels, filters),
            receptive_field * in_channels,
            receptive_field * filters,
        )
        self.bias = np.zeros(filters) if use_bias else None

        self.kernel_gradient = None
        self.bias_gradient = None

        self._input_shape_cache = None
        self._padded_shape_cache = None
        self._padding_cache = None
        self._windows_cache = None
        self._pre_activation_cache = None

    def _pad(self, input_tensor: np.ndarray) -> np.ndarray:
        if self.padding != "same":
            self._padding_cache = ((0, 0), (0, 0))
            return input_tensor
        _, height, width, _ = input_tensor.shape
        pad_h = same_padding(height, self.kernel_size[0], self.strides[0])
        pad_w = same_padding(width, self.kernel_size[1], self.strides[1])
        self._padding_cache = (pad_h, pad_w)
        return np.pad(input_tensor, ((0, 0), pad_h, pad_w, (0, 0)))

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Args:
            input_tensor: Images of shape (batch, height, width, in_channels)

        Returns:
            Feature maps of shape (batch, out_h, out_w, filters)
        """
        if input_tensor.shape[-1] != self.in_channels:
            raise ValueError(
                f"Conv2D expected {self.in_channels} input channels, "
                f"got {input_tensor.shape[-1]}"
            )
        self._input_shape_cache = input_tensor.shape

        padded = self._pad(input_tensor)
        self._padded_shape_cache = padded.shape

        stride_h, stride_w = self.strides
        # (batch, H', W', channels, kh, kw), then keep every stride-th window
        windows = sliding_window_view(padded, self.kernel_size, axis=(1, 2))
        windows = windows[:, ::stride_h, ::stride_w]
        self._windows_cache = windows

        pre_activation = np.einsum("bhwcij,ijcf->bhwf", windows, self.kernel)
        if self.use_bias:
            pre_activation = pre_activation + self.bias
        self._pre_activation_cache = pre_activation

        return self._activation_forward(pre_activation)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        d_pre = self._activation_backward(
            upstream_gradient, self._pre_activation_cache
        )
        windows = self._windows_cache

        self.kernel_gradient = np.einsum("bhwcij,bhwf->ijcf", windows, d_pre)
        if self.use_bias:
            self.bias_gradient = np.sum(d_pre, axis=(0, 1, 2))

        # Gradient for every window element, scattered back onto the input
        d_windows = np.einsum("bhwf,ijcf->bhwcij", d_pre, self.kernel)
        d_padded = np.zeros(self._padded_shape_cache)
        kernel_h, kernel_w = self.kernel_size
        stride_h, stride_w = self.strides
        out_h, out_w = d_pre.shape[1], d_pre.shape[2]
        for i in range(kernel_h):
            for j in range(kernel_w):
                d_padded[
                    :, i : i + stride_h * out_h : stride_h, j : j + stride_w * out_w : stride_w, :
                ] += d_windows[..., i, j]

        (top, _), (left, _) = self._padding_cache
        _, height, width, _ = self._input_shape_cache
        return d_padded[:, top : top + height, left : left + width, :]

    def get_parameters(self) -> dict:
        params = {"kernel": self.kernel}
        if self.use_bias:
            params["bias"] = self.bias
        return params

    def get_gradients(self) -> dict:
        grads = {"kernel": self.kernel_gradient}
        if self.use_bias:
            grads["bias"] = self.bias_gradient
        return grads


class MaxPool2D(Layer):
    """
    2D Max Pooling over channels-last images.

    Strides default to the pool size. "same" padding pads with -inf so padded
    cells never win the max.
    """

    layer_type = "maxpool2d"

    def __init__(self, pool_size=2, strides=None, padding: str = "valid"):
        super().__init__()
        self.pool_size = _pair(pool_size)
        self.strides = _pair(strides) if strides is not None else self.pool_size
        self.padding = padding

        self._input_shape_cache = None
        self._padded_shape_cache = None
        self._padding_cache = None
        self._argmax_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        batch, height, width, channels = input_tensor.shape
        self._input_shape_cache = input_tensor.shape

        if self.padding == "same":
            pad_h = same_padding(height, self.pool_size[0], self.strides[0])
            pad_w = same_padding(width, self.pool_size[1], self.strides[1])
            padded = np.pad(
                input_tensor,
                ((0, 0), pad_h, pad_w, (0, 0)),
                constant_values=-np.inf,
            )
        else:
            pad_h, pad_w = (0, 0), (0, 0)
            padded = input_tensor
        self._padding_cache = (pad_h, pad_w)
        self._padded_shape_cache = padded.shape

        stride_h, stride_w = self.strides
        windows = sliding_window_view(padded, self.pool_size, axis=(1, 2))
        windows = windows[:, ::stride_h, ::stride_w]
        out_h, out_w = windows.shape[1], windows.shape[2]
        flat_windows = windows.reshape(batch, out_h, out_w, channels, -1)

        argmax = np.argmax(flat_windows, axis=-1)
        self._argmax_cache = argmax
        return np.take_along_axis(flat_windows, argmax[..., np.newaxis], axis=-1)[
            ..., 0
        ]

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """Route each output gradient to the input cell that produced the max."""
        pool_h, pool_w = self.pool_size
        stride_h, stride_w = self.strides
        batch, out_h, out_w, channels = upstream_gradient.shape

        d_flat = np.zeros((batch, out_h, out_w, channels, pool_h * pool_w))
        np.put_along_axis(
            d_flat,
            self._argmax_cache[..., np.newaxis],
            upstream_gradient[..., np.newaxis],
            axis=-1,
        )
        d_windows = d_flat.reshape(batch, out_h, out_w, channels, pool_h, pool_w)

        d_padded = np.zeros(self._padded_shape_cache)
        for i in range(pool_h):
            for j in range(pool_w):
                d_padded[
                    :, i : i + stride_h * out_h : stride_h, j : j + stride_w * out_w : stride_w, :
                ] += d_windows[..., i, j]

        (top, _), (left, _) = self._padding_cache
        _, height, width, _ = self._input_shape_cache
        return d_padded[:, top : top + height, left : left + width, :]


def dropout_mask(shape: Tuple[int, ...], rate: float) -> np.ndarray:
    """Scaled keep-mask for inverted dropout."""
    if rate >= 1.0:
        return np.zeros(shape)
    keep_probability = 1.0 - rate
    return (np.random.rand(*shape) < keep_probability) / keep_probability


class Dropout(Layer):
    """
    Inverted dropout.

    In training mode each element is zeroed with probability `rate` and the
    survivors are scaled by 1 / (1 - rate), so inference is a no-op.
    A rate of 1 drops everything.
    """

    layer_type = "dropout"

    def __init__(self, rate: float):
        super().__init__()
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"Dropout rate must be in [0, 1], got {rate}")
        self.rate = rate
        self._mask_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        if not training or self.rate == 0.0:
            self._mask_cache = None
            return input_tensor
        self._mask_cache = dropout_mask(input_tensor.shape, self.rate)
        return input_tensor * self._mask_cache

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        if self._mask_cache is None:
            return upstream_gradient
        return upstream_gradient * self._mask_cache


class Flatten(Layer):
    layer_type = "flatten"

    def __init__(self):
        super().__init__()
        self._input_shape_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        self._input_shape_cache = input_tensor.shape
        return input_tensor.reshape(input_tensor.shape[0], -1)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        return upstream_gradient.reshape(self._input_shape_cache)


class GlobalAveragePooling1D(Layer):
    """Average over the sequence axis: (batch, seq, features) -> (batch, features)."""

    layer_type = "globalAvgPool1d"

    def __init__(self):
        super().__init__()
        self._input_shape_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        self._input_shape_cache = input_tensor.shape
        return np.mean(input_tensor, axis=1)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        sequence_length = self._input_shape_cache[1]
        expanded = upstream_gradient[:, np.newaxis, ...] / sequence_length
        return np.broadcast_to(expanded, self._input_shape_cache).copy()


class LayerNorm(Layer):
    """
    Layer Normalization.

    Formula:
        y = gamma * (x - mean) / sqrt(var + eps) + beta

    mean and var are taken over the last axis. With center=False there is no
    beta; with scale=False there is no gamma.

    Reference: "Layer Normalization" (Ba et al., 2016)
    """

    layer_type = "layerNorm"

    def __init__(
        self,
        normalized_shape: int,
        epsilon: float = 1e-6,
        center: bool = True,
        scale: bool = True,
    ):
        super().__init__()
        self.normalized_shape = normalized_shape
        self.epsilon = epsilon
        self.center = center
        self.scale = scale

        self.gamma = np.ones(normalized_shape) if scale else None
        self.beta = np.zeros(normalized_shape) if center else None

        self.gamma_gradient = None
        self.beta_gradient = None

        self._normalized_cache = None
        self._std_cache = None

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        if input_tensor.shape[-1] != self.normalized_shape:
            raise ValueError(
                f"LayerNorm expected last dimension {self.normalized_shape}, "
                f"got {input_tensor.shape[-1]}"
            )
        mean = np.mean(input_tensor, axis=-1, keepdims=True)
        variance = np.var(input_tensor, axis=-1, keepdims=True)
        std = np.sqrt(variance + self.epsilon)
        normalized = (input_tensor - mean) / std

        self._std_cache = std
        self._normalized_cache = normalized

        output_tensor = normalized
        if self.scale:
            output_tensor = output_tensor * self.gamma
        if self.center:
            output_tensor = output_tensor + self.beta
        return output_tensor

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """
        Backward pass in its compact form:

            d_xhat = upstream * gamma
            d_x = (N * d_xhat - sum(d_xhat) - xhat * sum(d_xhat * xhat)) / (N * std)
        """
        normalized = self._normalized_cache
        batch_axes = tuple(range(upstream_gradient.ndim - 1))

        if self.scale:
            self.gamma_gradient = np.sum(upstream_gradient * normalized, axis=batch_axes)
            d_normalized = upstream_gradient * self.gamma
        else:
            d_normalized = upstream_gradient
        if self.center:
            self.beta_gradient = np.sum(upstream_gradient, axis=batch_axes)

        n_features = self.normalized_shape
        sum_d = np.sum(d_normalized, axis=-1, keepdims=True)
        sum_d_xhat = np.sum(d_normalized * normalized, axis=-1, keepdims=True)
        return (n_features * d_normalized - sum_d - normalized * sum_d_xhat) / (
            n_features * self._std_cache
        )

    def get_parameters(self) -> dict:
        params = {}
        if self.scale:
            params["gamma"] = self.gamma
        if self.center:
            params["beta"] = self.beta
        return params

    def get_gradients(self) -> dict:
        grads = {}
        if self.scale:
            grads["gamma"] = self.gamma_gradient
        if self.center:
            grads["beta"] = self.beta_gradient
        return grads


class Embedding(Layer):
    """
    Embedding Layer (Lookup Table).

    Converts integer token IDs of shape (batch, seq) into vectors of shape
    (batch, seq, embedding_dimension). When `trainable` is False the table is
    frozen: it receives no gradient and is reported as non-trainable.

    Reference: "Attention Is All You Need" Section 3.4
    """

    layer_type = "embedding"

    def __init__(
        self, vocabulary_size: int, embedding_dimension: int, trainable: bool = True
    ):
        super().__init__()
        self.vocabulary_size = vocabulary_size
        self.embedding_dimension = embedding_dimension
        self.trainable = trainable

        scale = 1.0 / np.sqrt(embedding_dimension)
        self.embedding_table = (
            np.random.randn(vocabulary_size, embedding_dimension) * scale
        )
        self.embedding_gradient = None

        self._token_ids_cache = None
        self._input_shape_cache = None

    def forward(self, token_ids: np.ndarray, training: bool = False) -> np.ndarray:
        # Token IDs may arrive as floats from a generic batch; they must be whole
        ids = np.asarray(token_ids)
        if not np.issubdtype(ids.dtype, np.integer):
            if not np.all(np.equal(np.mod(ids, 1), 0)):
                raise ValueError("Embedding input must contain integer token IDs")
            ids = ids.astype(np.int64)
        if ids.size and (ids.min() < 0 or ids.max() >= self.vocabulary_size):
            raise ValueError(
                f"Token IDs must be in [0, {self.vocabulary_size}), "
                f"got range [{ids.min()}, {ids.max()}]"
            )
        self._token_ids_cache = ids
        self._input_shape_cache = np.shape(token_ids)
        return self.embedding_table[ids]

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """
        Accumulate the table gradient; np.add.at handles repeated IDs.

        Token IDs are discrete, so the gradient w.r.t. the input is zero.
        """
        if self.trainable:
            self.embedding_gradient = np.zeros_like(self.embedding_table)
            np.add.at(
                self.embedding_gradient,
                self._token_ids_cache.reshape(-1),
                upstream_gradient.reshape(-1, self.embedding_dimension),
            )
        return np.zeros(self._input_shape_cache)

    def get_parameters(self) -> dict:
        if not self.trainable:
            return {}
        return {"embedding_table": self.embedding_table}

    def get_gradients(self) -> dict:
        if not self.trainable:
            return {}
        return {"embedding_table": self.embedding_gradient}

    def get_non_trainable(self) -> dict:
        if self.trainable:
            return {}
        return {"embedding_table": self.embedding_table}


def sinusoidal_encoding_table(max_length: int, embedding_dimension: int) -> np.ndarray:
    """
    Build the (max_length, embedding_dimension) sinusoidal table.

        PE(pos, 2i)   = sin(pos / 10000^(2i / d))
        PE(pos, 2i+1) = cos(pos / 10000^(2i / d))
    """
    positions = np.arange(max_length)[:, np.newaxis]
    dimension_indices = np.arange(embedding_dimension)[np.newaxis, :]
    # 2 * (i // 2) gives the [0, 0, 2, 2, 4, 4, ...] exponent pattern
    angle_rates = 1.0 / np.power(
        10000.0, (2 * (dimension_indices // 2)) / embedding_dimension
    )
    angles = positions * angle_rates

    table = np.zeros_like(angles, dtype=np.float64)
    table[:, 0::2] = np.sin(angles[:, 0::2])
    table[:, 1::2] = np.cos(angles[:, 1::2])
    return table


class PositionalEncoding(Layer):
    """
    Adds position information to a sequence of embeddings.

    "sinusoidal" uses the fixed table from "Attention Is All You Need"
    Section 3.5; "learned" owns a trainable table of the same shape.
    The first `seq` rows of the table are added to each sample.
    """

    layer_type = "positionalEncoding"

    def __init__(
        self,
        max_length: int,
        embedding_dimension: int,
        encoding_type: str = "sinusoidal",
    ):
        super().__init__()
        self.max_length = max_length
        self.embedding_dimension = embedding_dimension
        self.encoding_type = encoding_type

        if encoding_type == "learned":
            self.encoding_table = initialize(
                "randomUniform",
                (max_length, embedding_dimension),
                max_length,
                embedding_dimension,
            )
        else:
            self.encoding_table = sinusoidal_encoding_table(
                max_length, embedding_dimension
            )
        self.encoding_gradient = None
        self._sequence_length_cache = None

    @property
    def learned(self) -> bool:
        return self.encoding_type == "learned"

    def get_encoding(self, sequence_length: int) -> np.ndarray:
        if sequence_length > self.max_length:
            raise ValueError(
                f"Sequence length {sequence_length} exceeds maximum {self.max_length}"
            )
        return self.encoding_table[:sequence_length]

    def forward(self, embeddings: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Args:
            embeddings: (batch, seq, dim) or (seq, dim)
        """
        if embeddings.shape[-1] != self.embedding_dimension:
            raise ValueError(
                f"PositionalEncoding was built for dimension {self.embedding_dimension}, "
                f"got {embeddings.shape[-1]}"
            )
        sequence_length = embeddings.shape[-2]
        self._sequence_length_cache = sequence_length
        return embeddings + self.get_encoding(sequence_length)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        if self.learned:
            sequence_length = self._sequence_length_cache
            self.encoding_gradient = np.zeros_like(self.encoding_table)
            self.encoding_gradient[:sequence_length] = upstream_gradient.reshape(
                -1, sequence_length, self.embedding_dimension
            ).sum(axis=0)
        return upstream_gradient

    def get_parameters(self) -> dict:
        return {"encoding_table": self.encoding_table} if self.learned else {}

    def get_gradients(self) -> dict:
        return {"encoding_table": self.encoding_gradient} if self.learned else {}

    def get_buffers(self) -> dict:
        return {} if self.learned else {"encoding_table": self.encoding_table}


@dataclass(frozen=True)
class PositionalEncodingSpec:
    """
    Hyperparameters for a positional encoding operator.

    Attributes:
        max_length: Longest sequence the table covers
        encoding_type: "sinusoidal" or "learned"
    """

    max_length: int
    encoding_type: str = "sinusoidal"

    def build(self, input_shape: Sequence[Optional[int]]) -> PositionalEncoding:
        """
        Create an operator for inputs of the given shape.

        Args:
            input_shape: (seq, dim) or (batch, seq, dim); None marks an
                         unknown dimension

        Raises:
            OperatorBuildError: If the shape has the wrong rank or a sequence
                                longer than max_length
        """
        if len(input_shape) not in (2, 3):
            raise OperatorBuildError(
                "Invalid input shape for positional encoding: expected rank 2 or 3 "
                f"(seq, dim), got {tuple(input_shape)}"
            )
        sequence_length, embedding_dimension = input_shape[-2], input_shape[-1]
        if embedding_dimension is None:
            raise OperatorBuildError(
                "Positional encoding needs a known embedding dimension"
            )
        if sequence_length is not None and sequence_length > self.max_length:
            raise OperatorBuildError(
                f"Sequence length {sequence_length} exceeds maxLength {self.max_length}"
            )
        if self.encoding_type not in ("sinusoidal", "learned"):
            raise OperatorBuildError(f"Unknown encoding type: {self.encoding_type}")
        return PositionalEncoding(
            self.max_length, int(embedding_dimension), self.encoding_type
        )
