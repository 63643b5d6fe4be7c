"""
Multi-Head Self-Attention

Scaled dot-product attention and the multi-head self-attention operator used
by the `multiHeadAttention` and `transformerBlock` layer types, built from
dense projections, reshapes, transposes, batched matmuls, softmax and dropout.

Operators are created in two phases: an immutable MultiHeadAttentionSpec holds
the hyperparameters, and spec.build(input_shape) returns a MultiHeadAttention
that owns freshly initialized weights sized for that input.

Reference: "Attention Is All You Need" (Vaswani et al., 2017) Section 3.2
           https://arxiv.org/abs/1706.03762

Functions:
    scaled_dot_product_attention: Core attention computation
    attention_backward: Gradient computation for attention

Classes:
    MultiHeadAttention: Built multi-head self-attention operator
    MultiHeadAttentionSpec: Hyperparameters that build a MultiHeadAttention
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from nn_designer.activations import softmax, softmax_backward
from nn_designer.errors import OperatorBuildError
from nn_designer.layers import Dense, Layer, dropout_mask


def scaled_dot_product_attention(
    query: np.ndarray,
    key: np.ndarray,
    value: np.ndarray,
    dropout_weights: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Compute softmax(Q @ K^T / sqrt(d_k)) @ V over any number of leading axes.

    Args:
        query: (..., seq_q, d_k)
        key: (..., seq_k, d_k)
        value: (..., seq_k, d_v)
        dropout_weights: Optional scaled keep-mask of shape (..., seq_q, seq_k)
                         applied to the attention weights before they meet V

    Returns:
        output: (..., seq_q, d_v)
        attention_weights: (..., seq_q, seq_k), before dropout

    Example:
        >>> Q = np.random.randn(2, 4, 10, 16)  # batch, heads, seq, d_k
        >>> output, weights = scaled_dot_product_attention(Q, Q, Q)
    """
    d_k = query.shape[-1]

    # (..., seq_q, d_k) @ (..., d_k, seq_k) -> (..., seq_q, seq_k)
    scores = np.matmul(query, np.swapaxes(key, -1, -2)) / np.sqrt(d_k)
    attention_weights = softmax(scores, axis=-1)

    applied_weights = attention_weights
    if dropout_weights is not None:
        applied_weights = attention_weights * dropout_weights

    return np.matmul(applied_weights, value), attention_weights


def attention_backward(
    upstream_gradient: np.ndarray,
    query: np.ndarray,
    key: np.ndarray,
    value: np.ndarray,
    attention_weights: np.ndarray,
    dropout_weights: Optional[np.ndarray] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Gradients of scaled dot-product attention w.r.t. query, key and value.

    Args:
        upstream_gradient: Gradient w.r.t. the attention output, (..., seq_q, d_v)
        query, key, value: Inputs of the forward pass
        attention_weights: Softmax output of the forward pass (before dropout)
        dropout_weights: The keep-mask used in the forward pass, if any

    Returns:
        d_query, d_key, d_value
    """
    applied_weights = attention_weights
    if dropout_weights is not None:
        applied_weights = attention_weights * dropout_weights

    # output = applied_weights @ value
    d_value = np.matmul(np.swapaxes(applied_weights, -1, -2), upstream_gradient)
    d_applied = np.matmul(upstream_gradient, np.swapaxes(value, -1, -2))

    d_weights = d_applied if dropout_weights is None else d_applied * dropout_weights
    d_scores = softmax_backward(d_weights, attention_weights) / np.sqrt(query.shape[-1])

    # scores = query @ key^T
    d_query = np.matmul(d_scores, key)
    d_key = np.matmul(np.swapaxes(d_scores, -1, -2), query)

    return d_query, d_key, d_value


class MultiHeadAttention(Layer):
    """
    Multi-Head Self-Attention.

    Architecture:
        1. Project the input to Q and K (num_heads * key_dim) and to
           V (num_heads * value_dim)
        2. Split heads: (batch, seq, heads * d) -> (batch, heads, seq, d)
        3. Scaled dot-product attention per head, with dropout on the
           attention weights in training mode
        4. Merge heads back to (batch, seq, heads * value_dim)
        5. Project back to the input width

    The output has the same shape as the input.

    Reference: "Attention Is All You Need" Section 3.2.2
    """

    layer_type = "multiHeadAttention"

    def __init__(
        self,
        embedding_dimension: int,
        num_heads: int,
        key_dim: int,
        value_dim: Optional[int] = None,
        dropout: float = 0.0,
        use_bias: bool = True,
    ):
        """
        Args:
            embedding_dimension: Width of the input and output (d_model)
            num_heads: Number of attention heads
            key_dim: Per-head size of queries and keys
            value_dim: Per-head size of values (default: key_dim)
            dropout: Dropout rate on attention weights, training only
            use_bias: Whether the projections have bias terms
        """
        super().__init__()
        self.embedding_dimension = embedding_dimension
        self.num_heads = num_heads
        self.key_dim = key_dim
        self.value_dim = value_dim or key_dim
        self.dropout = dropout
        self.use_bias = use_bias

        self.query_projection = Dense(
            embedding_dimension, num_heads * key_dim, use_bias=use_bias
        )
        self.key_projection = Dense(
            embedding_dimension, num_heads * key_dim, use_bias=use_bias
        )
        self.value_projection = Dense(
            embedding_dimension, num_heads * self.value_dim, use_bias=use_bias
        )
        self.output_projection = Dense(
            num_heads * self.value_dim, embedding_dimension, use_bias=use_bias
        )

        self._query_cache = None
        self._key_cache = None
        self._value_cache = None
        self._attention_weights_cache = None
        self._dropout_cache = None

    def _split_heads(self, tensor: np.ndarray, head_size: int) -> np.ndarray:
        # (batch, seq, heads * d) -> (batch, heads, seq, d)
        batch_size, sequence_length, _ = tensor.shape
        return tensor.reshape(
            batch_size, sequence_length, self.num_heads, head_size
        ).transpose(0, 2, 1, 3)

    @staticmethod
    def _merge_heads(tensor: np.ndarray) -> np.ndarray:
        # (batch, heads, seq, d) -> (batch, seq, heads * d)
        batch_size, num_heads, sequence_length, head_size = tensor.shape
        return tensor.transpose(0, 2, 1, 3).reshape(
            batch_size, sequence_length, num_heads * head_size
        )

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Args:
            input_tensor: (batch, seq, embedding_dimension)
            training: Enables dropout on the attention weights

        Returns:
            (batch, seq, embedding_dimension)
        """
        if input_tensor.ndim != 3 or input_tensor.shape[-1] != self.embedding_dimension:
            raise ValueError(
                "MultiHeadAttention expected input of shape "
                f"(batch, seq, {self.embedding_dimension}), got {input_tensor.shape}"
            )

        query = self._split_heads(self.query_projection.forward(input_tensor), self.key_dim)
        key = self._split_heads(self.key_projection.forward(input_tensor), self.key_dim)
        value = self._split_heads(
            self.value_projection.forward(input_tensor), self.value_dim
        )

        batch_size, sequence_length = input_tensor.shape[:2]
        keep_mask = None
        if training and self.dropout > 0.0:
            keep_mask = dropout_mask(
                (batch_size, self.num_heads, sequence_length, sequence_length),
                self.dropout,
            )

        context, attention_weights = scaled_dot_product_attention(
            query, key, value, keep_mask
        )

        self._query_cache = query
        self._key_cache = key
        self._value_cache = value
        self._attention_weights_cache = attention_weights
        self._dropout_cache = keep_mask

        return self.output_projection.forward(self._merge_heads(context))

    @property
    def attention_weights(self) -> Optional[np.ndarray]:
        """Attention weights of the last forward pass, (batch, heads, seq, seq)."""
        return self._attention_weights_cache

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """
        Backward pass for self-attention.

        Q, K and V are all projections of the same input, so the input
        gradient is the sum of the three projection gradients.
        """
        d_context = self._split_heads(
            self.output_projection.backward(upstream_gradient), self.value_dim
        )

        d_query, d_key, d_value = attention_backward(
            d_context,
            self._query_cache,
            self._key_cache,
            self._value_cache,
            self._attention_weights_cache,
            self._dropout_cache,
        )

        return (
            self.query_projection.backward(self._merge_heads(d_query))
            + self.key_projection.backward(self._merge_heads(d_key))
            + self.value_projection.backward(self._merge_heads(d_value))
        )

    def _projections(self):
        return {
            "query": self.query_projection,
            "key": self.key_projection,
            "value": self.value_projection,
            "output": self.output_projection,
        }

    def get_parameters(self) -> dict:
        return {
            f"{prefix}_{name}": array
            for prefix, projection in self._projections().items()
            for name, array in projection.get_parameters().items()
        }

    def get_gradients(self) -> dict:
        return {
            f"{prefix}_{name}": array
            for prefix, projection in self._projections().items()
            for name, array in projection.get_gradients().items()
        }


@dataclass(frozen=True)
class MultiHeadAttentionSpec:
    """
    Hyperparameters for multi-head self-attention.

    Attributes:
        num_heads: Number of attention heads
        key_dim: Per-head size of queries and keys
        value_dim: Per-head size of values (None: same as key_dim)
        dropout: Attention-weight dropout rate in [0, 1]
        use_bias: Whether projections carry bias terms
    """

    num_heads: int
    key_dim: int
    value_dim: Optional[int] = None
    dropout: float = 0.0
    use_bias: bool = True

    def build(self, input_shape: Sequence[Optional[int]]) -> MultiHeadAttention:
        """
        Create an operator with weights sized for input_shape.

        Args:
            input_shape: (seq, dim) or (batch, seq, dim)

        Raises:
            OperatorBuildError: If the rank is below 2 or a hyperparameter
                                is out of range
        """
        if len(input_shape) < 2:
            raise OperatorBuildError(
                "Invalid input shape for multi-head attention: expected at least "
                f"rank 2 (seq, dim), got {tuple(input_shape)}"
            )
        embedding_dimension = input_shape[-1]
        if embedding_dimension is None or embedding_dimension < 1:
            raise OperatorBuildError(
                f"Invalid embedding dimension for multi-head attention: {embedding_dimension}"
            )
        if self.num_heads < 1 or self.key_dim < 1:
            raise OperatorBuildError("numHeads and keyDim must be positive integers")
        if self.value_dim is not None and self.value_dim < 1:
            raise OperatorBuildError("valueDim must be a positive integer")
        if not 0.0 <= self.dropout <= 1.0:
            raise OperatorBuildError(f"Dropout must be in [0, 1], got {self.dropout}")

        return MultiHeadAttention(
            embedding_dimension=int(embedding_dimension),
            num_heads=self.num_heads,
            key_dim=self.key_dim,
            value_dim=self.value_dim,
            dropout=self.dropout,
            use_bias=self.use_bias,
        )
