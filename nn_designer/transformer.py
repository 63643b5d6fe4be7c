"""
Transformer Encoder Components

The position-wise feed-forward network and the post-norm transformer encoder
block behind the `transformerBlock` layer type.

Architecture of the encoder block (post-norm, as in the original paper):

    x ──> MultiHeadAttention ──> Dropout ──> + ──> LayerNorm ──> n1
    └──────────────────────────────────────────┘
    n1 ──> Dense(ff_dim, relu) ──> Dense(dim) ──> Dropout ──> + ──> LayerNorm ──> out
    └───────────────────────────────────────────────────────────┘

Dropout is active in training mode only. Both layer norms use epsilon 1e-6.

Reference: "Attention Is All You Need" (Vaswani et al., 2017) Section 3.1, 3.3

Classes:
    FeedForwardNetwork: Position-wise two-layer MLP
    TransformerEncoderBlock: Built post-norm encoder block
    TransformerEncoderBlockSpec: Hyperparameters that build an encoder block
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from nn_designer.attention import MultiHeadAttention
from nn_designer.errors import OperatorBuildError
from nn_designer.layers import Dense, Dropout, Layer, LayerNorm

LAYER_NORM_EPSILON = 1e-6


class FeedForwardNetwork(Layer):
    """
    Position-wise Feed-Forward Network.

        FFN(x) = Dense_2(activation(Dense_1(x)))

    Dense_1 expands to hidden_dimension, Dense_2 projects back to the
    embedding dimension. Applied to every position independently.

    Reference: "Attention Is All You Need" Section 3.3
    """

    layer_type = "feedForward"

    def __init__(
        self,
        embedding_dimension: int,
        hidden_dimension: Optional[int] = None,
        activation: str = "relu",
    ):
        """
        Args:
            embedding_dimension: Input and output width
            hidden_dimension: Inner width (default: 4 * embedding_dimension)
            activation: Activation between the two dense layers
        """
        super().__init__()
        self.embedding_dimension = embedding_dimension
        self.hidden_dimension = hidden_dimension or (4 * embedding_dimension)

        self.linear_1 = Dense(
            embedding_dimension, self.hidden_dimension, activation=activation
        )
        self.linear_2 = Dense(self.hidden_dimension, embedding_dimension)

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        return self.linear_2.forward(self.linear_1.forward(input_tensor))

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        return self.linear_1.backward(self.linear_2.backward(upstream_gradient))

    def get_parameters(self) -> dict:
        params = {f"linear1_{k}": v for k, v in self.linear_1.get_parameters().items()}
        params.update(
            {f"linear2_{k}": v for k, v in self.linear_2.get_parameters().items()}
        )
        return params

    def get_gradients(self) -> dict:
        grads = {f"linear1_{k}": v for k, v in self.linear_1.get_gradients().items()}
        grads.update(
            {f"linear2_{k}": v for k, v in self.linear_2.get_gradients().items()}
        )
        return grads


class TransformerEncoderBlock(Layer):
    """
    Post-norm Transformer Encoder Block.

    Forward:
        n1  = LayerNorm_1(x + Dropout_1(MHA(x)))
        out = LayerNorm_2(n1 + Dropout_2(FFN(n1)))

    Input and output shapes are identical: (batch, seq, embedding_dimension).

    Attributes:
        attention: Multi-head self-attention sub-layer
        dropout_1, dropout_2: Residual-branch dropouts
        layer_norm_1, layer_norm_2: Post-residual normalizations
        feed_forward: Position-wise FFN (relu, ff_dim hidden units)
    """

    layer_type = "transformerBlock"

    def __init__(
        self,
        embedding_dimension: int,
        num_heads: int,
        key_dim: int,
        ff_dim: int,
        dropout: float = 0.1,
    ):
        super().__init__()
        self.embedding_dimension = embedding_dimension
        self.num_heads = num_heads
        self.key_dim = key_dim
        self.ff_dim = ff_dim
        self.dropout = dropout

        self.attention = MultiHeadAttention(
            embedding_dimension, num_heads, key_dim, dropout=dropout
        )
        self.dropout_1 = Dropout(dropout)
        self.layer_norm_1 = LayerNorm(embedding_dimension, epsilon=LAYER_NORM_EPSILON)

        self.feed_forward = FeedForwardNetwork(
            embedding_dimension, ff_dim, activation="relu"
        )
        self.dropout_2 = Dropout(dropout)
        self.layer_norm_2 = LayerNorm(embedding_dimension, epsilon=LAYER_NORM_EPSILON)

    def forward(self, input_tensor: np.ndarray, training: bool = False) -> np.ndarray:
        """
        Args:
            input_tensor: (batch, seq, embedding_dimension)
            training: Enables all dropout sites

        Returns:
            (batch, seq, embedding_dimension)
        """
        attention_output = self.attention.forward(input_tensor, training=training)
        attention_output = self.dropout_1.forward(attention_output, training=training)
        normalized_1 = self.layer_norm_1.forward(input_tensor + attention_output)

        ffn_output = self.feed_forward.forward(normalized_1, training=training)
        ffn_output = self.dropout_2.forward(ffn_output, training=training)
        return self.layer_norm_2.forward(normalized_1 + ffn_output)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        # Each residual add sends the gradient down both branches
        d_residual_2 = self.layer_norm_2.backward(upstream_gradient)
        d_normalized_1 = d_residual_2 + self.feed_forward.backward(
            self.dropout_2.backward(d_residual_2)
        )

        d_residual_1 = self.layer_norm_1.backward(d_normalized_1)
        return d_residual_1 + self.attention.backward(
            self.dropout_1.backward(d_residual_1)
        )

    def _sublayers(self):
        return {
            "attention": self.attention,
            "norm1": self.layer_norm_1,
            "ffn": self.feed_forward,
            "norm2": self.layer_norm_2,
        }

    def get_parameters(self) -> dict:
        return {
            f"{prefix}_{name}": array
            for prefix, sublayer in self._sublayers().items()
            for name, array in sublayer.get_parameters().items()
        }

    def get_gradients(self) -> dict:
        return {
            f"{prefix}_{name}": array
            for prefix, sublayer in self._sublayers().items()
            for name, array in sublayer.get_gradients().items()
        }


@dataclass(frozen=True)
class TransformerEncoderBlockSpec:
    """
    Hyperparameters for a post-norm transformer encoder block.

    Attributes:
        num_heads: Attention heads
        key_dim: Per-head query/key size
        ff_dim: Hidden width of the feed-forward network
        dropout: Rate for the attention weights and both residual branches
    """

    num_heads: int
    key_dim: int
    ff_dim: int
    dropout: float = 0.1

    def build(self, input_shape: Sequence[Optional[int]]) -> TransformerEncoderBlock:
        """
        Raises:
            OperatorBuildError: If input_shape is not (seq, dim) or
                                (batch, seq, dim), or a size is not positive
        """
        if len(input_shape) not in (2, 3):
            raise OperatorBuildError(
                "Invalid input shape for transformer block: expected rank 2 or 3 "
                f"(seq, dim), got {tuple(input_shape)}"
            )
        embedding_dimension = input_shape[-1]
        if embedding_dimension is None or embedding_dimension < 1:
            raise OperatorBuildError(
                f"Invalid embedding dimension for transformer block: {embedding_dimension}"
            )
        if min(self.num_heads, self.key_dim, self.ff_dim) < 1:
            raise OperatorBuildError("numHeads, keyDim and ffDim must be positive integers")
        if not 0.0 <= self.dropout <= 1.0:
            raise OperatorBuildError(f"Dropout must be in [0, 1], got {self.dropout}")

        return TransformerEncoderBlock(
            embedding_dimension=int(embedding_dimension),
            num_heads=self.num_heads,
            key_dim=self.key_dim,
            ff_dim=self.ff_dim,
            dropout=self.dropout,
        )
