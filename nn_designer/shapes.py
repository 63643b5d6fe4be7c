"""
Shape Propagation

Walks a layer list and computes the per-sample output shape of every layer
(no batch dimension), catching configuration mistakes before any weight is
allocated. Propagation stops at the first failing layer.

Before shapes are computed, the list is checked structurally (non-empty,
starts with an input layer, only known type tags) and each layer's parameters
are validated. Missing optional parameters fall back to the registry defaults.

Channel promotion: when the first layer after the input is conv2d or flatten
and the declared input shape is 2-D, [h, w] is treated as [h, w, 1]. This
happens once, only at that position.

Functions:
    resolve_layers: Full analysis of a layer list (used by the compiler)
    propagate_shapes: Per-layer output shapes, entry 0 being the input shape
    resolve_input_shape: Shape fed to the first operator (after promotion)
    conv_output_size: Output length of a convolution/pooling axis
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Sequence, Tuple

import numpy as np

from nn_designer.errors import (
    ConfigurationError,
    ParameterError,
    ShapeError,
    UnknownLayerTypeError,
)
from nn_designer.registry import get_definition, is_known_layer_type
from nn_designer.schema import LayerLike, LayerSpec, as_layer_specs
from nn_designer.validation import validate_layer

logger = logging.getLogger(__name__)

ShapeVector = Tuple[int, ...]

CHANNEL_PROMOTING_TYPES = ("conv2d", "flatten")


class _ShapeMismatch(ValueError):
    """Raised by a shape rule; converted to ShapeError with the layer index."""


@dataclass
class ResolvedLayer:
    """A validated layer with defaults merged in and its shapes resolved."""

    index: int
    spec: LayerSpec
    params: Dict[str, Any]
    input_shape: ShapeVector
    output_shape: ShapeVector

    @property
    def type(self) -> str:
        return self.spec.type


@dataclass
class ShapePlan:
    """
    Result of analysing a layer list.

    Attributes:
        declared_input_shape: Shape of the input layer as written
        input_shape: Shape fed to the first operator (after channel promotion)
        layers: Every non-input layer, in order
    """

    declared_input_shape: ShapeVector
    input_shape: ShapeVector
    layers: List[ResolvedLayer] = field(default_factory=list)

    @property
    def channel_promoted(self) -> bool:
        return self.input_shape != self.declared_input_shape

    @property
    def output_shape(self) -> ShapeVector:
        return self.layers[-1].output_shape if self.layers else self.input_shape

    @property
    def shapes(self) -> List[ShapeVector]:
        return [self.declared_input_shape] + [layer.output_shape for layer in self.layers]


def conv_output_size(size: int, kernel: int, stride: int, padding: str) -> int:
    """
    Output length along one spatial axis.

        same:  ceil(size / stride)
        valid: floor((size - kernel) / stride) + 1
    """
    if padding == "same":
        return -(-size // stride)
    return (size - kernel) // stride + 1


def _pair(value) -> Tuple[int, int]:
    if isinstance(value, list):
        return int(value[0]), int(value[1])
    return int(value), int(value)


def _require_rank(shape: ShapeVector, rank: int, description: str) -> None:
    if len(shape) != rank:
        raise _ShapeMismatch(
            f"expected a rank-{rank} input {description}, got shape {list(shape)}"
        )


def _spatial_output(
    shape: ShapeVector, kernel, strides, padding: str, what: str
) -> Tuple[int, int]:
    kernel_h, kernel_w = _pair(kernel)
    stride_h, stride_w = _pair(strides)
    out_h = conv_output_size(shape[0], kernel_h, stride_h, padding)
    out_w = conv_output_size(shape[1], kernel_w, stride_w, padding)
    if out_h < 1 or out_w < 1:
        raise _ShapeMismatch(
            f"{what} {kernel_h}x{kernel_w} does not fit input {shape[0]}x{shape[1]} "
            f"with {padding} padding"
        )
    return out_h, out_w


def _dense_shape(shape, params):
    _require_rank(shape, 1, "[features]; add a flatten layer first")
    return (params["units"],)


def _conv2d_shape(shape, params):
    _require_rank(shape, 3, "[height, width, channels]")
    out_h, out_w = _spatial_output(
        shape, params["kernelSize"], params.get("strides", 1), params["padding"], "Kernel"
    )
    return (out_h, out_w, params["filters"])


def _maxpool2d_shape(shape, params):
    _require_rank(shape, 3, "[height, width, channels]")
    pool_size = params.get("poolSize", 2)
    strides = params.get("strides") or pool_size
    out_h, out_w = _spatial_output(
        shape, pool_size, strides, params.get("padding", "valid"), "Pool window"
    )
    return (out_h, out_w, shape[2])


def _flatten_shape(shape, params):
    return (int(np.prod(shape)),)


def _identity_shape(shape, params):
    return tuple(shape)


def _sequence_shape(shape, params, description="[sequence, features]"):
    _require_rank(shape, 2, description)
    return tuple(shape)


def _positional_encoding_shape(shape, params):
    _require_rank(shape, 2, "[sequence, features]")
    if shape[0] > params["maxLength"]:
        raise _ShapeMismatch(
            f"sequence length {shape[0]} exceeds maxLength {params['maxLength']}"
        )
    return tuple(shape)


def _embedding_shape(shape, params):
    _require_rank(shape, 1, "[sequence] of token IDs")
    if shape[0] > params["maxLength"]:
        raise _ShapeMismatch(
            f"sequence length {shape[0]} exceeds maxLength {params['maxLength']}"
        )
    return (shape[0], params["embeddingDim"])


def _global_avg_pool_shape(shape, params):
    _require_rank(shape, 2, "[sequence, features]")
    return (shape[1],)


SHAPE_RULES: Dict[str, Callable[[ShapeVector, Dict[str, Any]], ShapeVector]] = {
    "dense": _dense_shape,
    "output": _dense_shape,
    "conv2d": _conv2d_shape,
    "maxpool2d": _maxpool2d_shape,
    "flatten": _flatten_shape,
    "dropout": _identity_shape,
    "layerNorm": _identity_shape,
    "positionalEncoding": _positional_encoding_shape,
    "embedding": _embedding_shape,
    "multiHeadAttention": _sequence_shape,
    "transformerBlock": _sequence_shape,
    "globalAvgPool1d": _global_avg_pool_shape,
}


def _check_structure(specs: Sequence[LayerSpec]) -> None:
    if not specs:
        raise ConfigurationError("No layers defined")
    if specs[0].type != "input":
        raise ConfigurationError(
            "First layer must be an input layer",
            layer_index=0,
            layer_type=specs[0].type,
        )
    for index, spec in enumerate(specs):
        if not is_known_layer_type(spec.type):
            raise UnknownLayerTypeError(spec.type, layer_index=index)
        if index > 0 and spec.type == "input":
            raise ConfigurationError(
                "Only the first layer may be an input layer",
                layer_index=index,
                layer_type="input",
            )
    if len(specs) == 1:
        raise ConfigurationError(
            "Model has no layers after the input layer",
            layer_index=0,
            layer_type="input",
        )


def _resolved_params(index: int, spec: LayerSpec) -> Dict[str, Any]:
    result = validate_layer(spec.type, spec.params)
    if not result.valid:
        raise ParameterError(spec.type, result.errors, layer_index=index)
    definition = get_definition(spec.type)
    optional_defaults = {
        name: value
        for name, value in definition.default_params.items()
        if not definition.schema[name].required
    }
    return {**optional_defaults, **result.values}


def resolve_layers(layers: Sequence[LayerLike]) -> ShapePlan:
    """
    Validate a layer list and resolve every layer's input and output shape.

    Raises:
        ConfigurationError: Empty list, missing/misplaced input layer, or a
                            list with nothing after the input layer
        UnknownLayerTypeError: A type tag outside the registry
        ParameterError: A layer's parameters failed validation
        ShapeError: A layer cannot accept the shape produced before it
    """
    specs = as_layer_specs(layers)
    _check_structure(specs)

    input_params = _resolved_params(0, specs[0])
    declared_shape: ShapeVector = tuple(input_params["shape"])

    input_shape = declared_shape
    if specs[1].type in CHANNEL_PROMOTING_TYPES and len(declared_shape) == 2:
        input_shape = declared_shape + (1,)
        logger.debug("Promoted input shape %s to %s", declared_shape, input_shape)

    plan = ShapePlan(declared_input_shape=declared_shape, input_shape=input_shape)
    current_shape = input_shape
    for index, spec in enumerate(specs[1:], start=1):
        params = _resolved_params(index, spec)
        try:
            output_shape = SHAPE_RULES[spec.type](current_shape, params)
        except _ShapeMismatch as exc:
            raise ShapeError(index, spec.type, str(exc)) from None
        plan.layers.append(
            ResolvedLayer(index, spec, params, current_shape, tuple(output_shape))
        )
        current_shape = tuple(output_shape)

    return plan


def propagate_shapes(layers: Sequence[LayerLike]) -> List[ShapeVector]:
    """
    Output shape of every layer, without the batch dimension.

    Entry 0 is the declared input shape; entry i is the output of layer i.

    Example:
        >>> propagate_shapes([
        ...     {"type": "input", "params": {"shape": [28, 28]}},
        ...     {"type": "conv2d", "params": {"filters": 32, "kernelSize": 3}},
        ...     {"type": "maxpool2d", "params": {"poolSize": 2}},
        ...     {"type": "flatten"},
        ...     {"type": "dense", "params": {"units": 10}},
        ... ])
        [(28, 28), (28, 28, 32), (14, 14, 32), (6272,), (10,)]
    """
    return resolve_layers(layers).shapes


def resolve_input_shape(layers: Sequence[LayerLike]) -> ShapeVector:
    """Shape fed to the first operator, after any channel promotion."""
    return resolve_layers(layers).input_shape
