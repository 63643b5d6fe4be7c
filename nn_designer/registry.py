"""
Layer Specification Registry

The closed set of layer types a designed model may contain. For every type
the registry holds a display name, a description, default parameters and the
validation schema of its parameters.

Constants:
    LAYER_TYPES: All layer type tags, in palette order
    LAYER_DEFINITIONS: Mapping of type tag -> LayerDefinition

Functions:
    get_definition: Look up a LayerDefinition (fresh default params each call)
    get_schema: Parameter schema of a layer type
    is_known_layer_type: Membership test for the closed tag set
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Tuple

from nn_designer.errors import UnknownLayerTypeError
from nn_designer.rules import (
    BOOL,
    CHOICE,
    INT,
    NUMBER,
    SHAPE,
    SIZE,
    ParameterSpec,
    activation,
    array_of_positive_integers,
    boolean,
    kernel_initializer,
    one_of,
    padding,
    positive_integer,
    positive_number,
    probability,
    probability_inclusive,
    shape_rank,
    size_2d,
    value_range,
)

ParameterSchema = Dict[str, ParameterSpec]


def _bounded_int(minimum: int, maximum: int, required: bool = False, help: str = ""):
    return ParameterSpec(
        INT,
        (positive_integer(), value_range(minimum, maximum)),
        required=required,
        help=help,
    )


def _flag(help: str) -> ParameterSpec:
    return ParameterSpec(BOOL, (boolean(),), help=help)


_DENSE_SCHEMA: ParameterSchema = {
    "units": ParameterSpec(
        INT, (positive_integer(),), required=True, help="Number of neurons"
    ),
    "activation": ParameterSpec(CHOICE, (activation(),), help="Activation function"),
    "useBias": _flag("Whether to add a learnable bias"),
    "kernelInitializer": ParameterSpec(
        CHOICE, (kernel_initializer(),), help="Weight initialization scheme"
    ),
}

SCHEMAS: Dict[str, ParameterSchema] = {
    "input": {
        "shape": ParameterSpec(
            SHAPE,
            (shape_rank(1, 3), array_of_positive_integers()),
            required=True,
            help="Shape of one sample, without the batch dimension",
        ),
    },
    "dense": _DENSE_SCHEMA,
    "output": dict(_DENSE_SCHEMA),
    "conv2d": {
        "filters": ParameterSpec(
            INT, (positive_integer(),), required=True, help="Number of output channels"
        ),
        "kernelSize": ParameterSpec(
            SIZE, (size_2d(),), required=True, help="Height and width of each filter"
        ),
        "strides": ParameterSpec(SIZE, (size_2d(),), help="Step between windows"),
        "padding": ParameterSpec(CHOICE, (padding(),), help="valid or same"),
        "activation": ParameterSpec(CHOICE, (activation(),), help="Activation function"),
        "useBias": _flag("Whether to add a learnable bias"),
        "kernelInitializer": ParameterSpec(
            CHOICE, (kernel_initializer(),), help="Weight initialization scheme"
        ),
    },
    "maxpool2d": {
        "poolSize": ParameterSpec(SIZE, (size_2d(),), help="Pooling window size"),
        "strides": ParameterSpec(
            SIZE, (size_2d(),), help="Step between windows (default: pool size)"
        ),
        "padding": ParameterSpec(CHOICE, (padding(),), help="valid or same"),
    },
    "dropout": {
        "rate": ParameterSpec(
            NUMBER,
            (probability(),),
            required=True,
            help="Fraction of units dropped during training",
        ),
    },
    "flatten": {},
    "embedding": {
        "vocabSize": _bounded_int(1, 1_000_000, required=True, help="Vocabulary size"),
        "embeddingDim": _bounded_int(1, 1024, required=True, help="Vector size per token"),
        "maxLength": _bounded_int(1, 10_000, required=True, help="Longest sequence"),
        "trainable": _flag("Whether the embedding table is updated in training"),
    },
    "multiHeadAttention": {
        "numHeads": _bounded_int(1, 32, required=True, help="Number of attention heads"),
        "keyDim": _bounded_int(1, 512, required=True, help="Query/key size per head"),
        "valueDim": _bounded_int(1, 512, help="Value size per head (default: keyDim)"),
        "dropout": ParameterSpec(
            NUMBER, (probability_inclusive(),), help="Attention weight dropout"
        ),
        "useBias": _flag("Whether projections have bias terms"),
    },
    "layerNorm": {
        "epsilon": ParameterSpec(
            NUMBER,
            (positive_number(), value_range(1e-12, 1e-3)),
            help="Small constant added to the variance",
        ),
        "center": _flag("Learn a shift (beta)"),
        "scale": _flag("Learn a scale (gamma)"),
    },
    "positionalEncoding": {
        "maxLength": _bounded_int(1, 10_000, required=True, help="Longest sequence"),
        "encodingType": ParameterSpec(
            CHOICE,
            (one_of(("sinusoidal", "learned")),),
            help="Fixed sinusoidal table or a learned one",
        ),
    },
    "transformerBlock": {
        "numHeads": _bounded_int(1, 32, required=True, help="Number of attention heads"),
        "keyDim": _bounded_int(1, 512, required=True, help="Query/key size per head"),
        "ffDim": _bounded_int(1, 4096, required=True, help="Feed-forward hidden size"),
        "dropout": ParameterSpec(
            NUMBER, (probability_inclusive(),), help="Dropout rate inside the block"
        ),
    },
    "globalAvgPool1d": {},
}


@dataclass(frozen=True)
class LayerDefinition:
    """
    Static description of a layer type.

    Attributes:
        type: Layer type tag
        display_name: Human-readable name
        description: One-sentence explanation of what the layer does
        default_params: Parameters a freshly created layer starts with
        schema: Parameter name -> ParameterSpec
    """

    type: str
    display_name: str
    description: str
    default_params: Dict[str, Any] = field(default_factory=dict)
    schema: ParameterSchema = field(default_factory=dict)


def _definition(type: str, display_name: str, description: str, **defaults):
    return LayerDefinition(type, display_name, description, defaults, SCHEMAS[type])


_DEFINITIONS: Tuple[LayerDefinition, ...] = (
    _definition(
        "input",
        "Input Layer",
        "The entry point for data. Defines the shape of one sample.",
        shape=[28, 28],
    ),
    _definition(
        "dense",
        "Dense",
        "A fully connected layer: every unit sees every input value.",
        units=128,
        activation="relu",
        useBias=True,
        kernelInitializer="glorotUniform",
    ),
    _definition(
        "conv2d",
        "Conv2D",
        "Slides learned filters across an image to detect local features.",
        filters=32,
        kernelSize=3,
        strides=1,
        padding="same",
        activation="relu",
        useBias=True,
    ),
    _definition(
        "maxpool2d",
        "MaxPooling2D",
        "Keeps the maximum of each window to shrink the spatial size.",
        poolSize=2,
        padding="valid",
    ),
    _definition(
        "dropout",
        "Dropout",
        "Randomly zeroes units during training to reduce overfitting.",
        rate=0.2,
    ),
    _definition(
        "flatten",
        "Flatten",
        "Collapses a multi-dimensional sample into a vector.",
    ),
    _definition(
        "output",
        "Output",
        "The final layer producing predictions, one unit per class.",
        units=10,
        activation="softmax",
        useBias=True,
        kernelInitializer="glorotUniform",
    ),
    _definition(
        "embedding",
        "Embedding",
        "Maps integer token IDs to learned dense vectors.",
        vocabSize=10000,
        embeddingDim=128,
        maxLength=200,
        trainable=True,
    ),
    _definition(
        "multiHeadAttention",
        "Multi-Head Attention",
        "Lets every position attend to every other position of the sequence.",
        numHeads=8,
        keyDim=64,
        dropout=0.0,
        useBias=True,
    ),
    _definition(
        "layerNorm",
        "Layer Normalization",
        "Normalizes each position across its features.",
        epsilon=1e-6,
        center=True,
        scale=True,
    ),
    _definition(
        "positionalEncoding",
        "Positional Encoding",
        "Adds position information to a sequence of embeddings.",
        maxLength=200,
        encodingType="sinusoidal",
    ),
    _definition(
        "transformerBlock",
        "Transformer Block",
        "Self-attention followed by a feed-forward network, each with a "
        "residual connection and layer normalization.",
        numHeads=8,
        keyDim=64,
        ffDim=512,
        dropout=0.1,
    ),
    _definition(
        "globalAvgPool1d",
        "Global Average Pooling 1D",
        "Averages a sequence into a single vector.",
    ),
)

LAYER_DEFINITIONS: Dict[str, LayerDefinition] = {d.type: d for d in _DEFINITIONS}
LAYER_TYPES: Tuple[str, ...] = tuple(LAYER_DEFINITIONS)


def is_known_layer_type(layer_type: Any) -> bool:
    return isinstance(layer_type, str) and layer_type in LAYER_DEFINITIONS


def get_definition(layer_type: str) -> LayerDefinition:
    """
    Return the definition of a layer type.

    The returned default_params is a deep copy, so callers may edit it freely.

    Raises:
        UnknownLayerTypeError: If layer_type is not in the closed set
    """
    if not is_known_layer_type(layer_type):
        raise UnknownLayerTypeError(str(layer_type))
    definition = LAYER_DEFINITIONS[layer_type]
    return replace(definition, default_params=copy.deepcopy(definition.default_params))


def get_schema(layer_type: str) -> ParameterSchema:
    return get_definition(layer_type).schema
