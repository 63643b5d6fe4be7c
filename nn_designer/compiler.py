"""
Model Graph Compiler

Turns a validated, shape-checked layer list into a CompiledModel: one
operator per non-input layer, chained into a single forward computation.

Compilation order:
    1. Structural checks, parameter validation and shape propagation
       (nn_designer.shapes.resolve_layers); the first failure is raised
    2. Each layer is built by the operator builder registered for its type,
       receiving the shape produced by the previous layer
    3. The operators and their shapes are wrapped in a CompiledModel, whose
       weights are registered with the memory tracker until disposal

Classes:
    CompiledModel: Executable, trainable chain of operators
    CompilerState: Lifecycle states of a ModelCompiler
    ModelCompiler: Keeps at most one live compiled model

Functions:
    register_operator: Decorator adding a builder to the dispatch table
    compile_model: Compile a layer list into a CompiledModel
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from nn_designer.attention import MultiHeadAttentionSpec
from nn_designer.errors import (
    CompileError,
    ModelStateError,
    OperatorBuildError,
    ShapeError,
)
from nn_designer.layers import (
    Conv2D,
    Dense,
    Dropout,
    Embedding,
    Flatten,
    GlobalAveragePooling1D,
    Layer,
    LayerNorm,
    MaxPool2D,
    PositionalEncodingSpec,
)
from nn_designer.memory import release_tensors, track_tensors
from nn_designer.schema import LayerLike
from nn_designer.shapes import ResolvedLayer, ShapePlan, ShapeVector, resolve_layers
from nn_designer.transformer import TransformerEncoderBlockSpec

logger = logging.getLogger(__name__)

OperatorBuilder = Callable[[Dict[str, Any], ShapeVector], Layer]
OPERATOR_BUILDERS: Dict[str, OperatorBuilder] = {}


def register_operator(layer_type: str):
    """Register a builder(params, input_shape) -> Layer for a layer type."""

    def decorator(func: OperatorBuilder) -> OperatorBuilder:
        OPERATOR_BUILDERS[layer_type] = func
        return func

    return decorator


# --- Operator builders ---
# params arrive validated, with the optional registry defaults merged in
# (shapes.resolve_layers). Only parameters without a registry default use .get.


@register_operator("dense")
def build_dense(params, input_shape):
    return Dense(
        input_features=input_shape[-1],
        units=params["units"],
        activation=params["activation"],
        use_bias=params["useBias"],
        kernel_initializer=params["kernelInitializer"],
    )


@register_operator("output")
def build_output(params, input_shape):
    return Dense(
        input_features=input_shape[-1],
        units=params["units"],
        activation=params["activation"],
        use_bias=params["useBias"],
        kernel_initializer=params["kernelInitializer"],
    )


@register_operator("conv2d")
def build_conv2d(params, input_shape):
    return Conv2D(
        in_channels=input_shape[-1],
        filters=params["filters"],
        kernel_size=params["kernelSize"],
        strides=params["strides"],
        padding=params["padding"],
        activation=params["activation"],
        use_bias=params["useBias"],
        kernel_initializer=params.get("kernelInitializer", "glorotUniform"),
    )


@register_operator("maxpool2d")
def build_maxpool2d(params, input_shape):
    return MaxPool2D(
        pool_size=params["poolSize"],
        strides=params.get("strides"),
        padding=params["padding"],
    )


@register_operator("dropout")
def build_dropout(params, input_shape):
    return Dropout(params["rate"])


@register_operator("flatten")
def build_flatten(params, input_shape):
    return Flatten()


@register_operator("embedding")
def build_embedding(params, input_shape):
    return Embedding(
        vocabulary_size=params["vocabSize"],
        embedding_dimension=params["embeddingDim"],
        trainable=params["trainable"],
    )


@register_operator("layerNorm")
def build_layer_norm(params, input_shape):
    return LayerNorm(
        input_shape[-1],
        epsilon=params["epsilon"],
        center=params["center"],
        scale=params["scale"],
    )


@register_operator("positionalEncoding")
def build_positional_encoding(params, input_shape):
    spec = PositionalEncodingSpec(
        max_length=params["maxLength"],
        encoding_type=params["encodingType"],
    )
    return spec.build(input_shape)


@register_operator("multiHeadAttention")
def build_multi_head_attention(params, input_shape):
    spec = MultiHeadAttentionSpec(
        num_heads=params["numHeads"],
        key_dim=params["keyDim"],
        value_dim=params.get("valueDim"),
        dropout=params["dropout"],
        use_bias=params["useBias"],
    )
    return spec.build(input_shape)


@register_operator("transformerBlock")
def build_transformer_block(params, input_shape):
    spec = TransformerEncoderBlockSpec(
        num_heads=params["numHeads"],
        key_dim=params["keyDim"],
        ff_dim=params["ffDim"],
        dropout=params["dropout"],
    )
    return spec.build(input_shape)


@register_operator("globalAvgPool1d")
def build_global_avg_pool_1d(params, input_shape):
    return GlobalAveragePooling1D()


class CompiledModel:
    """
    An executable chain of operators produced by compile_model.

    The model exclusively owns its operators' weights. After dispose() the
    weights are dropped and every method except dispose() raises
    ModelStateError.

    Attributes:
        layers: Resolved layer records (type, params, shapes), one per operator
        operators: The built operators, in execution order
    """

    def __init__(self, plan: ShapePlan, operators: Sequence[Layer]):
        self._plan = plan
        self.layers: List[ResolvedLayer] = list(plan.layers)
        self.operators: List[Layer] = list(operators)
        self._disposed = False
        track_tensors(self, self._owned_tensors())

    def _owned_tensors(self) -> List[np.ndarray]:
        tensors = []
        for operator in self.operators:
            tensors.extend(operator.get_parameters().values())
            tensors.extend(operator.get_non_trainable().values())
            tensors.extend(operator.get_buffers().values())
        return tensors

    def _check_live(self) -> None:
        if self._disposed:
            raise ModelStateError("Model has been disposed")

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def input_shape(self) -> ShapeVector:
        """Per-sample shape the first operator receives (after promotion)."""
        return self._plan.input_shape

    @property
    def declared_input_shape(self) -> ShapeVector:
        return self._plan.declared_input_shape

    def output_shape(self) -> ShapeVector:
        """Per-sample shape of the model output, without the batch dimension."""
        self._check_live()
        return self._plan.output_shape

    def _prepare_input(self, batch) -> np.ndarray:
        batch = np.asarray(batch)
        sample_shape = tuple(batch.shape[1:])
        if sample_shape == self.input_shape:
            return batch
        if self._plan.channel_promoted and sample_shape == self.declared_input_shape:
            return batch[..., np.newaxis]
        raise ValueError(
            f"Expected a batch of samples with shape {list(self.input_shape)}, "
            f"got array of shape {list(batch.shape)}"
        )

    def forward(self, batch, training: bool = False) -> np.ndarray:
        """
        Run every operator in order.

        Args:
            batch: Array of shape (batch, *input_shape). For a channel-promoted
                   model, (batch, height, width) is also accepted.
            training: Enables dropout
        """
        self._check_live()
        output = self._prepare_input(batch)
        for operator in self.operators:
            output = operator.forward(output, training=training)
        return output

    def predict(self, batch) -> np.ndarray:
        """Inference-mode forward pass."""
        return self.forward(batch, training=False)

    def backward(self, upstream_gradient: np.ndarray) -> np.ndarray:
        """Backpropagate through every operator; fills each operator's gradients."""
        self._check_live()
        gradient = upstream_gradient
        for operator in reversed(self.operators):
            gradient = operator.backward(gradient)
        return gradient

    def _prefixed(self, getter: Callable[[Layer], Dict[str, np.ndarray]]):
        named = {}
        for layer, operator in zip(self.layers, self.operators):
            for name, array in getter(operator).items():
                named[f"layer_{layer.index}_{name}"] = array
        return named

    def get_parameters(self) -> Dict[str, np.ndarray]:
        """All trainable arrays, keyed "layer_<index>_<name>"."""
        self._check_live()
        return self._prefixed(lambda operator: operator.get_parameters())

    def get_gradients(self) -> Dict[str, np.ndarray]:
        self._check_live()
        return self._prefixed(lambda operator: operator.get_gradients())

    def parameter_count(self) -> int:
        """Number of trainable scalars."""
        self._check_live()
        return sum(operator.parameter_count() for operator in self.operators)

    def total_parameter_count(self) -> int:
        """Trainable plus frozen weights."""
        self._check_live()
        return sum(operator.total_parameter_count() for operator in self.operators)

    def summary(self) -> str:
        """Keras-style table of layers, output shapes and parameter counts."""
        self._check_live()
        rows = [("Layer (type)", "Output Shape", "Param #")]
        rows.append(("input (input)", str([None, *self.declared_input_shape]), "0"))
        for layer, operator in zip(self.layers, self.operators):
            label = layer.spec.name or f"layer_{layer.index}"
            rows.append(
                (
                    f"{label} ({layer.type})",
                    str([None, *layer.output_shape]),
                    str(operator.total_parameter_count()),
                )
            )
        widths = [max(len(row[i]) for row in rows) + 2 for i in range(3)]
        lines = ["".join(cell.ljust(widths[i]) for i, cell in enumerate(rows[0]))]
        lines.append("=" * sum(widths))
        for row in rows[1:]:
            lines.append("".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
        lines.append("=" * sum(widths))
        total = self.total_parameter_count()
        trainable = self.parameter_count()
        lines.append(f"Total params: {total:,}")
        lines.append(f"Trainable params: {trainable:,}")
        lines.append(f"Non-trainable params: {total - trainable:,}")
        return "\n".join(lines)

    def dispose(self) -> None:
        """Release every weight. Safe to call more than once."""
        if self._disposed:
            return
        released = release_tensors(self)
        for operator in self.operators:
            operator.dispose()
        self._disposed = True
        logger.debug("Disposed model, released %d tensors", released)


def compile_model(layers: Sequence[LayerLike]) -> CompiledModel:
    """
    Compile an ordered layer list into an executable model.

    Args:
        layers: LayerSpecs (or dicts with type/params); the first must be
                an input layer

    Returns:
        CompiledModel ready for forward/backward passes

    Raises:
        ConfigurationError: Structural problems, including unknown type tags
                            (UnknownLayerTypeError) and invalid parameters
                            (ParameterError)
        ShapeError: A layer cannot accept its incoming shape

    Example:
        >>> model = compile_model([
        ...     {"type": "input", "params": {"shape": [4]}},
        ...     {"type": "dense", "params": {"units": 3}},
        ... ])
        >>> model.output_shape()
        (3,)
    """
    plan = resolve_layers(layers)

    operators: List[Layer] = []
    try:
        for layer in plan.layers:
            builder = OPERATOR_BUILDERS[layer.type]
            try:
                operators.append(builder(layer.params, layer.input_shape))
            except OperatorBuildError as exc:
                raise ShapeError(layer.index, layer.type, str(exc)) from exc
    except CompileError:
        for operator in operators:
            operator.dispose()
        raise

    model = CompiledModel(plan, operators)
    logger.debug(
        "Compiled %d operators: %s -> %s (%d trainable parameters)",
        len(operators),
        list(plan.input_shape),
        list(plan.output_shape),
        model.parameter_count(),
    )
    return model


class CompilerState(Enum):
    UNINITIALIZED = "uninitialized"
    COMPILING = "compiling"
    COMPILED = "compiled"
    FAILED = "failed"


class ModelCompiler:
    """
    Owns at most one live CompiledModel.

    Lifecycle:
        UNINITIALIZED --compile--> COMPILING --> COMPILED
                                          \\--> FAILED
        COMPILED --dispose--> UNINITIALIZED
        FAILED   --reset----> UNINITIALIZED

    Compiling while COMPILED disposes the current model first. FAILED is
    terminal: fix the layer list and call reset() before compiling again.
    """

    def __init__(self):
        self.state = CompilerState.UNINITIALIZED
        self.model: Optional[CompiledModel] = None
        self.last_error: Optional[Exception] = None

    def compile(self, layers: Sequence[LayerLike]) -> CompiledModel:
        if self.state is CompilerState.FAILED:
            raise ModelStateError(
                "Compiler is in the failed state; call reset() before compiling again"
            )
        if self.state is CompilerState.COMPILING:
            raise ModelStateError("A compilation is already in progress")

        if self.model is not None:
            self.model.dispose()
            self.model = None

        self.state = CompilerState.COMPILING
        try:
            model = compile_model(layers)
        except Exception as exc:
            self.state = CompilerState.FAILED
            self.last_error = exc
            logger.debug("Compilation failed: %s", exc)
            raise

        self.model = model
        self.state = CompilerState.COMPILED
        return model

    def dispose(self) -> None:
        """Release the live model (if any) and return to UNINITIALIZED."""
        if self.model is not None:
            self.model.dispose()
            self.model = None
        if self.state is CompilerState.COMPILED:
            self.state = CompilerState.UNINITIALIZED

    def reset(self) -> None:
        """Leave the FAILED state (also disposes any live model)."""
        self.dispose()
        self.state = CompilerState.UNINITIALIZED
        self.last_error = None


if __name__ == "__main__":
    from nn_designer.memory import memory_info

    print("=" * 70)
    print("MODEL COMPILER DEMO")
    print("=" * 70)
    print()
    print("A designed model is an ordered list of layer records. The compiler")
    print("checks it, propagates shapes, and builds one operator per layer.")
    print()

    np.random.seed(42)
    layers = [
        {"type": "input", "params": {"shape": [28, 28]}},
        {"type": "conv2d", "params": {"filters": 8, "kernelSize": 3, "padding": "same"}},
        {"type": "maxpool2d", "params": {"poolSize": 2}},
        {"type": "flatten"},
        {"type": "dense", "params": {"units": 32, "activation": "relu"}},
        {"type": "output", "params": {"units": 10}},
    ]

    # -------------------------------------------------------------------------
    # 1. Compile and inspect
    # -------------------------------------------------------------------------
    print("-" * 70)
    print("1. COMPILE - one operator per non-input layer")
    print("-" * 70)
    before = memory_info()
    model = compile_model(layers)
    print(model.summary())
    print()
    print(f"Input was declared as {list(model.declared_input_shape)}, "
          f"the first operator receives {list(model.input_shape)}")
    print()

    # -------------------------------------------------------------------------
    # 2. Predict
    # -------------------------------------------------------------------------
    print("-" * 70)
    print("2. PREDICT - both [b, 28, 28] and [b, 28, 28, 1] batches work")
    print("-" * 70)
    batch = np.random.rand(2, 28, 28)
    probabilities = model.predict(batch)
    print(f"Output shape: {probabilities.shape}")
    print(f"Row sums (softmax): {probabilities.sum(axis=-1)}")
    print(f"Same result with a channel axis: "
          f"{np.allclose(probabilities, model.predict(batch[..., None]))}")
    print()

    # -------------------------------------------------------------------------
    # 3. Errors name the failing layer
    # -------------------------------------------------------------------------
    print("-" * 70)
    print("3. ERRORS - the first failing layer is reported")
    print("-" * 70)
    for broken in (
        layers[:3] + [{"type": "bogus"}],
        layers[:3] + [{"type": "dense", "params": {"units": 10}}],
        layers[:1] + [{"type": "conv2d", "params": {"filters": 0, "kernelSize": 3}}],
    ):
        try:
            compile_model(broken)
        except CompileError as exc:
            print(f"  {type(exc).__name__}: {exc}")
    print()

    # -------------------------------------------------------------------------
    # 4. Dispose
    # -------------------------------------------------------------------------
    print("-" * 70)
    print("4. DISPOSE - weights are released")
    print("-" * 70)
    during = memory_info()
    model.dispose()
    after = memory_info()
    print(f"Tracked tensors: before {before.num_tensors}, "
          f"while live {during.num_tensors}, after dispose {after.num_tensors}")
    print()
    print("=" * 70)
    print("Compiler demo complete!")
    print("=" * 70)
