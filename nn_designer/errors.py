"""
Error Types for Layer-Graph Compilation

Every failure raised while validating, shape-checking or compiling a layer list
derives from CompileError, so callers that only care about "did it compile?"
can catch a single type. Structural problems and bad parameters are
ConfigurationErrors; tensor shape mismatches are ShapeErrors. Both carry the
index and type tag of the offending layer so a designer UI can highlight it.

Classes:
    CompileError: Base class for all compilation failures
    ConfigurationError: Structural or parameter problems in a layer list
    UnknownLayerTypeError: Layer type tag outside the closed set
    ParameterError: One or more parameters failed validation
    ShapeError: Shape propagation failed at a specific layer
    OperatorBuildError: An operator could not be built for an input shape
    ModelStateError: Operation not allowed in the current lifecycle state
"""

from typing import Dict, List, Optional


class CompileError(ValueError):
    """Base class for every layer-graph compilation failure."""

    def __init__(
        self,
        message: str,
        layer_index: Optional[int] = None,
        layer_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.layer_index = layer_index
        self.layer_type = layer_type


class ConfigurationError(CompileError):
    """The layer list is structurally wrong (empty, no input layer, ...)."""


class UnknownLayerTypeError(ConfigurationError):
    """A layer type tag is not one of the registered layer types."""

    def __init__(self, layer_type: str, layer_index: Optional[int] = None):
        super().__init__(
            f"Unknown layer type: {layer_type}",
            layer_index=layer_index,
            layer_type=layer_type,
        )


class ParameterError(ConfigurationError):
    """
    Parameters of a layer failed validation.

    Attributes:
        errors: Mapping of parameter name -> list of human-readable reasons
    """

    def __init__(
        self,
        layer_type: str,
        errors: Dict[str, List[str]],
        layer_index: Optional[int] = None,
    ):
        details = "; ".join(
            f"{name}: {', '.join(reasons)}" for name, reasons in errors.items()
        )
        location = f" at layer {layer_index}" if layer_index is not None else ""
        super().__init__(
            f"Invalid parameters for {layer_type} layer{location}: {details}",
            layer_index=layer_index,
            layer_type=layer_type,
        )
        self.errors = errors


class ShapeError(CompileError):
    """
    Shape propagation failed.

    Attributes:
        reason: Short description of the mismatch, without location info
    """

    def __init__(self, layer_index: int, layer_type: str, reason: str):
        super().__init__(
            f"Layer {layer_index} ({layer_type}): {reason}",
            layer_index=layer_index,
            layer_type=layer_type,
        )
        self.reason = reason


class OperatorBuildError(ValueError):
    """An operator spec could not be built for the given input shape."""


class ModelStateError(RuntimeError):
    """A model or compiler was used in a state that does not allow it."""
