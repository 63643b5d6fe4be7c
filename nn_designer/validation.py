"""
Parameter Validator

Checks a layer's parameters against the schema of its type. Validation is
per-parameter and exhaustive: every parameter is checked, every failing rule
is reported, and the complete error map comes back in a single pass.

Raw values are coerced before the rules run, so form input such as "128",
"true" or "[3, 3]" validates the same as 128, True or [3, 3].

Functions:
    validate_layer: Validate one layer's parameters
    validate_layers: Validate every layer of a list
    sanitize_parameter_value: Coerce a single parameter value
    describe_parameter: One-line human description of a parameter's constraints
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from nn_designer.errors import UnknownLayerTypeError
from nn_designer.registry import get_schema
from nn_designer.rules import CoercionError, coerce_value, is_missing
from nn_designer.schema import LayerLike, as_layer_specs

REQUIRED_MESSAGE = "This field is required"


@dataclass
class ValidationResult:
    """
    Outcome of validating one layer.

    Attributes:
        valid: True when no parameter failed
        errors: Parameter name -> list of reasons (only failing parameters)
        values: Coerced values of the known parameters that were supplied
    """

    valid: bool
    errors: Dict[str, List[str]] = field(default_factory=dict)
    values: Dict[str, Any] = field(default_factory=dict)


def validate_layer(
    layer_type: str, params: Optional[Mapping[str, Any]]
) -> ValidationResult:
    """
    Validate the parameters of a layer of the given type.

    Args:
        layer_type: Layer type tag
        params: Raw parameter mapping (may be None for parameterless layers)

    Returns:
        ValidationResult with the full error map

    Raises:
        UnknownLayerTypeError: If layer_type is not a registered type
    """
    schema = get_schema(layer_type)
    params = dict(params or {})
    errors: Dict[str, List[str]] = {}
    values: Dict[str, Any] = {}

    for name in params:
        if name not in schema:
            errors[name] = [f"Unknown parameter for {layer_type} layer"]

    for name, spec in schema.items():
        raw_value = params.get(name)
        if is_missing(raw_value):
            if spec.required:
                errors[name] = [REQUIRED_MESSAGE]
            continue

        try:
            value = coerce_value(spec.kind, raw_value)
        except CoercionError as exc:
            errors[name] = [str(exc)]
            continue

        failures = spec.check(value)
        if failures:
            errors[name] = failures
        values[name] = value

    return ValidationResult(valid=not errors, errors=errors, values=values)


def validate_layers(layers: Sequence[LayerLike]) -> Dict[int, ValidationResult]:
    """
    Validate every layer of a list.

    Returns:
        Mapping of layer index -> ValidationResult, for failing layers only

    Raises:
        UnknownLayerTypeError: For the first layer whose type is unknown
    """
    failing = {}
    for index, layer in enumerate(as_layer_specs(layers)):
        try:
            result = validate_layer(layer.type, layer.params)
        except UnknownLayerTypeError:
            raise UnknownLayerTypeError(layer.type, layer_index=index) from None
        if not result.valid:
            failing[index] = result
    return failing


def sanitize_parameter_value(layer_type: str, name: str, value: Any) -> Any:
    """
    Coerce one raw value to the type its parameter expects.

    Unknown parameters and values that cannot be coerced are returned
    unchanged; validate_layer reports them.
    """
    spec = get_schema(layer_type).get(name)
    if spec is None:
        return value
    try:
        return coerce_value(spec.kind, value)
    except CoercionError:
        return value


def describe_parameter(layer_type: str, name: str) -> Optional[str]:
    """
    Describe the constraints on a parameter, e.g.
    "Required. Positive integer (1, 2, 3...). Must be between 1 and 32".

    Returns None for unknown parameters.
    """
    spec = get_schema(layer_type).get(name)
    if spec is None:
        return None

    parts = []
    if spec.required:
        parts.append("Required")
    for rule in spec.rules:
        if "positive integer" in rule.message:
            parts.append("Positive integer (1, 2, 3...)")
        elif "between 0 and 1" in rule.message:
            parts.append("Decimal between 0 and 1")
        else:
            parts.append(rule.message)
    if spec.help:
        parts.append(spec.help)
    return ". ".join(parts) if parts else None
