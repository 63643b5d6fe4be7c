"""
Layer specification records.

A LayerSpec is one entry of the ordered layer list a user designs. The type
tag is fixed once the record exists; params are edited in place.
"""

import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from nn_designer.errors import ConfigurationError


def new_layer_id() -> str:
    return f"layer-{uuid.uuid4().hex[:12]}"


class LayerSpec(BaseModel):
    """One layer of a designed model."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=new_layer_id)
    type: str = Field(frozen=True)
    name: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _empty_params(cls, value):
        # Form state sends null for layers without parameters
        return {} if value is None else value


LayerLike = Union[LayerSpec, Mapping[str, Any]]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "record"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def as_layer_spec(layer: LayerLike, index: Optional[int] = None) -> LayerSpec:
    """
    Convert a dict to a LayerSpec (LayerSpecs are returned as is).

    Raises:
        ConfigurationError: If the record is not a mapping or has missing or
                            ill-typed fields; carries the layer index
    """
    if isinstance(layer, LayerSpec):
        return layer
    where = "Layer" if index is None else f"Layer {index}"
    if not isinstance(layer, Mapping):
        raise ConfigurationError(
            f"{where} must be a mapping with a type, got {type(layer).__name__}",
            layer_index=index,
        )
    try:
        return LayerSpec.model_validate(dict(layer))
    except ValidationError as exc:
        layer_type = layer.get("type")
        raise ConfigurationError(
            f"{where} is malformed: {_describe_validation_error(exc)}",
            layer_index=index,
            layer_type=layer_type if isinstance(layer_type, str) else None,
        ) from None


def as_layer_specs(layers: Iterable[LayerLike]) -> List[LayerSpec]:
    """Accept LayerSpecs or plain dicts such as {"type": "dense", "params": {...}}."""
    return [as_layer_spec(layer, index) for index, layer in enumerate(layers)]
