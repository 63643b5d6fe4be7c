"""
Parameter Validation Rules

Reusable, composable rules for layer parameters. A ParameterSpec combines a
value kind (which drives string coercion), a required flag and a tuple of
rules; every rule of a parameter is evaluated and all failing messages are
reported together.

Classes:
    ValidationRule: A predicate plus the message reported when it fails
    ParameterSpec: Declaration of one layer parameter
    CoercionError: A value could not be converted to the parameter's kind

Functions:
    positive_integer, positive_number, probability, probability_inclusive,
    value_range, one_of, array_of_positive_integers, shape_rank, boolean,
    activation, kernel_initializer, padding, size_2d: Rule constructors
    coerce_value: Convert UI-style input (strings, tuples, numpy scalars)
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

import numpy as np

from nn_designer.activations import ACTIVATIONS
from nn_designer.initializers import INITIALIZERS

# Value kinds understood by coerce_value
INT = "int"
NUMBER = "number"
BOOL = "bool"
CHOICE = "choice"
SHAPE = "shape"
SIZE = "size"


@dataclass(frozen=True)
class ValidationRule:
    check: Callable[[Any], bool]
    message: str

    def __call__(self, value: Any) -> bool:
        return bool(self.check(value))


@dataclass(frozen=True)
class ParameterSpec:
    """
    Declaration of a single layer parameter.

    Attributes:
        kind: One of INT, NUMBER, BOOL, CHOICE, SHAPE, SIZE
        rules: Rules applied, in order, to a present value
        required: Whether a missing value is an error
        help: Short human description shown next to the field
    """

    kind: str
    rules: Tuple[ValidationRule, ...] = ()
    required: bool = False
    help: str = ""

    def check(self, value: Any) -> List[str]:
        """Return the messages of every rule the (coerced) value fails."""
        return [rule.message for rule in self.rules if not rule(value)]


class CoercionError(ValueError):
    """Input could not be converted to the kind a parameter expects."""


def is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value == "")


def _is_number(value: Any) -> bool:
    # bool is an int subclass, but True is never a valid layer size
    return isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(
        value, (bool, np.bool_)
    )


def _is_integer(value: Any) -> bool:
    if not _is_number(value):
        return False
    return float(value).is_integer()


def _is_positive_integer(value: Any) -> bool:
    return _is_integer(value) and value > 0


def positive_integer() -> ValidationRule:
    return ValidationRule(_is_positive_integer, "Must be a positive integer")


def positive_number() -> ValidationRule:
    return ValidationRule(
        lambda value: _is_number(value) and value > 0, "Must be a positive number"
    )


def probability() -> ValidationRule:
    """Strictly between 0 and 1."""
    return ValidationRule(
        lambda value: _is_number(value) and 0 < value < 1, "Must be between 0 and 1"
    )


def probability_inclusive() -> ValidationRule:
    return ValidationRule(
        lambda value: _is_number(value) and 0 <= value <= 1,
        "Must be between 0 and 1 (inclusive)",
    )


def _format_bound(bound: float) -> str:
    return str(int(bound)) if float(bound).is_integer() else str(bound)


def value_range(minimum: float, maximum: float) -> ValidationRule:
    return ValidationRule(
        lambda value: _is_number(value) and minimum <= value <= maximum,
        f"Must be between {_format_bound(minimum)} and {_format_bound(maximum)}",
    )


def one_of(allowed: Sequence[str], message: Optional[str] = None) -> ValidationRule:
    allowed = tuple(allowed)
    return ValidationRule(
        lambda value: value in allowed,
        message or f"Must be one of: {', '.join(allowed)}",
    )


def array_of_positive_integers() -> ValidationRule:
    return ValidationRule(
        lambda value: isinstance(value, list)
        and all(_is_positive_integer(v) for v in value),
        "Must be an array of positive integers",
    )


def shape_rank(minimum: int = 1, maximum: int = 3) -> ValidationRule:
    return ValidationRule(
        lambda value: isinstance(value, list) and minimum <= len(value) <= maximum,
        f"Shape must be an array with {minimum}-{maximum} dimensions",
    )


def boolean() -> ValidationRule:
    return ValidationRule(
        lambda value: isinstance(value, (bool, np.bool_)), "Must be true or false"
    )


def activation() -> ValidationRule:
    return one_of(ACTIVATIONS, "Must be a valid activation function")


def kernel_initializer() -> ValidationRule:
    return one_of(INITIALIZERS, "Must be a valid kernel initializer")


def padding() -> ValidationRule:
    return one_of(("valid", "same"), 'Must be "valid" or "same"')


def size_2d() -> ValidationRule:
    """A positive integer, or a list of exactly two positive integers."""

    def check(value: Any) -> bool:
        if isinstance(value, list):
            return len(value) == 2 and all(_is_positive_integer(v) for v in value)
        return _is_positive_integer(value)

    return ValidationRule(
        check, "Must be a positive integer or array of 2 positive integers"
    )


def _parse_number(text: str):
    try:
        return float(text.strip())
    except ValueError:
        raise CoercionError("Must be a number") from None


def _normalize_number(value: Any):
    """numpy scalars become Python numbers; whole floats become ints."""
    if isinstance(value, (np.integer, np.floating)):
        value = value.item()
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _parse_array(text: str) -> list:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        raise CoercionError("Must be an array") from None
    if not isinstance(parsed, list):
        raise CoercionError("Must be an array")
    return parsed


def coerce_value(kind: str, value: Any) -> Any:
    """
    Convert a raw parameter value to the Python type of its kind.

    Strings coming from form fields are parsed ("3" -> 3, "true" -> True,
    "[3, 3]" -> [3, 3]); tuples and numpy arrays become lists. Values that
    are already of the right type pass through untouched, and values of a
    different type are left for the rules to reject.

    Raises:
        CoercionError: If a string cannot be parsed as the expected kind
    """
    if is_missing(value):
        return None

    if kind in (INT, NUMBER):
        if isinstance(value, str):
            value = _parse_number(value)
        if kind == INT and not isinstance(value, (bool, np.bool_)):
            return _normalize_number(value)
        if isinstance(value, (np.integer, np.floating)):
            return value.item()
        return value

    if kind == BOOL:
        if isinstance(value, str):
            if value == "true":
                return True
            if value == "false":
                return False
            raise CoercionError("Must be true or false")
        if isinstance(value, np.bool_):
            return bool(value)
        return value

    if kind in (SHAPE, SIZE):
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = _parse_array(text)
            elif kind == SIZE:
                value = _parse_number(text)
            else:
                raise CoercionError("Must be an array")
        if isinstance(value, (tuple, np.ndarray)):
            value = list(np.asarray(value).tolist())
        if isinstance(value, list):
            return [
                v if isinstance(v, (bool, np.bool_)) else _normalize_number(v)
                for v in value
            ]
        if isinstance(value, (bool, np.bool_)):
            return value
        return _normalize_number(value)

    return value
