"""
Typed partial merge of nested JSON objects.

Partial updates of a stored JSON object (such as a section's validation
rules) go through a closed key set. Each key has a checker that accepts or
rejects the supplied value. A key set to None is removed; keys not supplied
keep their current value; unknown keys are rejected as a whole.
"""

from collections.abc import Callable, Mapping
from typing import Any

from decksmith.models.enums import Color
from decksmith.models.failure import ValidationFailedError

Checker = Callable[[Any], bool]


def _is_non_negative_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_color_list(value: Any) -> bool:
    letters = {color.value for color in Color}
    return (
        isinstance(value, list)
        and len(set(value)) == len(value)
        and all(isinstance(item, str) and item in letters for item in value)
    )


VALIDATION_RULE_KEYS: dict[str, Checker] = {
    "maxCards": _is_non_negative_int,
    "singleton": _is_bool,
    "colorIdentity": _is_color_list,
}


def merge_partial(
    current: Mapping[str, Any] | None,
    patch: Mapping[str, Any],
    schema: Mapping[str, Checker],
) -> dict[str, Any]:
    """
    Merge a partial update into a stored object.

    Args:
        current: Stored object (None is treated as empty)
        patch: Supplied keys only
        schema: Closed key set, key -> value checker

    Returns:
        New merged object; the inputs are not modified

    Raises:
        ValidationFailedError: On unknown keys or ill-typed values
    """
    unknown = sorted(set(patch) - set(schema))
    if unknown:
        raise ValidationFailedError(
            rule="unknown-field",
            detail=f"Unknown field(s): {', '.join(unknown)}",
            limit=sorted(schema),
            attempted=unknown,
        )

    errors = [
        {"field": key, "message": f"Invalid value for {key}", "type": "value_error"}
        for key, value in patch.items()
        if value is not None and not schema[key](value)
    ]
    if errors:
        raise ValidationFailedError(
            rule="field-type",
            detail=f"{len(errors)} invalid field(s)",
            errors=errors,
        )

    merged = dict(current or {})
    for key, value in patch.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def merge_validation_rules(
    current: Mapping[str, Any] | None,
    patch: Mapping[str, Any] | None,
) -> dict[str, Any] | None:
    """
    Apply a partial update to a section's validation rules.

    A None patch clears the rules. An empty result is stored as None.
    """
    if patch is None:
        return None
    merged = merge_partial(current, patch, VALIDATION_RULE_KEYS)
    return merged or None
