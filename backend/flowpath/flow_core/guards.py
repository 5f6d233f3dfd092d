from __future__ import annotations

import math
import re
from collections.abc import Callable, Mapping
from typing import Any

from .errors import ConditionEvaluationError
from .ir import Condition

ConditionFunction = Callable[[Mapping[str, Any], dict[str, Any]], bool]

_MISSING = object()


def as_number(value: Any) -> float | None:
    """Coerce a response value to a float, or None when it is not numeric."""
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    # "nan" and "inf" parse as floats but are not usable answers
    return number if math.isfinite(number) else None


def values_match(actual: Any, expected: Any) -> bool:
    """Loose equality used by conditions and multi-path cases.

    Exact match first, then numeric match, then a whitespace and case
    insensitive string match. A list answer matches when any element does.
    """
    if isinstance(actual, list | tuple):
        return any(values_match(item, expected) for item in actual)
    if actual == expected:
        return True
    a_num, e_num = as_number(actual), as_number(expected)
    if (
        a_num is not None
        and e_num is not None
        and not isinstance(actual, bool)
        and not isinstance(expected, bool)
    ):
        return a_num == e_num
    if actual is None or expected is None:
        return False
    return " ".join(str(actual).split()).casefold() == " ".join(str(expected).split()).casefold()


def _lookup(responses: Mapping[str, Any], key: str) -> Any:
    value = responses.get(key, _MISSING)
    if value is None or value == "" or value == []:
        return _MISSING
    return value


def guard_always(_responses: Mapping[str, Any], _args: dict[str, Any]) -> bool:
    return True


def guard_answered(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    return _lookup(responses, args["key"]) is not _MISSING


def guard_equals(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    actual = _lookup(responses, args["key"])
    if actual is _MISSING:
        return False
    return values_match(actual, args["value"])


def guard_not_equals(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    # A missing answer is "condition not met", not "different from value"
    actual = _lookup(responses, args["key"])
    if actual is _MISSING:
        return False
    return not values_match(actual, args["value"])


def guard_contains(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    actual = _lookup(responses, args["key"])
    if actual is _MISSING:
        return False
    if isinstance(actual, list | tuple):
        return any(values_match(item, args["value"]) for item in actual)
    return str(args["value"]).casefold() in str(actual).casefold()


def guard_one_of(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    actual = _lookup(responses, args["key"])
    if actual is _MISSING:
        return False
    return any(values_match(actual, candidate) for candidate in args["values"])


def _compare(op: Callable[[float, float], bool]) -> ConditionFunction:
    def guard(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
        actual = as_number(_lookup(responses, args["key"]))
        if actual is None:
            return False
        return op(actual, float(args["value"]))

    return guard


def guard_all(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    return all(evaluate_condition(c, responses) for c in args["conditions"])


def guard_any(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    return any(evaluate_condition(c, responses) for c in args["conditions"])


def guard_not(responses: Mapping[str, Any], args: dict[str, Any]) -> bool:
    return not evaluate_condition(args["condition"], responses)


DEFAULT_GUARDS: dict[str, ConditionFunction] = {
    "always": guard_always,
    "answered": guard_answered,
    "equals": guard_equals,
    "not_equals": guard_not_equals,
    "contains": guard_contains,
    "one_of": guard_one_of,
    "greater_than": _compare(lambda a, b: a > b),
    "greater_or_equal": _compare(lambda a, b: a >= b),
    "less_than": _compare(lambda a, b: a < b),
    "less_or_equal": _compare(lambda a, b: a <= b),
    "all": guard_all,
    "any": guard_any,
    "not": guard_not,
}

_NUMERIC_GUARDS = {"greater_than", "greater_or_equal", "less_than", "less_or_equal"}
_KEY_GUARDS = {"answered", "equals", "not_equals", "contains", "one_of"} | _NUMERIC_GUARDS

_SHORTHAND_OPS = {
    "==": "equals",
    "!=": "not_equals",
    ">": "greater_than",
    ">=": "greater_or_equal",
    "<": "less_than",
    "<=": "less_or_equal",
}
_SHORTHAND_RE = re.compile(r"^\s*([\w.\-]+)\s*(==|!=|>=|<=|>|<)\s*(.+?)\s*$")
_ANSWERED_RE = re.compile(r"^\s*answered\(\s*([\w.\-]+)\s*\)\s*$")


def parse_condition(text: str) -> Condition:
    """Parse the string shorthand (``"plan == pro"``, ``"answered(email)"``)."""
    match = _ANSWERED_RE.match(text)
    if match:
        return Condition(fn="answered", args={"key": match.group(1)}, description=text)
    match = _SHORTHAND_RE.match(text)
    if not match:
        raise ConditionEvaluationError(f"Cannot parse condition {text!r}")
    key, op, raw_value = match.groups()
    value = raw_value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return Condition(fn=_SHORTHAND_OPS[op], args={"key": key, "value": value}, description=text)


def _as_condition(raw: Any) -> Condition:
    if isinstance(raw, Condition):
        return raw
    if isinstance(raw, str):
        return parse_condition(raw)
    if isinstance(raw, Mapping):
        try:
            return Condition.model_validate(raw)
        except ValueError as exc:
            raise ConditionEvaluationError(f"Invalid condition object: {exc}") from exc
    raise ConditionEvaluationError(f"Unsupported condition value {raw!r}")


def check_condition(
    raw: Condition | str | Mapping[str, Any],
    registry: Mapping[str, ConditionFunction] | None = None,
) -> Condition:
    """Resolve and structurally check a condition without evaluating it.

    Raises ``ConditionEvaluationError`` when the expression is malformed.
    """
    registry = registry if registry is not None else DEFAULT_GUARDS
    condition = _as_condition(raw)
    fn = condition.fn
    args = condition.args
    if fn not in registry:
        raise ConditionEvaluationError(f"Unknown condition function '{fn}'")

    if fn in _KEY_GUARDS:
        key = args.get("key")
        if not isinstance(key, str) or not key:
            raise ConditionEvaluationError(f"Condition '{fn}' requires a 'key' argument")
    if fn in {"equals", "not_equals", "contains"} and "value" not in args:
        raise ConditionEvaluationError(f"Condition '{fn}' requires a 'value' argument")
    if fn in _NUMERIC_GUARDS and as_number(args.get("value")) is None:
        raise ConditionEvaluationError(f"Condition '{fn}' requires a numeric 'value'")
    if fn == "one_of" and not isinstance(args.get("values"), list):
        raise ConditionEvaluationError("Condition 'one_of' requires a 'values' list")
    if fn in {"all", "any"}:
        nested = args.get("conditions")
        if not isinstance(nested, list) or not nested:
            raise ConditionEvaluationError(f"Condition '{fn}' requires a non-empty 'conditions' list")
        for item in nested:
            check_condition(item, registry)
    if fn == "not":
        if "condition" not in args:
            raise ConditionEvaluationError("Condition 'not' requires a 'condition' argument")
        check_condition(args["condition"], registry)
    return condition


def evaluate_condition(
    raw: Condition | str | Mapping[str, Any],
    responses: Mapping[str, Any],
    registry: Mapping[str, ConditionFunction] | None = None,
) -> bool:
    """Evaluate a condition against a response mapping.

    Missing response fields make the predicate false; only malformed
    expressions raise.
    """
    registry = registry if registry is not None else DEFAULT_GUARDS
    condition = check_condition(raw, registry)
    return bool(registry[condition.fn](responses, condition.args))
