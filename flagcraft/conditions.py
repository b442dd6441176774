"""
Targeting conditions.

A condition is a MongoDB-style query document evaluated against the
attributes of a single user, e.g.::

    {"country": {"$in": ["US", "CA"]}, "$or": [{"beta": True}, {"age": {"$gte": 21}}]}

Evaluation is total: a missing attribute, a malformed operand or an
operator applied to the wrong type simply fails to match.
"""

import logging
import re

from collections.abc import Mapping
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("flagcraft.conditions")


def eval_condition(attributes: Mapping, condition: Mapping, saved_groups: Optional[Mapping] = None) -> bool:
    if not isinstance(condition, Mapping):
        return False
    saved_groups = saved_groups or {}

    # Every top-level key must hold, logical ones included
    for key, value in condition.items():
        if key == "$or":
            matched = _eval_or(attributes, value, saved_groups)
        elif key == "$nor":
            matched = not _eval_or(attributes, value, saved_groups)
        elif key == "$and":
            matched = _eval_and(attributes, value, saved_groups)
        elif key == "$not":
            matched = not eval_condition(attributes, value, saved_groups)
        else:
            matched = eval_condition_value(value, get_path(attributes, key), saved_groups)
        if not matched:
            return False
    return True


def _eval_or(attributes, conditions, saved_groups) -> bool:
    if not isinstance(conditions, list):
        return False
    if not conditions:
        return True
    return any(eval_condition(attributes, c, saved_groups) for c in conditions)


def _eval_and(attributes, conditions, saved_groups) -> bool:
    if not isinstance(conditions, list):
        return False
    return all(eval_condition(attributes, c, saved_groups) for c in conditions)


def is_operator_object(obj) -> bool:
    if not isinstance(obj, Mapping):
        return False
    return all(isinstance(key, str) and key.startswith("$") for key in obj)


def get_type(value) -> str:
    if value is None:
        return "null"
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple, set)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return "unknown"


def get_path(attributes, path: str):
    """Resolve a dotted path such as ``"company.plan"`` or ``"tags.0"``."""
    if not isinstance(path, str):
        return None
    current = attributes
    for segment in path.split("."):
        if isinstance(current, Mapping):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def eval_condition_value(condition_value, attribute_value, saved_groups) -> bool:
    if is_operator_object(condition_value):
        for operator, operand in condition_value.items():
            if not eval_operator_condition(operator, attribute_value, operand, saved_groups):
                return False
        return True
    return condition_value == attribute_value


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def compare(left, right) -> int:
    # Numbers win: "10" compared against 9 is compared numerically
    if _is_number(left) and not _is_number(right):
        right = 0 if right is None else float(right)
    elif _is_number(right) and not _is_number(left):
        left = 0 if left is None else float(left)

    if left > right:
        return 1
    if left < right:
        return -1
    return 0


def padded_version_string(value) -> str:
    if _is_number(value):
        value = str(value)
    if not value or not isinstance(value, str):
        value = "0"

    # Drop a leading "v" and any build metadata
    value = re.sub(r"(^v|\+.*$)", "", value)
    parts = re.split(r"[-.]", value)
    # "~" sorts after every pre-release tag, so 1.0.0 > 1.0.0-beta
    if len(parts) == 3:
        parts.append("~")
    # Left pad numeric parts so " 9" < "10" compares as expected
    return "-".join(p.rjust(5, " ") if p.isdigit() else p for p in parts)


def _lower(value):
    return value.lower() if isinstance(value, str) else value


def is_in(condition_value, attribute_value, insensitive: bool = False) -> bool:
    if insensitive:
        condition_value = [_lower(v) for v in condition_value]
    if isinstance(attribute_value, (list, tuple)):
        return any((_lower(v) if insensitive else v) in condition_value for v in attribute_value)
    if insensitive:
        attribute_value = _lower(attribute_value)
    return attribute_value in condition_value


def _elem_match(condition, attribute_value, saved_groups) -> bool:
    if not isinstance(attribute_value, (list, tuple)):
        return False
    for item in attribute_value:
        if is_operator_object(condition):
            if eval_condition_value(condition, item, saved_groups):
                return True
        elif isinstance(item, Mapping) and eval_condition(item, condition, saved_groups):
            return True
    return False


def _all(condition_values, attribute_value, saved_groups, insensitive: bool = False) -> bool:
    if not isinstance(attribute_value, (list, tuple)) or not isinstance(condition_values, list):
        return False
    if insensitive:
        attribute_value = [_lower(v) for v in attribute_value]
    for expected in condition_values:
        if insensitive:
            if _lower(expected) not in attribute_value:
                return False
        elif not any(eval_condition_value(expected, item, saved_groups) for item in attribute_value):
            return False
    return True


def _regex(pattern, attribute_value) -> bool:
    if not isinstance(pattern, str) or not isinstance(attribute_value, str):
        return False
    try:
        return re.search(pattern, attribute_value) is not None
    except re.error:
        logger.debug("Invalid $regex pattern %r", pattern)
        return False


def _in_group(group_id, attribute_value, saved_groups, negate: bool) -> bool:
    if not isinstance(group_id, str):
        return False
    if group_id not in saved_groups:
        # An unknown group contains nobody
        return negate
    members = saved_groups[group_id] or []
    return is_in(members, attribute_value) != negate


_COMPARISONS: Dict[str, Callable[[int], bool]] = {
    "$eq": lambda c: c == 0,
    "$ne": lambda c: c != 0,
    "$lt": lambda c: c < 0,
    "$lte": lambda c: c <= 0,
    "$gt": lambda c: c > 0,
    "$gte": lambda c: c >= 0,
}

_VERSION_COMPARISONS: Dict[str, Callable[[str, str], bool]] = {
    "$veq": lambda a, b: a == b,
    "$vne": lambda a, b: a != b,
    "$vlt": lambda a, b: a < b,
    "$vlte": lambda a, b: a <= b,
    "$vgt": lambda a, b: a > b,
    "$vgte": lambda a, b: a >= b,
}


def eval_operator_condition(operator: str, attribute_value: Any, condition_value: Any, saved_groups) -> bool:
    if operator in _COMPARISONS:
        try:
            return _COMPARISONS[operator](compare(attribute_value, condition_value))
        except (TypeError, ValueError):
            return False
    if operator in _VERSION_COMPARISONS:
        return _VERSION_COMPARISONS[operator](
            padded_version_string(attribute_value), padded_version_string(condition_value)
        )
    if operator in ("$in", "$ini", "$nin", "$nini"):
        if not isinstance(condition_value, list):
            return False
        found = is_in(condition_value, attribute_value, insensitive=operator.endswith("i"))
        return found if operator.startswith("$in") else not found
    if operator == "$inGroup":
        return _in_group(condition_value, attribute_value, saved_groups, negate=False)
    if operator == "$notInGroup":
        return _in_group(condition_value, attribute_value, saved_groups, negate=True)
    if operator == "$regex":
        return _regex(condition_value, attribute_value)
    if operator == "$elemMatch":
        return _elem_match(condition_value, attribute_value, saved_groups)
    if operator == "$size":
        if not isinstance(attribute_value, (list, tuple)):
            return False
        return eval_condition_value(condition_value, len(attribute_value), saved_groups)
    if operator == "$all":
        return _all(condition_value, attribute_value, saved_groups)
    if operator == "$alli":
        return _all(condition_value, attribute_value, saved_groups, insensitive=True)
    if operator == "$exists":
        if not condition_value:
            return attribute_value is None
        return attribute_value is not None
    if operator == "$type":
        return get_type(attribute_value) == condition_value
    if operator == "$not":
        return not eval_condition_value(condition_value, attribute_value, saved_groups)

    logger.debug("Unknown condition operator %s", operator)
    return False
