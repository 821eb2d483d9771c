"""DATA_TRANSFORM operations.

Every operation is a pure function of the node config and the current
scope; the caller writes the result to ``config.output_variable``.
"""

from typing import Any

from core.utils import get_path
from workflow.conditions import evaluate_conditions
from workflow.placeholders import render_value
from workflow.scope import Scope


class TransformError(ValueError):
    """Input value cannot be transformed."""


def _as_list(value: Any, source: str) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise TransformError(f"Transform source '{source}' is not a list (got {type(value).__name__})")


def _numbers(items: list, field: str) -> list[float]:
    values = []
    for item in items:
        raw = get_path(item, field) if field else item
        if raw is None or raw == "":
            continue
        try:
            values.append(float(raw))
        except (TypeError, ValueError) as e:
            raise TransformError(f"Value {raw!r} at '{field}' is not numeric") from e
    return values


def _map(config, items: list, scope: Scope) -> list:
    if not config.mapping:
        return items
    mapped = []
    for index, item in enumerate(items):
        item_scope = scope.child({"item": item, "index": index})
        mapped.append(render_value(config.mapping, item_scope))
    return mapped


def _filter(config, items: list, scope: Scope) -> list:
    return [
        item
        for item in items
        if evaluate_conditions(config.conditions, item, config.logical_operator)
    ]


def _reduce(config, items: list, scope: Scope) -> Any:
    if config.reduce_operation == "count":
        return len(items)
    if config.reduce_operation == "concat":
        parts = [get_path(item, config.field) if config.field else item for item in items]
        return config.separator.join(str(part) for part in parts if part is not None)
    return sum(_numbers(items, config.field))


def _query(config, items: list, scope: Scope) -> list:
    results = _filter(config, items, scope) if config.conditions else list(items)
    if config.sort_by:
        present = [item for item in results if get_path(item, config.sort_by) is not None]
        missing = [item for item in results if get_path(item, config.sort_by) is None]
        try:
            present.sort(
                key=lambda item: get_path(item, config.sort_by),
                reverse=config.sort_order == "desc",
            )
        except TypeError as e:
            raise TransformError(f"Cannot sort by '{config.sort_by}': mixed value types") from e
        results = present + missing
    if config.limit is not None:
        results = results[: config.limit]
    return results


def _aggregate(config, items: list, scope: Scope) -> Any:
    function = config.aggregate_function
    if function == "count":
        if config.field:
            return sum(1 for item in items if get_path(item, config.field) is not None)
        return len(items)
    values = _numbers(items, config.field)
    if function == "sum":
        return sum(values)
    if not values:
        return None
    if function == "avg":
        return sum(values) / len(values)
    if function == "min":
        return min(values)
    return max(values)


def _extract(config, items: list, scope: Scope) -> list:
    if not config.extract_fields:
        return items
    return [
        {field: get_path(item, field) for field in config.extract_fields}
        for item in items
    ]


OPERATIONS = {
    "map": _map,
    "filter": _filter,
    "reduce": _reduce,
    "query": _query,
    "aggregate": _aggregate,
    "extract": _extract,
}


def apply_transform(config, scope: Scope) -> Any:
    """Run ``config.operation`` over the list at ``config.source``.

    Raises:
        TransformError: source is not a list or values are unusable
    """
    items = _as_list(scope.get_path(config.source), config.source)
    return OPERATIONS[config.operation](config, items, scope)
