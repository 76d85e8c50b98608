"""Property visibility resolution.

A property applies to a node only while its ``displayOptions`` condition holds
for the node's current parameters. Resolution is a pure function of the
property list, a flat config snapshot and the node's typeVersion.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Sequence

from flowguard.core.models import DisplayOptions, PropertySchema

VERSION_KEY = "@version"

_ABSENT = object()


def values_equal(left: Any, right: Any) -> bool:
    """Equality that never treats booleans as the integers 0/1."""
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    return left == right


def _as_list(allowed: Any) -> list[Any]:
    if isinstance(allowed, (list, tuple)):
        return list(allowed)
    return [allowed]


def _compare(value: Any, operator: str, operand: Any) -> bool:
    """Evaluate a ``{"_cnd": {operator: operand}}`` allow-list entry."""
    if operator == "exists":
        return value is not _ABSENT
    if value is _ABSENT:
        return False
    if operator == "eq":
        return values_equal(value, operand)
    if operator == "not":
        return not values_equal(value, operand)
    if operator in ("gt", "gte", "lt", "lte"):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        return {
            "gt": value > operand,
            "gte": value >= operand,
            "lt": value < operand,
            "lte": value <= operand,
        }[operator]
    if not isinstance(value, str):
        return False
    if operator == "startsWith":
        return value.startswith(operand)
    if operator == "endsWith":
        return value.endswith(operand)
    if operator == "includes":
        return operand in value
    return False


def value_matches(value: Any, allowed: Any) -> bool:
    """Whether ``value`` satisfies an allow-list.

    Scalars are treated as one-element allow-lists. List values (multi-option
    selections) match when any element is allowed. An absent value never
    matches, except for an explicit ``exists`` condition.
    """
    candidates = value if isinstance(value, list) else [value]
    for entry in _as_list(allowed):
        if isinstance(entry, dict) and "_cnd" in entry:
            conditions = entry["_cnd"] or {}
            if any(
                all(_compare(c, op, operand) for op, operand in conditions.items())
                for c in candidates
            ):
                return True
            continue
        if value is _ABSENT:
            continue
        if any(values_equal(c, entry) for c in candidates):
            return True
    return False


def evaluate_display_options(
    display_options: DisplayOptions | None,
    lookup: Callable[[str], Any],
) -> bool:
    """Evaluate a visibility condition against sibling values.

    Args:
        display_options: The condition; ``None`` means always visible.
        lookup: Returns a sibling's current value, or ``_ABSENT``.

    Returns:
        True when every ``show`` predicate matches and no ``hide`` predicate does.
    """
    if display_options is None:
        return True
    for key, allowed in display_options.show.items():
        if not value_matches(lookup(key), allowed):
            return False
    for key, allowed in display_options.hide.items():
        if value_matches(lookup(key), allowed):
            return False
    return True


class PropertyVisibilityResolver:
    """Decide which properties of a node type currently apply.

    Several schema entries may share a name (one per resource/operation); a name
    is visible while any of its entries is. A sibling referenced by a condition
    counts as absent when it is missing from the config or is itself hidden,
    which resolves multi-level chains. Cyclic chains resolve to hidden.
    """

    def __init__(
        self,
        properties: Sequence[PropertySchema],
        config: Mapping[str, Any],
        type_version: int | float | None = None,
    ) -> None:
        self._properties = list(properties)
        self._config = config
        self._type_version = type_version
        self._by_name: dict[str, list[PropertySchema]] = {}
        for prop in self._properties:
            self._by_name.setdefault(prop.name, []).append(prop)
        self._memo: dict[int, bool] = {}
        # Properties currently being resolved, outermost first
        self._stack: list[int] = []
        self._cyclic: set[int] = set()

    def is_visible(self, prop: PropertySchema) -> bool:
        key = id(prop)
        if key in self._memo:
            return self._memo[key]
        if key in self._stack:
            # Everything from the repeated entry to the top of the stack is a cycle
            self._cyclic.update(self._stack[self._stack.index(key):])
            return False
        self._stack.append(key)
        try:
            visible = evaluate_display_options(prop.display_options, self._sibling_value)
        finally:
            self._stack.pop()
        if key in self._cyclic:
            visible = False
        self._memo[key] = visible
        return visible

    def is_name_visible(self, name: str) -> bool:
        """Visibility of a config key; keys unknown to the schema are not governed."""
        entries = self._by_name.get(name)
        if entries is None:
            return True
        return any(self.is_visible(p) for p in entries)

    def _sibling_value(self, name: str) -> Any:
        if name == VERSION_KEY:
            return _ABSENT if self._type_version is None else self._type_version
        if name not in self._config or self._config[name] is None:
            return _ABSENT
        if name in self._by_name and not self.is_name_visible(name):
            return _ABSENT
        return self._config[name]

    def visible_properties(self) -> list[PropertySchema]:
        return [p for p in self._properties if self.is_visible(p)]

    def hidden_properties(self) -> list[PropertySchema]:
        return [p for p in self._properties if not self.is_visible(p)]

    def schema_names(self) -> set[str]:
        return set(self._by_name)

    def entries(self, name: str) -> list[PropertySchema]:
        return list(self._by_name.get(name, []))


def is_property_visible(
    prop: PropertySchema,
    config: Mapping[str, Any],
    siblings: Sequence[PropertySchema] = (),
    type_version: int | float | None = None,
) -> bool:
    """Single-property form of :class:`PropertyVisibilityResolver`."""
    properties = list(siblings)
    if all(p is not prop for p in properties):
        properties.append(prop)
    return PropertyVisibilityResolver(properties, config, type_version).is_visible(prop)
