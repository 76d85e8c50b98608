"""Depth-limited, cycle-safe traversal of parameter trees."""

from __future__ import annotations

import logging
from typing import Any, Iterator

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 100


def join_path(path: str, key: str | int) -> str:
    """Extend a field path: ``body`` + 2 -> ``body[2]``, ``body`` + ``x`` -> ``body.x``."""
    if isinstance(key, int):
        return f"{path}[{key}]"
    return f"{path}.{key}" if path else key


class ParameterWalker:
    """Yield every value of a nested dict/list tree with its field path.

    Descending stops at ``max_depth``; the first overrun of a walk records a
    single anomaly. Containers already on the current path (identity-based) are
    reported as circular references and not revisited.

    Attributes:
        anomalies: Recoverable problems met during the last walk, as
            ``"path: message"`` strings.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, skip_private_keys: bool = False):
        self.max_depth = max_depth
        self.skip_private_keys = skip_private_keys
        self.anomalies: list[str] = []
        self._depth_reported = False

    def walk(self, tree: Any, root_path: str = "") -> Iterator[tuple[str, str | int | None, Any]]:
        """Yield ``(path, key, value)`` for the tree and every nested value."""
        self.anomalies = []
        self._depth_reported = False
        yield from self._walk(tree, root_path, None, 0, set())

    def _walk(
        self,
        value: Any,
        path: str,
        key: str | int | None,
        depth: int,
        active: set[int],
    ) -> Iterator[tuple[str, str | int | None, Any]]:
        if depth > self.max_depth:
            if not self._depth_reported:
                self._depth_reported = True
                self._record(
                    path,
                    f"Maximum nesting depth ({self.max_depth}) exceeded; "
                    "deeper values were not validated",
                )
            return

        if not isinstance(value, (dict, list)):
            yield path, key, value
            return

        marker = id(value)
        if marker in active:
            self._record(path, "Circular reference detected; value skipped")
            return

        active.add(marker)
        try:
            yield path, key, value
            children = value.items() if isinstance(value, dict) else enumerate(value)
            for child_key, child in children:
                if (
                    self.skip_private_keys
                    and isinstance(child_key, str)
                    and child_key.startswith("__")
                ):
                    continue
                child_path = join_path(path, child_key if isinstance(child_key, int) else str(child_key))
                yield from self._walk(child, child_path, child_key, depth + 1, active)
        finally:
            active.discard(marker)

    def _record(self, path: str, message: str) -> None:
        entry = f"{path or '<root>'}: {message}"
        logger.warning(entry)
        self.anomalies.append(entry)
