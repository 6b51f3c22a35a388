"""Transformations that spread map values into prefixed attributes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any


def _is_str_map(value: Any, value_check: Callable[[Any], bool]) -> bool:
    return isinstance(value, Mapping) and all(
        isinstance(key, str) and value_check(item) for key, item in value.items()
    )


def prefix_from_map_int(prefix: str) -> Callable[[Any], dict[str, int]]:
    """Build a transform that prefixes every key of a string-to-int map."""

    def transform(value: Any) -> dict[str, int]:
        if not _is_str_map(value, lambda v: isinstance(v, int) and not isinstance(v, bool)):
            raise TypeError("cannot make prefixes: value is not map[string]string")
        return {f"{prefix}{key}": item for key, item in value.items()}

    return transform


def one_metric_per_label(raw_labels: Any) -> dict[str, str]:
    """Turn a label map into one ``label.<name>`` attribute per label."""
    if not _is_str_map(raw_labels, lambda v: isinstance(v, str)):
        raise TypeError("error on creating kubelet label metrics")
    return {f"label.{key}": item for key, item in raw_labels.items()}