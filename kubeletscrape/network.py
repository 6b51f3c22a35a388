"""Network metric lookup with a fallback to the node's default interface."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

RawGroups = Mapping[str, Mapping[str, Mapping[str, Any]]]


def _default_interface(groups: RawGroups) -> str:
    network = groups.get("network")
    if network is None:
        raise LookupError("network group not found")
    interfaces = network.get("interfaces")
    if interfaces is None:
        raise LookupError("network interfaces attribute not found")
    if "default" not in interfaces:
        raise LookupError("default interface not found")
    default = interfaces["default"]
    if not isinstance(default, str):
        raise LookupError("default interface is not a valid interface name")
    if not default:
        raise LookupError("default interface not set")
    return default


def _metric_from_default_interface(
    default_interface: str, metric_key: str, metrics: Mapping[str, Any]
) -> Any:
    if "interfaces" not in metrics:
        raise LookupError("interfaces metrics not found")
    interfaces = metrics["interfaces"]
    if not isinstance(interfaces, Mapping) or not all(
        isinstance(item, Mapping) for item in interfaces.values()
    ):
        raise LookupError("wrong format for interfaces metrics")
    if default_interface not in interfaces:
        raise LookupError("default interface metrics not found")
    interface_metrics = interfaces[default_interface]
    if metric_key not in interface_metrics:
        raise LookupError("metric not found for default interface")
    return interface_metrics[metric_key]


def from_raw_with_fallback_to_default_interface(
    metric_key: str,
) -> Callable[[str, str, RawGroups], Any]:
    """Build a fetcher that reads ``metric_key`` from an entity, falling back to
    the value recorded for the default network interface."""

    def fetch(group_label: str, entity_id: str, groups: RawGroups) -> Any:
        group = groups.get(group_label)
        if group is None:
            raise LookupError("group not found")
        entity = group.get(entity_id)
        if entity is None:
            raise LookupError("entity not found")
        if metric_key in entity:
            return entity[metric_key]

        try:
            default = _default_interface(groups)
            return _metric_from_default_interface(default, metric_key, entity)
        except LookupError as err:
            raise LookupError(
                f"metric not found and default interface fallback failed: {err}"
            ) from err

    return fetch