"""Merges kubelet pods, cAdvisor, stats summary and node data into raw groups."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Protocol

from kubeletscrape.cadvisor import ErrorGroup
from kubeletscrape.resource import Quantity, parse_quantity
from kubeletscrape.summary import get_metrics_data, group_stats_summary

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]
FetchFunc = Callable[[], Mapping[str, Mapping[str, RawMetrics]]]

_CONDITION_VALUES = {"True": 1, "False": 0, "Unknown": -1}


class _NodeGetter(Protocol):
    def get(self, name: str) -> Any: ...


def fill_groups_and_merge_non_existent(
    destination: RawGroups, source: Mapping[str, Mapping[str, RawMetrics]]
) -> None:
    """Add groups missing from ``destination`` and fill in the missing
    attributes of entities it already has. Entities of an existing group
    that only ``source`` knows are left out."""
    for label, group in source.items():
        if label not in destination:
            destination[label] = group
            continue
        for entity_id, entity in destination[label].items():
            if entity_id not in group:
                continue
            for key, value in group[entity_id].items():
                entity.setdefault(key, value)


def _resource_list(raw: Mapping[str, Any] | None) -> dict[str, Quantity]:
    return {
        name: value if isinstance(value, Quantity) else parse_quantity(str(value))
        for name, value in (raw or {}).items()
    }


def _node_conditions(conditions: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    result: dict[str, int] = {}
    for condition in conditions:
        value = _CONDITION_VALUES.get(condition.get("status"))
        if value is None:
            continue
        kind = condition.get("type", "")
        # Conflicting duplicates of a condition make it unknown.
        if kind in result and result[kind] != value:
            value = -1
        result[kind] = value
    return result


class KubeletGrouper:
    """Groups kubelet metrics from the configured fetchers, the stats
    summary and the node object."""

    def __init__(
        self,
        node_getter: _NodeGetter,
        client: Any,
        fetchers: Iterable[FetchFunc] = (),
        default_network_interface: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        if node_getter is None:
            raise ValueError("NodeGetter must be set")
        self.node_getter = node_getter
        self.client = client
        self.fetchers = list(fetchers)
        self.default_network_interface = default_network_interface
        self.logger = logger or logging.getLogger(__name__)

    def group(self, spec_groups: Any = None) -> RawGroups:
        """Build the raw groups; raises :class:`ErrorGroup` on failure."""
        raw: RawGroups = {
            "network": {"interfaces": {"default": self.default_network_interface}},
        }

        for fetch in self.fetchers:
            try:
                fetched = fetch()
            except ErrorGroup as err:
                fetched = err.partial or {}
            except Exception as err:
                raise ErrorGroup([RuntimeError(f"error querying Kubelet. {err}")]) from err
            fill_groups_and_merge_non_existent(raw, fetched)

        try:
            summary = get_metrics_data(self.client)
        except Exception as err:
            raise ErrorGroup([RuntimeError(f"error querying Kubelet. {err}")]) from err

        try:
            resources = group_stats_summary(summary)
        except ErrorGroup as err:
            raise ErrorGroup(err.errors, recoverable=True) from err
        fill_groups_and_merge_non_existent(raw, resources)

        node_name = (summary.get("node") or {}).get("nodeName") or ""
        try:
            node = self.node_getter.get(node_name)
        except Exception as err:
            raise ErrorGroup([RuntimeError(f"error querying ApiServer: {err}")]) from err
        if node is None:
            raise ErrorGroup(
                [LookupError(f'error querying ApiServer: node "{node_name}" not found')]
            )

        requested_cpu_millis = 0
        requested_memory_bytes = 0
        for container in raw.get("container", {}).values():
            requested_memory_bytes += container.get("memoryRequestedBytes", 0)
            requested_cpu_millis += container.get("cpuRequestedCores", 0)

        metadata = node.get("metadata") or {}
        spec = node.get("spec") or {}
        status = node.get("status") or {}

        node_group = {
            "node": {
                node_name: {
                    "labels": dict(metadata.get("labels") or {}),
                    "allocatable": _resource_list(status.get("allocatable")),
                    "capacity": _resource_list(status.get("capacity")),
                    "memoryRequestedBytes": requested_memory_bytes,
                    "cpuRequestedCores": requested_cpu_millis,
                    "conditions": _node_conditions(status.get("conditions") or []),
                    "unschedulable": bool(spec.get("unschedulable", False)),
                    "kubeletVersion": (status.get("nodeInfo") or {}).get("kubeletVersion", ""),
                }
            }
        }
        fill_groups_and_merge_non_existent(raw, node_group)
        return raw