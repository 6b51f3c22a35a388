"""Kubelet ``/stats/summary`` retrieval and grouping into raw entity metrics."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from kubeletscrape.cadvisor import ErrorGroup

STATS_SUMMARY_PATH = "/stats/summary"

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]
EntityIDGenerator = Callable[[str, str, Mapping[str, Mapping[str, Mapping[str, Any]]]], str]

_FS_FIELDS = (
    ("AvailableBytes", "availableBytes"),
    ("CapacityBytes", "capacityBytes"),
    ("UsedBytes", "usedBytes"),
    ("InodesFree", "inodesFree"),
    ("Inodes", "inodes"),
    ("InodesUsed", "inodesUsed"),
)

_NODE_MEMORY_FIELDS = (
    ("memoryUsageBytes", "usageBytes"),
    ("memoryAvailableBytes", "availableBytes"),
    ("memoryWorkingSetBytes", "workingSetBytes"),
    ("memoryRssBytes", "rssBytes"),
    ("memoryPageFaults", "pageFaults"),
    ("memoryMajorPageFaults", "majorPageFaults"),
)


class _Getter(Protocol):
    def get(self, url_path: str) -> Any: ...


def add_uint64_raw_metric(raw: RawMetrics, name: str, value: Any) -> None:
    """Store ``value`` under ``name`` unless it is missing."""
    if value is not None:
        raw[name] = value


def get_metrics_data(client: _Getter) -> dict[str, Any]:
    """Fetch and decode the kubelet stats summary."""
    try:
        response = client.get(STATS_SUMMARY_PATH)
    except Exception as err:
        raise RuntimeError(
            f'performing GET request to kubelet endpoint "{STATS_SUMMARY_PATH}": {err}'
        ) from err

    try:
        if response.status_code != 200:
            try:
                detail = f"response body: {response.text}"
            except Exception as err:
                detail = f"reading response body: {err}"
            raise RuntimeError(
                f"received non-OK response code from kubelet: {response.status_code}: {detail}"
            )
        try:
            summary = response.json()
        except ValueError as err:
            raise ValueError(
                f"unmarshaling the response body into kubelet stats Summary: {err}"
            ) from err
        if not isinstance(summary, dict):
            raise ValueError(
                "unmarshaling the response body into kubelet stats Summary: "
                "expected a JSON object"
            )
        return summary
    finally:
        response.close()


def _add_fs_metrics(raw: RawMetrics, prefix: str, stats: Mapping[str, Any]) -> None:
    for suffix, field in _FS_FIELDS:
        add_uint64_raw_metric(raw, prefix + suffix, stats.get(field))


def _add_error_sum(raw: RawMetrics, stats: Mapping[str, Any]) -> None:
    rx_errors, tx_errors = stats.get("rxErrors"), stats.get("txErrors")
    if rx_errors is not None and tx_errors is not None:
        raw["errors"] = rx_errors + tx_errors


def _add_network_metrics(raw: RawMetrics, network: Mapping[str, Any]) -> None:
    add_uint64_raw_metric(raw, "rxBytes", network.get("rxBytes"))
    add_uint64_raw_metric(raw, "txBytes", network.get("txBytes"))
    _add_error_sum(raw, network)

    interfaces: dict[str, RawMetrics] = {}
    for interface in network.get("interfaces") or ():
        metrics: RawMetrics = {}
        add_uint64_raw_metric(metrics, "rxBytes", interface.get("rxBytes"))
        add_uint64_raw_metric(metrics, "txBytes", interface.get("txBytes"))
        _add_error_sum(metrics, interface)
        interfaces[interface.get("name", "")] = metrics
    raw["interfaces"] = interfaces


def _node_stats(node: Mapping[str, Any]) -> tuple[RawMetrics, str]:
    node_name = node.get("nodeName") or ""
    if not node_name:
        raise ValueError(
            f"empty node identifier, possible data error in {STATS_SUMMARY_PATH} response"
        )
    raw: RawMetrics = {"nodeName": node_name}

    cpu = node.get("cpu")
    if cpu is not None:
        add_uint64_raw_metric(raw, "usageNanoCores", cpu.get("usageNanoCores"))
        add_uint64_raw_metric(raw, "usageCoreNanoSeconds", cpu.get("usageCoreNanoSeconds"))

    memory = node.get("memory")
    if memory is not None:
        for name, field in _NODE_MEMORY_FIELDS:
            add_uint64_raw_metric(raw, name, memory.get(field))

    network = node.get("network")
    if network is not None:
        _add_network_metrics(raw, network)

    fs = node.get("fs")
    if fs is not None:
        _add_fs_metrics(raw, "fs", fs)

    runtime = node.get("runtime")
    if runtime is not None and runtime.get("imageFs") is not None:
        _add_fs_metrics(raw, "runtime", runtime["imageFs"])

    return raw, node_name


def _pod_stats(pod: Mapping[str, Any]) -> tuple[RawMetrics, str]:
    ref = pod.get("podRef") or {}
    name, namespace = ref.get("name") or "", ref.get("namespace") or ""
    if not name or not namespace:
        raise ValueError(
            f"empty pod identifier, possible data error in {STATS_SUMMARY_PATH} response"
        )
    raw: RawMetrics = {"podName": name, "namespace": namespace}

    network = pod.get("network")
    if network is not None:
        _add_network_metrics(raw, network)

    return raw, f"{namespace}_{name}"


def _container_stats(container: Mapping[str, Any]) -> RawMetrics:
    name = container.get("name") or ""
    if not name:
        raise ValueError(
            f"empty container identifier, possible data error in {STATS_SUMMARY_PATH} response"
        )
    raw: RawMetrics = {"containerName": name}

    cpu = container.get("cpu")
    if cpu is not None:
        add_uint64_raw_metric(raw, "usageNanoCores", cpu.get("usageNanoCores"))

    memory = container.get("memory")
    if memory is not None:
        add_uint64_raw_metric(raw, "usageBytes", memory.get("usageBytes"))
        add_uint64_raw_metric(raw, "workingSetBytes", memory.get("workingSetBytes"))

    rootfs = container.get("rootfs")
    if rootfs is not None:
        _add_fs_metrics(raw, "fs", rootfs)

    return raw


def _volume_stats(volume: Mapping[str, Any]) -> RawMetrics:
    name = volume.get("name") or ""
    if not name:
        raise ValueError(
            f"empty volume identifier, possible data error in {STATS_SUMMARY_PATH} response"
        )
    raw: RawMetrics = {"volumeName": name}

    pvc_ref = volume.get("pvcRef")
    if pvc_ref is not None:
        raw["pvcName"] = pvc_ref.get("name", "")
        raw["pvcNamespace"] = pvc_ref.get("namespace", "")

    _add_fs_metrics(raw, "fs", volume)
    return raw


def group_stats_summary(summary: Mapping[str, Any] | None) -> RawGroups:
    """Group a stats summary into node, pod, container and volume entities.

    Raises a recoverable :class:`ErrorGroup` whose ``partial`` holds the
    groups gathered so far when any part of the summary is unusable.
    """
    if summary is None:
        raise ErrorGroup([ValueError("got nil stats summary")], recoverable=True)

    errors: list[Exception] = []
    groups: RawGroups = {"pod": {}, "container": {}, "volume": {}, "node": {}}

    try:
        node_metrics, node_id = _node_stats(summary.get("node") or {})
    except ValueError as err:
        errors.append(err)
    else:
        groups["node"][node_id] = node_metrics

    pods = summary.get("pods")
    if pods is None:
        errors.append(
            ValueError(f"pods data not found, possible data error in {STATS_SUMMARY_PATH} response")
        )
        raise ErrorGroup(errors, recoverable=True, partial=groups)

    for pod in pods:
        try:
            pod_metrics, pod_id = _pod_stats(pod)
        except ValueError as err:
            errors.append(err)
            continue
        groups["pod"][pod_id] = pod_metrics
        namespace, pod_name = pod_metrics["namespace"], pod_metrics["podName"]

        for volume in pod.get("volume") or ():
            try:
                volume_metrics = _volume_stats(volume)
            except ValueError as err:
                errors.append(err)
                continue
            volume_metrics["podName"] = pod_name
            volume_metrics["namespace"] = namespace
            groups["volume"][f"{namespace}_{pod_name}_{volume_metrics['volumeName']}"] = (
                volume_metrics
            )

        for container in pod.get("containers") or ():
            try:
                container_metrics = _container_stats(container)
            except ValueError as err:
                errors.append(err)
                continue
            container_metrics["podName"] = pod_name
            container_metrics["namespace"] = namespace
            groups["container"][
                f"{namespace}_{pod_name}_{container_metrics['containerName']}"
            ] = container_metrics

    if errors:
        raise ErrorGroup(errors, recoverable=True, partial=groups)
    return groups


def _entity_value(
    groups: Mapping[str, Mapping[str, Mapping[str, Any]]],
    group_label: str,
    raw_entity_id: str,
    key: str,
) -> Any:
    entity = groups.get(group_label, {}).get(raw_entity_id, {})
    if key not in entity:
        raise LookupError(f'"{key}" not found for "{group_label}"')
    return entity[key]


def from_raw_groups_entity_id_generator(key: str) -> EntityIDGenerator:
    """Build a generator that takes the entity ID from the entity's ``key`` value."""

    def generate(group_label: str, raw_entity_id: str, groups: Mapping) -> str:
        value = _entity_value(groups, group_label, raw_entity_id, key)
        if not isinstance(value, str):
            raise TypeError(f'incorrect type of "{key}" for "{group_label}"')
        return value

    return generate


def from_raw_entity_id_group_entity_id_generator(key: str) -> EntityIDGenerator:
    """Build a generator that strips the ``key`` value and an underscore from the raw ID."""

    def generate(group_label: str, raw_entity_id: str, groups: Mapping) -> str:
        to_remove = _entity_value(groups, group_label, raw_entity_id, key)
        prefix = f"{to_remove}_"
        result = raw_entity_id[len(prefix):] if raw_entity_id.startswith(prefix) else raw_entity_id
        if not result:
            raise ValueError("generated entity ID is empty")
        return result

    return generate


def _get_keys(
    group_label: str, raw_entity_id: str, groups: Mapping, *keys: str
) -> list[str]:
    if group_label not in groups:
        raise LookupError(f'"{group_label}" not found')
    group = groups[group_label]
    if raw_entity_id not in group:
        raise LookupError(f'entity data "{raw_entity_id}" not found for "{group_label}"')
    entity = group[raw_entity_id]

    values = []
    for key in keys:
        if key not in entity:
            raise LookupError(f'"{key}" not found for "{group_label}"')
        value = entity[key]
        if not isinstance(value, str):
            raise TypeError(f'incorrect type of "{key}" for "{group_label}"')
        values.append(value)
    return values


def from_raw_groups_entity_type_generator(
    group_label: str, raw_entity_id: str, groups: Mapping, cluster_name: str
) -> str:
    """Compose the entity type from the cluster name, group and, where needed,
    the namespace and pod name."""
    if group_label in ("namespace", "node"):
        return f"k8s:{cluster_name}:{group_label}"

    if group_label == "container":
        namespace, pod_name = _get_keys(group_label, raw_entity_id, groups, "namespace", "podName")
        if not namespace or not pod_name:
            raise ValueError(f'empty values for generated entity type for "{group_label}"')
        return f"k8s:{cluster_name}:{namespace}:{pod_name}:{group_label}"

    (namespace,) = _get_keys(group_label, raw_entity_id, groups, "namespace")
    if not namespace:
        raise ValueError(f'empty namespace for generated entity type for "{group_label}"')
    return f"k8s:{cluster_name}:{namespace}:{group_label}"


def from_label_get_namespace(metrics: Mapping[str, Any]) -> str:
    """The entity's namespace, or an empty string when it has none."""
    namespace = metrics.get("namespace")
    return namespace if isinstance(namespace, str) else ""