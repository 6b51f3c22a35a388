"""Pod and container data taken from the kubelet ``/pods`` endpoint."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

from kubeletscrape.resource import CPU, MEMORY, Quantity, parse_quantity

KUBELET_PODS_PATH = "/pods"

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_FRACTION_RE = re.compile(r"\.(\d+)")

_WORKLOAD_KEYS = {
    "DaemonSet": "daemonsetName",
    "Deployment": "deploymentName",
    "Job": "jobName",
    "ReplicaSet": "replicasetName",
    "StatefulSet": "statefulsetName",
}


class _Getter(Protocol):
    def get(self, url_path: str) -> Any: ...


def _parse_time(raw: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime."""
    if not raw:
        return None
    text = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _quantity(value: Any) -> Quantity:
    return value if isinstance(value, Quantity) else parse_quantity(str(value))


def _metadata(pod: Mapping[str, Any]) -> Mapping[str, Any]:
    return pod.get("metadata") or {}


def _spec(pod: Mapping[str, Any]) -> Mapping[str, Any]:
    return pod.get("spec") or {}


def _status(pod: Mapping[str, Any]) -> Mapping[str, Any]:
    return pod.get("status") or {}


def _pod_id(pod: Mapping[str, Any]) -> str:
    meta = _metadata(pod)
    return f"{meta.get('namespace', '')}_{meta.get('name', '')}"


def _container_id(pod: Mapping[str, Any], container_name: str) -> str:
    return f"{_pod_id(pod)}_{container_name}"


def _pod_labels(pod: Mapping[str, Any]) -> dict[str, str]:
    return dict(_metadata(pod).get("labels") or {})


def replicaset_name_to_deployment_name(rs_name: str) -> str:
    """Drop the trailing hash segment of a ReplicaSet name."""
    return "-".join(rs_name.split("-")[:-1])


def _add_workload_name(kind: str, name: str, metrics: RawMetrics) -> None:
    key = _WORKLOAD_KEYS.get(kind)
    if key is None:
        return
    metrics[key] = name
    if kind == "ReplicaSet":
        deployment = replicaset_name_to_deployment_name(name)
        if deployment:
            metrics["deploymentName"] = deployment


def is_fake_pending_pod(status: Mapping[str, Any]) -> bool:
    """Whether a pod reported as Pending is in fact running.

    Pods created before the API server is up are wrongly reported as
    Pending by the kubelet while being only scheduled.
    """
    conditions = status.get("conditions") or []
    return (
        status.get("phase") == "Pending"
        and len(conditions) == 1
        and conditions[0].get("type") == "PodScheduled"
        and conditions[0].get("status") == "True"
    )


def _container_statuses(pod: Mapping[str, Any]) -> dict[str, RawMetrics]:
    statuses: dict[str, RawMetrics] = {}
    for container in _status(pod).get("containerStatuses") or []:
        state = container.get("state") or {}
        restart_count = container.get("restartCount", 0)
        entry: RawMetrics = {}
        if state.get("running") is not None:
            entry["status"] = "Running"
            entry["startedAt"] = _parse_time(state["running"].get("startedAt")) or _ZERO_TIME
            entry["restartCount"] = restart_count
            entry["isReady"] = bool(container.get("ready", False))
        elif state.get("waiting") is not None:
            entry["status"] = "Waiting"
            entry["reason"] = state["waiting"].get("reason", "")
            entry["restartCount"] = restart_count
        elif state.get("terminated") is not None:
            terminated = state["terminated"]
            entry["status"] = "Terminated"
            entry["reason"] = terminated.get("reason", "")
            entry["restartCount"] = restart_count
            entry["startedAt"] = _parse_time(terminated.get("startedAt")) or _ZERO_TIME
        else:
            entry["status"] = "Unknown"
        statuses[_container_id(pod, container.get("name", ""))] = entry
    return statuses


class PodsFetcher:
    """Fetches the pods running on the node from the kubelet."""

    def __init__(self, client: _Getter, logger: logging.Logger | None = None) -> None:
        self._client = client
        self._logger = logger or logging.getLogger(__name__)

    def fetch(self) -> RawGroups:
        """Query the kubelet and group its pods and containers."""
        self._logger.debug("Retrieving the list of pods")
        pod_list = self._request_pods()

        pods: dict[str, RawMetrics] = {}
        containers: dict[str, RawMetrics] = {}

        # A pod missing its host IP takes it from any other pod on the node.
        missing_pod_ids: list[str] = []
        missing_container_ids: list[str] = []
        node_ip = ""

        for pod in pod_list.get("items") or []:
            pod_id = _pod_id(pod)
            pod_metrics = self._pod_data(pod)
            pods[pod_id] = pod_metrics

            if "nodeIP" in pod_metrics and not node_ip:
                node_ip = pod_metrics["nodeIP"]
            if node_ip:
                pod_metrics["nodeIP"] = node_ip
            else:
                missing_pod_ids.append(pod_id)

            for container_id, container in self._containers_data(pod).items():
                containers[container_id] = container
                if "nodeIP" in container and not node_ip:
                    node_ip = container["nodeIP"]
                if node_ip:
                    container["nodeIP"] = node_ip
                else:
                    missing_container_ids.append(container_id)

        for pod_id in missing_pod_ids:
            pods[pod_id]["nodeIP"] = node_ip
        for container_id in missing_container_ids:
            containers[container_id]["nodeIP"] = node_ip

        return {"pod": pods, "container": containers}

    def _request_pods(self) -> Mapping[str, Any]:
        response = self._client.get(KUBELET_PODS_PATH)
        try:
            if response.status_code != 200:
                raise RuntimeError(
                    f"error calling kubelet {KUBELET_PODS_PATH} path. "
                    f"Status code {response.status_code}"
                )
            try:
                body = response.content
            except Exception as err:
                raise RuntimeError(
                    f"error reading response from kubelet {KUBELET_PODS_PATH} path. {err}"
                ) from err
            if not body:
                raise RuntimeError(
                    f"error reading response from kubelet {KUBELET_PODS_PATH} path. "
                    "Response is empty"
                )
            try:
                pod_list = json.loads(body)
            except ValueError as err:
                raise ValueError(
                    f"error decoding response from kubelet {KUBELET_PODS_PATH} path. {err}"
                ) from err
            if not isinstance(pod_list, Mapping):
                raise ValueError(
                    f"error decoding response from kubelet {KUBELET_PODS_PATH} path. "
                    "expected a JSON object"
                )
            return pod_list
        finally:
            response.close()

    def _containers_data(self, pod: Mapping[str, Any]) -> dict[str, RawMetrics]:
        meta, spec, status = _metadata(pod), _spec(pod), _status(pod)
        statuses = _container_statuses(pod)
        owners = meta.get("ownerReferences") or []
        labels = _pod_labels(pod)

        result: dict[str, RawMetrics] = {}
        for container in spec.get("containers") or []:
            name = container.get("name", "")
            container_id = _container_id(pod, name)
            metrics: RawMetrics = {
                "containerName": name,
                "containerImage": container.get("image", ""),
                "namespace": meta.get("namespace", ""),
                "podName": meta.get("name", ""),
                "nodeName": spec.get("nodeName", ""),
            }
            if status.get("hostIP"):
                metrics["nodeIP"] = status["hostIP"]

            resources = container.get("resources") or {}
            requests = resources.get("requests") or {}
            limits = resources.get("limits") or {}
            if CPU in requests:
                metrics["cpuRequestedCores"] = _quantity(requests[CPU]).milli_value()
            if CPU in limits:
                metrics["cpuLimitCores"] = _quantity(limits[CPU]).milli_value()
            if MEMORY in requests:
                metrics["memoryRequestedBytes"] = _quantity(requests[MEMORY]).value()
            if MEMORY in limits:
                metrics["memoryLimitBytes"] = _quantity(limits[MEMORY]).value()

            if owners:
                _add_workload_name(owners[0].get("kind", ""), owners[0].get("name", ""), metrics)

            metrics.update(statuses.get(container_id, {}))

            if labels:
                metrics["labels"] = dict(labels)
            result[container_id] = metrics
        return result

    def _pod_data(self, pod: Mapping[str, Any]) -> RawMetrics:
        meta, spec, status = _metadata(pod), _spec(pod), _status(pod)
        metrics: RawMetrics = {
            "namespace": meta.get("namespace", ""),
            "podName": meta.get("name", ""),
            "nodeName": spec.get("nodeName", ""),
        }
        self._fill_pod_status(metrics, status)

        if status.get("hostIP"):
            metrics["nodeIP"] = status["hostIP"]
        if status.get("podIP"):
            metrics["podIP"] = status["podIP"]

        start_time = _parse_time(status.get("startTime"))
        if start_time is not None:
            metrics["startTime"] = start_time
        created_at = _parse_time(meta.get("creationTimestamp"))
        if created_at is not None:
            metrics["createdAt"] = created_at

        owners = meta.get("ownerReferences") or []
        if owners:
            kind, name = owners[0].get("kind", ""), owners[0].get("name", "")
            metrics["createdKind"] = kind
            metrics["createdBy"] = name
            _add_workload_name(kind, name, metrics)

        if status.get("reason"):
            metrics["reason"] = status["reason"]
        if status.get("message"):
            metrics["message"] = status["message"]

        labels = _pod_labels(pod)
        if labels:
            metrics["labels"] = labels
        return metrics

    def _fill_pod_status(self, metrics: RawMetrics, status: Mapping[str, Any]) -> None:
        if is_fake_pending_pod(status):
            metrics["status"] = "Running"
            metrics["isReady"] = "True"
            metrics["isScheduled"] = "True"
            self._logger.debug("Fake Pending Pod marked as Running")
            return

        for condition in status.get("conditions") or []:
            kind = condition.get("type")
            if kind == "Ready":
                metrics["isReady"] = condition.get("status", "")
            elif kind == "PodScheduled":
                metrics["isScheduled"] = condition.get("status", "")

        metrics["status"] = status.get("phase", "")