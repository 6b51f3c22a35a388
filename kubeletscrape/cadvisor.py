"""Container metrics taken from the kubelet's cAdvisor endpoint."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

KUBELET_CADVISOR_METRICS_PATH = "/metrics/cadvisor"

_DOCKER_NATIVE_WITHOUT_SYSTEMD = re.compile(r"^.*([0-9a-f]+)\Z", re.ASCII | re.DOTALL)
_DOCKER_NATIVE_WITH_SYSTEMD = re.compile(r"^.*\w+-([0-9a-f]+)\.scope\Z", re.ASCII | re.DOTALL)
_DOCKER_GENERIC = re.compile(r"^([0-9a-f]+)\Z", re.ASCII)


class ErrorGroup(Exception):
    """Several errors raised together, with whatever data was gathered."""

    def __init__(
        self,
        errors: Iterable[BaseException],
        recoverable: bool = False,
        partial: Any = None,
    ) -> None:
        self.errors = list(errors)
        self.recoverable = recoverable
        self.partial = partial
        super().__init__("; ".join(str(err) for err in self.errors))


@dataclass
class Sample:
    """One labelled value of a metric family."""

    labels: dict[str, str] = field(default_factory=dict)
    value: Any = None


@dataclass
class MetricFamily:
    """A named group of samples."""

    name: str
    metrics: list[Sample] = field(default_factory=list)


def _get_label(labels: dict[str, str], *names: str) -> str | None:
    """Value of the first of ``names`` present in ``labels``."""
    for name in names:
        if name in labels:
            return labels[name]
    return None


def _raw_entity_id(sample: Sample) -> str:
    container_name = _get_label(sample.labels, "container_name", "container")
    if container_name is None:
        raise ValueError("container name not found in cAdvisor metrics")
    if container_name == "":
        return ""

    namespace = sample.labels.get("namespace", "")
    if not namespace:
        raise ValueError("namespace not found in cAdvisor metrics")

    pod_name = _get_label(sample.labels, "pod_name", "pod") or ""
    if not pod_name:
        raise ValueError("pod name not found in cAdvisor metrics")

    return f"{namespace}_{pod_name}_{container_name}"


def extract_container_id(value: str) -> str:
    """Pull the container id out of a cgroup path."""
    container_id = value[value.rfind("/") + 1 :]
    match = _DOCKER_NATIVE_WITH_SYSTEMD.match(container_id)
    if match:
        return match.group(1)
    match = _DOCKER_NATIVE_WITHOUT_SYSTEMD.match(container_id)
    if match:
        return match.group(0)
    match = _DOCKER_GENERIC.match(container_id)
    if match:
        return match.group(0)
    return container_id


def cadvisor_fetch_func(
    fetch_and_filter: Callable[[Sequence[Any]], Iterable[MetricFamily]],
    queries: Sequence[Any],
) -> Callable[[], dict[str, dict[str, dict[str, Any]]]]:
    """Build a fetcher that groups cAdvisor samples by container.

    The fetcher raises a recoverable :class:`ErrorGroup` carrying the
    gathered groups in ``partial`` when some samples could not be used.
    """

    def fetch() -> dict[str, dict[str, dict[str, Any]]]:
        try:
            families = list(fetch_and_filter(queries))
        except Exception as err:
            raise RuntimeError(f"error requesting cadvisor metrics endpoint: {err}") from err

        containers: dict[str, dict[str, Any]] = {}
        groups = {"container": containers}
        errors: list[Exception] = []

        for family in families:
            for sample in family.metrics:
                if _get_label(sample.labels, "container_name", "container") == "POD":
                    continue

                try:
                    entity_id = _raw_entity_id(sample)
                except ValueError as err:
                    errors.append(err)
                    continue

                if not entity_id:
                    continue

                container_id = extract_container_id(sample.labels.get("id", ""))
                if not container_id:
                    errors.append(ValueError("container id not found in cAdvisor metrics"))
                    continue

                metrics = containers.setdefault(entity_id, {"containerID": container_id})

                if family.name == "container_memory_usage_bytes":
                    image = sample.labels.get("image", "")
                    if not image:
                        errors.append(ValueError("container image not found in cAdvisor metrics"))
                        continue
                    metrics["containerImageID"] = image
                else:
                    metrics[family.name] = sample.value

        if errors:
            raise ErrorGroup(errors, recoverable=True, partial=groups)
        return groups

    return fetch