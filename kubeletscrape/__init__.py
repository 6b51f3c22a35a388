"""Connect to a Kubernetes kubelet and group its pod, container, node, volume and cAdvisor metrics."""

__version__ = "0.1.0"