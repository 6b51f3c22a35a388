# kubeletscrape

A library that gathers metrics from a Kubernetes kubelet and arranges them
into raw groups. The groups are `node`, `pod`, `container`, `volume` and
`network`. Each group is a plain `dict` that maps an entity ID to a `dict`
of that entity's metrics.

## Modules

### `kubeletscrape.connector`

This module finds a kubelet that answers.

- `ConnectorConfig` holds the connection settings: `node_name`, `node_ip`,
  `port`, `scheme`, `timeout`, `api_ca_file` and `api_insecure`.
- `DefaultConnector(node_port_getter, config, api_server, token_file, logger)`
  probes `/healthz` and returns a `ConnParams` (`url`, `session`, `timeout`).
  - **Port.** It uses `config.port` if that is set. Otherwise it calls
    `node_port_getter(node_name)`.
  - **Scheme.** It uses `config.scheme` if that is set. Otherwise port 10255
    means `http` and port 10250 means `https`. For any other port it tries
    HTTPS first and then HTTP.
  - **Local connection.** It first tries the node IP directly. Over HTTPS it
    does not verify the certificate. If `token_file` is given, it adds
    `Authorization: Bearer <contents of the file>` and reads the file again
    on every request.
  - **Fallback.** If the node IP does not answer, it tries the API server's
    proxy at `/api/v1/nodes/<node>/proxy/`.
  - **Errors.** If neither route answers, it raises `KubeletConnectionError`.
- `StaticConnector(session, url)` returns the session and URL you give it
  without probing anything.

### `kubeletscrape.client`

`KubeletClient(connector, logger, max_retries)` connects through the
connector you pass. If the connector fails, it raises
`KubeletConnectionError`.

`get(url_path)` sends a GET request to the path below the endpoint.

When the session is a `requests.Session`, the client retries:

- It retries on connection errors and on 5xx responses.
- It makes up to `max(1, max_retries)` attempts.
- It waits longer after each failed attempt: 1 s, then 2 s, and so on.

For any other kind of session, `get` sends the request once, with no
retries.

### `kubeletscrape.pods`

- `PodsFetcher(client, logger).fetch()` reads `/pods`. It returns the
  `pod` and `container` groups with:
  - status and readiness;
  - the owner workload name, such as `daemonsetName` or `deploymentName`;
  - CPU and memory requests and limits;
  - labels;
  - the node IP, shared between pods.
- A pod the kubelet wrongly reports as Pending is reported as Running.
  `is_fake_pending_pod(status)` detects this case.
- `replicaset_name_to_deployment_name(rs_name)` drops the trailing hash
  segment of a ReplicaSet name.

### `kubeletscrape.summary`

- `get_metrics_data(client)` fetches `/stats/summary`.
- `group_stats_summary(summary)` turns that summary into the `node`, `pod`,
  `container` and `volume` groups.
- This module also has entity ID and entity type generators:
  - `from_raw_groups_entity_id_generator(key)`
  - `from_raw_entity_id_group_entity_id_generator(key)`
  - `from_raw_groups_entity_type_generator(...)`
- `from_label_get_namespace(metrics)` returns the entity's namespace, or an
  empty string if it has none.

### `kubeletscrape.cadvisor`

- `cadvisor_fetch_func(fetch_and_filter, queries)` builds a fetcher. It
  groups cAdvisor samples by container and records `containerID`,
  `containerImageID` and the value of every other metric family.
  - `fetch_and_filter(queries)` is a function you supply. It must return
    `MetricFamily` objects, each holding `Sample` objects.
- `extract_container_id(value)` takes the container ID out of a cgroup path.

### `kubeletscrape.grouper`

`KubeletGrouper(node_getter, client, fetchers, default_network_interface,
logger)` builds the combined raw groups. `group()` does the work:

1. It runs the fetchers and merges their results with
   `fill_groups_and_merge_non_existent`.
2. It adds the stats summary.
3. It adds the node object, which `node_getter.get(name)` returns as a dict
   in the Kubernetes JSON shape:
   - labels;
   - `allocatable` and `capacity` as `Quantity` maps;
   - conditions mapped to 1, 0 or -1;
   - whether the node is unschedulable;
   - the kubelet version;
   - the sum of the containers' CPU and memory requests.

### `kubeletscrape.resource`, `kubeletscrape.transform`, `kubeletscrape.network`

- **Quantities.** `parse_quantity` reads Kubernetes quantities such as
  `1985m`, `2Gi` and `1e3`. It returns a `Quantity`, which has `value()`,
  `milli_value()` and `as_approximate_float()`.
- **Resource attributes.** `one_attribute_per_allocatable` and
  `one_attribute_per_capacity` turn a resource map into attributes.
- **Labels and prefixes.** `one_metric_per_label` and
  `prefix_from_map_int` prefix the keys of a map.
- **Network fallback.** `from_raw_with_fallback_to_default_interface`
  reads a network metric. If the metric is missing, it falls back to the
  metrics of the default interface.

## Example

```python
import requests

from kubeletscrape.client import KubeletClient
from kubeletscrape.connector import StaticConnector
from kubeletscrape.pods import PodsFetcher

client = KubeletClient(
    StaticConnector(requests.Session(), "http://10.0.0.5:10255"),
    logger=None,
    max_retries=3,
)
pods = PodsFetcher(client, logger=None).fetch()
for entity_id, metrics in pods["pod"].items():
    print(entity_id, metrics["status"])
```

Resource quantities:

```python
from kubeletscrape.resource import one_attribute_per_capacity, parse_quantity

one_attribute_per_capacity({"cpu": parse_quantity("1985m"), "memory": parse_quantity("2Gi")})
# {'capacityCpuCores': 1.985, 'capacityMemoryBytes': 2147483648}
```

## Errors

`ErrorGroup` is defined in `kubeletscrape.cadvisor`.

- `cadvisor_fetch_func` and `group_stats_summary` raise it when some of the
  data cannot be used.
  - Its `errors` attribute lists each problem.
  - Its `recoverable` attribute marks the failure as partial.
  - Its `partial` attribute holds whatever groups were gathered.
- `KubeletGrouper.group` raises `ErrorGroup` for any failure.
- `KubeletConnectionError` means no kubelet endpoint could be reached.

## What it does not do

This is a library only. It has no command-line program and does not run
collection on a schedule.

It does not talk to the Kubernetes API by itself. You supply the node
lookups:

- `node_getter` for the grouper;
- `node_port_getter` for the connector.

It does not parse the Prometheus text format. The function passed to
`cadvisor_fetch_func` must already return `MetricFamily` objects.

## Running the tests

```
pip install -e ".[test]"
pytest
```