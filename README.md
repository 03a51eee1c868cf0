# khelper

A Python library of helpers for day-to-day work with a Kubernetes cluster.
It reads a kubeconfig, talks to the API server over HTTPS with `requests`
and `websocket-client`, and wraps common chores:

- **Finding what you mean.** `khelper.target.Resolver` turns a short target
  name into a Deployment, StatefulSet or Pod. It tries the exact name first.
  Then it tries the labels `app=<target>` and `app.kubernetes.io/name=<target>`.
  Kinds are tried in the order deployment, statefulset, pod. When several
  objects match, a `pick` number (starting at 1) chooses one. The namespace
  `"*"` searches all namespaces.
- **Rollouts.** Restart a workload and wait for its rollout to finish. Read the
  rollout status and list the rollout history. Roll back to an earlier
  revision. Set container images, or change only the tag of one container's
  image.
- **Pods.** Stream logs from one container or from all of them. Run commands
  in a container and find out whether it has `bash` or `sh`.
- **Cleanup.** List and delete evicted pods. A dry-run mode only reports what
  would be deleted.
- **Insight.** Fetch the events for a set of objects. Summarise pod and node
  CPU (millicores) and memory (MiB) from the metrics API.
- **Output.** Print aligned tables and indented JSON, and colour pod status
  text for a terminal.

## Modules

| Module | Contents |
| --- | --- |
| `khelper.client` | `KubeClient`, `ClientBundle`, `new_client_bundle`, `load_raw_kubeconfig`, `write_raw_kubeconfig_atomic`, `current_context_name`, `ApiError`, `is_not_found`, `is_conflict`, `is_service_unavailable` |
| `khelper.selectors` | `target_selectors`, `selector_from_labels`, `selector_from_label_selector`, `parse_selector`, `LabelSelector`, `SelectorError` |
| `khelper.kinds` | `normalize_kinds`, `namespace_scope_label`, `WorkloadRef`, `NotFoundError`, `AmbiguousMatchError`, `InvalidPickError`, `InvalidKindError` |
| `khelper.target` | `Resolver` (`resolve_workload`, `resolve_pod`), `PodResolution`, `select_best_pod` |
| `khelper.rollout` | `rollout_restart`, `wait_deployment_rollout`, `wait_statefulset_rollout` |
| `khelper.rollout_ops` | `get_rollout_status`, `list_rollout_history`, `undo_rollout`, `set_workload_images`, `resolve_tag_image_assignments` and their result classes |
| `khelper.revisions` | `image_with_tag`, `pick_target_revision`, `parse_deployment_revision` and other revision and image helpers |
| `khelper.statefulset_rollout` | `rollout_expectation`, `is_statefulset_rollout_complete` |
| `khelper.logs` | `stream_pod_logs`, `PodLogsOptions`, `select_log_containers`, `pod_has_container`, `copy_log_stream` |
| `khelper.exec` | `exec_in_pod`, `detect_shell` |
| `khelper.events` | `EventObjectRef`, `list_events_by_objects`, `list_events_by_objects_with_pod_name_prefixes` |
| `khelper.metrics` | `list_pod_metrics`, `list_node_metrics`, `PodMetricSummary`, `NodeMetricSummary`, `MetricsUnavailableError` |
| `khelper.clear` | `list_evicted_pods`, `clear_evicted_pods`, `ClearResult`, `ClearPodResult` |
| `khelper.output.table` | `Table`, `print_json` |
| `khelper.output.color` | `colorize_status`, `is_terminal` |

Kubernetes objects are handled as plain dictionaries, in the shape the API
returns them.

## Examples

Build a client. With no arguments the kubeconfig comes from `KUBECONFIG` or
`~/.kube/config`. Its current context is used, the namespace comes from that
context (or `default`), and no request timeout is set:

```python
from khelper.client import new_client_bundle

bundle = new_client_bundle()
client = bundle.client
print(bundle.current_context, bundle.namespace)
```

You can also pass the arguments yourself, in the order
`kubeconfig, context, namespace, request_timeout`. The timeout is in seconds,
and a negative value raises `ValueError`.

Resolve a target and choose a pod:

```python
from khelper.target import Resolver

resolver = Resolver(client)
resolved = resolver.resolve_pod("shop", "payment", "deployment", 0)
print(resolved.workload.name, resolved.pod["metadata"]["name"], resolved.warning)
```

The newest Running pod is chosen. If no pod is running, the newest pod is
chosen and `warning` says so.

Label selectors used to resolve a target, in order of precedence:

```python
from khelper.selectors import target_selectors, selector_from_labels

target_selectors("payment")
# ['app=payment', 'app.kubernetes.io/name=payment']

selector_from_labels({"tier": "backend", "app": "payment"})
# 'app=payment,tier=backend'
```

Swap only the tag of an image. A port in the registry address is kept:

```python
from khelper.revisions import image_with_tag

image_with_tag("registry.local:5000/acme/frontend:v7", "v1.0.1")
# 'registry.local:5000/acme/frontend:v1.0.1'
```

Images pinned by digest (`name@sha256:...`) raise `ValueError`. Use an
explicit container-to-image mapping with `set_workload_images` for those.

Roll a deployment back to the revision before the current one, without
waiting:

```python
from khelper.rollout_ops import undo_rollout

result = undo_rollout(client, "shop", "deployment", "payment")
print(result.from_revision, "->", result.to_revision)
```

Image updates and rollbacks are retried when the API reports a conflict.

Clear evicted pods in a namespace. Pass `"*"` for all namespaces, and
`dry_run=True` to only report what would be deleted:

```python
from khelper.clear import clear_evicted_pods

result = clear_evicted_pods(client, "shop", dry_run=True)
for pod in result.pods:
    print(pod.namespace, pod.name, pod.action)
```

Print a table and JSON:

```python
import sys
from khelper.output.table import Table, print_json

table = Table("NAME", "STATUS")
table.add_row("payment-0", "Running")
table.render(sys.stdout)

print_json(sys.stdout, result)
```

`print_json` writes dataclass fields with camelCase keys. Fields marked as
optional are left out when they are empty.

## Errors

- Resolution failures raise `NotFoundError`, `AmbiguousMatchError` or
  `InvalidPickError`, all from `khelper.kinds`. An unknown kind raises
  `InvalidKindError`.
- Error responses from the API server raise `ApiError` from `khelper.client`.
- A malformed label selector raises `SelectorError`.
- When the cluster does not serve the metrics API, `MetricsUnavailableError`
  is raised.
- A rollout wait that runs out of time raises `TimeoutError`. The default
  wait is five minutes.

## What it does not do

- There is no command-line program. Everything is used from Python.
- Authentication supports bearer tokens (inline or `tokenFile`), client
  certificates and basic auth from the kubeconfig. Exec credential plugins and
  auth providers are not supported.
- `exec_in_pod` relays stdin, stdout and stderr over the exec websocket. It
  does not resize the remote terminal.

## Testing

Install the `test` extra to get pytest, then run `pytest`.