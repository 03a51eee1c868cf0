"""Kubernetes API access and kubeconfig handling."""

from __future__ import annotations

import base64
import json
import os
import ssl
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Mapping, Sequence
from urllib.parse import quote, urlencode

import requests
import websocket
import yaml

_RESOURCES: dict[str, tuple[str, str, bool]] = {
    "pods": ("/api/v1", "pods", True),
    "events": ("/api/v1", "events", True),
    "nodes": ("/api/v1", "nodes", False),
    "deployments": ("/apis/apps/v1", "deployments", True),
    "statefulsets": ("/apis/apps/v1", "statefulsets", True),
    "replicasets": ("/apis/apps/v1", "replicasets", True),
    "controllerrevisions": ("/apis/apps/v1", "controllerrevisions", True),
    "podmetrics": ("/apis/metrics.k8s.io/v1beta1", "pods", True),
    "nodemetrics": ("/apis/metrics.k8s.io/v1beta1", "nodes", False),
}

_EXEC_PROTOCOL = "v4.channel.k8s.io"
_STDIN_CHANNEL = 0
_STDOUT_CHANNEL = 1
_STDERR_CHANNEL = 2
_ERROR_CHANNEL = 3


class ApiError(Exception):
    """An error status returned by the Kubernetes API."""

    def __init__(self, status: int, reason: str = "", message: str = "") -> None:
        self.status = status
        self.reason = reason
        self.message = message or reason or f"HTTP {status}"
        super().__init__(self.message)

    @classmethod
    def from_response(cls, response: Any) -> "ApiError":
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("kind") == "Status":
            return cls(response.status_code, body.get("reason") or "", body.get("message") or "")
        return cls(response.status_code, response.reason or "", (response.text or "").strip())

    def with_context(self, context: str) -> "ApiError":
        """Return a copy whose message is prefixed with context."""
        return ApiError(self.status, self.reason, f"{context}: {self.message}")


def is_not_found(error: BaseException) -> bool:
    return isinstance(error, ApiError) and (error.status == 404 or error.reason == "NotFound")


def is_conflict(error: BaseException) -> bool:
    return isinstance(error, ApiError) and (error.status == 409 or error.reason == "Conflict")


def is_service_unavailable(error: BaseException) -> bool:
    return isinstance(error, ApiError) and (error.status == 503 or error.reason == "ServiceUnavailable")


def _write_payload(out: Any, payload: bytes) -> None:
    try:
        out.write(payload)
    except TypeError:
        out.write(payload.decode("utf-8", errors="replace"))


class KubeClient:
    """A small REST client for the Kubernetes API."""

    def __init__(
        self,
        server: str,
        *,
        token: str | None = None,
        verify: bool | str = True,
        cert: tuple[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.token = token
        self.verify = verify
        self.cert = cert
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = verify
        if cert:
            self._session.cert = cert
        if auth:
            self._session.auth = auth
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _url(self, resource: str, namespace: str, name: str = "", subresource: str = "") -> str:
        try:
            prefix, plural, namespaced = _RESOURCES[resource]
        except KeyError:
            raise ValueError(f"unsupported resource {resource!r}") from None
        parts = [self.server + prefix]
        if namespaced and namespace:
            parts += ["namespaces", quote(namespace, safe="")]
        parts.append(plural)
        if name:
            parts.append(quote(name, safe=""))
        if subresource:
            parts.append(subresource)
        return "/".join(parts)

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: Any = None,
        body: Any = None,
        content_type: str = "application/json",
        stream: bool = False,
    ) -> Any:
        headers = {}
        data = None
        if body is not None:
            data = json.dumps(body)
            headers["Content-Type"] = content_type
        response = self._session.request(
            method, url, params=params, data=data, headers=headers, timeout=self.timeout, stream=stream
        )
        if response.status_code >= 400:
            raise ApiError.from_response(response)
        return response

    def get(self, resource: str, namespace: str, name: str) -> dict[str, Any]:
        return self._request("GET", self._url(resource, namespace, name)).json()

    def list(
        self, resource: str, namespace: str = "", label_selector: str = "", field_selector: str = ""
    ) -> list[dict[str, Any]]:
        params = {}
        if label_selector:
            params["labelSelector"] = label_selector
        if field_selector:
            params["fieldSelector"] = field_selector
        body = self._request("GET", self._url(resource, namespace), params=params or None).json()
        return list(body.get("items") or [])

    def delete(self, resource: str, namespace: str, name: str) -> None:
        self._request("DELETE", self._url(resource, namespace, name))

    def patch(self, resource: str, namespace: str, name: str, body: Mapping[str, Any]) -> dict[str, Any]:
        response = self._request(
            "PATCH",
            self._url(resource, namespace, name),
            body=body,
            content_type="application/strategic-merge-patch+json",
        )
        return response.json()

    def update(self, resource: str, namespace: str, name: str, body: Mapping[str, Any]) -> dict[str, Any]:
        return self._request("PUT", self._url(resource, namespace, name), body=body).json()

    def stream_logs(self, namespace: str, name: str, params: Mapping[str, Any]) -> BinaryIO:
        """Open a pod log stream; the caller closes the returned file object."""
        response = self._request(
            "GET", self._url("pods", namespace, name, "log"), params=dict(params), stream=True
        )
        raw = response.raw
        raw.decode_content = True
        return raw

    def exec(
        self,
        namespace: str,
        pod: str,
        container: str,
        command: Sequence[str],
        tty: bool,
        stdin: Any,
        stdout: Any,
        stderr: Any,
    ) -> None:
        """Run a command in a pod container, relaying its streams."""
        query: list[tuple[str, str]] = [("command", part) for part in command]
        if container:
            query.append(("container", container))
        for key, enabled in (
            ("stdin", stdin is not None),
            ("stdout", stdout is not None),
            ("stderr", stderr is not None),
            ("tty", tty),
        ):
            query.append((key, "true" if enabled else "false"))
        url = self._url("pods", namespace, pod, "exec") + "?" + urlencode(query)
        if url.startswith("https://"):
            url = "wss://" + url[len("https://"):]
        elif url.startswith("http://"):
            url = "ws://" + url[len("http://"):]

        sslopt: dict[str, Any] = {}
        if self.verify is False:
            sslopt["cert_reqs"] = ssl.CERT_NONE
        elif isinstance(self.verify, str):
            sslopt["ca_certs"] = self.verify
        if self.cert:
            sslopt["certfile"], sslopt["keyfile"] = self.cert
        headers = [f"Authorization: Bearer {self.token}"] if self.token else []

        ws = websocket.create_connection(
            url, header=headers, subprotocols=[_EXEC_PROTOCOL], sslopt=sslopt, timeout=self.timeout
        )
        if stdin is not None:
            threading.Thread(target=self._pump_stdin, args=(ws, stdin), daemon=True).start()
        try:
            while True:
                opcode, data = ws.recv_data()
                if opcode == websocket.ABNF.OPCODE_CLOSE:
                    break
                if isinstance(data, str):
                    data = data.encode()
                if not data:
                    continue
                channel, payload = data[0], data[1:]
                if channel == _STDOUT_CHANNEL and stdout is not None:
                    _write_payload(stdout, payload)
                elif channel == _STDERR_CHANNEL and stderr is not None:
                    _write_payload(stderr, payload)
                elif channel == _ERROR_CHANNEL and payload:
                    status = json.loads(payload)
                    if status.get("status") != "Success":
                        raise ApiError(
                            int(status.get("code") or 500),
                            status.get("reason") or "",
                            status.get("message") or "command failed",
                        )
        except websocket.WebSocketConnectionClosedException:
            pass
        finally:
            ws.close()

    @staticmethod
    def _pump_stdin(ws: Any, stdin: Any) -> None:
        try:
            while True:
                chunk = stdin.read(4096)
                if not chunk:
                    return
                if isinstance(chunk, str):
                    chunk = chunk.encode()
                ws.send_binary(bytes([_STDIN_CHANNEL]) + chunk)
        except (OSError, ValueError, websocket.WebSocketException):
            return


@dataclass
class ClientBundle:
    """An initialised client together with the resolved context and namespace."""

    client: KubeClient
    raw_config: dict[str, Any]
    namespace: str
    current_context: str


def _named(raw: Mapping[str, Any], section: str, key: str, name: str) -> dict[str, Any] | None:
    for entry in raw.get(section) or []:
        if entry.get("name") == name:
            return dict(entry.get(key) or {})
    return None


def _resolve_path(path: str, base_dir: Path) -> str:
    candidate = Path(path).expanduser()
    return str(candidate if candidate.is_absolute() else base_dir / candidate)


def _material(data: str | None, path: str | None, base_dir: Path) -> str | None:
    if data:
        handle = tempfile.NamedTemporaryFile(prefix=".khelper-", delete=False)
        with handle:
            handle.write(base64.b64decode(data))
        return handle.name
    if path:
        return _resolve_path(path, base_dir)
    return None


def _default_kubeconfig_path() -> str:
    env = os.environ.get("KUBECONFIG", "")
    candidates = [item for item in env.split(os.pathsep) if item]
    for candidate in candidates:
        if Path(candidate).expanduser().exists():
            return candidate
    if candidates:
        return candidates[0]
    return str(Path.home() / ".kube" / "config")


def _client_from_config(
    raw: Mapping[str, Any], context: Mapping[str, Any], timeout: float | None, base_dir: Path
) -> KubeClient:
    cluster = _named(raw, "clusters", "cluster", context.get("cluster") or "")
    if cluster is None or not cluster.get("server"):
        raise ValueError("build kubernetes REST config: cluster has no server defined")
    user = _named(raw, "users", "user", context.get("user") or "") or {}

    verify: bool | str = True
    if cluster.get("insecure-skip-tls-verify"):
        verify = False
    else:
        ca = _material(cluster.get("certificate-authority-data"), cluster.get("certificate-authority"), base_dir)
        if ca:
            verify = ca

    token = user.get("token")
    if not token and user.get("tokenFile"):
        token = Path(_resolve_path(user["tokenFile"], base_dir)).read_text().strip()
    cert_file = _material(user.get("client-certificate-data"), user.get("client-certificate"), base_dir)
    key_file = _material(user.get("client-key-data"), user.get("client-key"), base_dir)
    cert = (cert_file, key_file) if cert_file and key_file else None
    auth = None
    if user.get("username") and "password" in user:
        auth = (user["username"], user["password"])

    return KubeClient(cluster["server"], token=token, verify=verify, cert=cert, auth=auth, timeout=timeout)


def new_client_bundle(
    kubeconfig: str = "", context: str = "", namespace: str = "", request_timeout: float = 0.0
) -> ClientBundle:
    """Build a client from a kubeconfig, honouring context and namespace overrides."""
    if request_timeout < 0:
        raise ValueError("request timeout must be >= 0")
    path = kubeconfig or _default_kubeconfig_path()
    raw = load_raw_kubeconfig(path)

    context_name = current_context_name(raw, context)
    if not context_name:
        raise ValueError("build kubernetes REST config: no current context is set")
    ctx = _named(raw, "contexts", "context", context_name)
    if ctx is None:
        raise ValueError(f'build kubernetes REST config: context "{context_name}" does not exist')

    base_dir = Path(path).expanduser().resolve().parent
    client = _client_from_config(raw, ctx, request_timeout or None, base_dir)
    resolved = namespace.strip() or (ctx.get("namespace") or "").strip() or "default"
    return ClientBundle(client=client, raw_config=raw, namespace=resolved, current_context=context_name)


def load_raw_kubeconfig(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read a kubeconfig file as a mapping."""
    try:
        text = Path(path).read_text()
    except OSError as exc:
        raise OSError(f"load kubeconfig file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"load kubeconfig file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"load kubeconfig file {path}: not a mapping")
    return data


def write_raw_kubeconfig_atomic(path: str | os.PathLike[str], config: Mapping[str, Any]) -> None:
    """Replace a kubeconfig file atomically, keeping its permissions."""
    data = yaml.safe_dump(dict(config), sort_keys=False)
    target = Path(path)
    directory = target.parent
    directory.mkdir(mode=0o700, parents=True, exist_ok=True)
    try:
        mode = target.stat().st_mode & 0o777
    except FileNotFoundError:
        mode = 0o600

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".khelper-kubeconfig-")
    try:
        with os.fdopen(fd, "w") as handle:
            handle.write(data)
            handle.flush()
            os.fchmod(handle.fileno(), mode)
            os.fsync(handle.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass
        raise


def current_context_name(raw_config: Mapping[str, Any], override: str = "") -> str:
    override = override.strip()
    if override:
        return override
    return raw_config.get("current-context") or ""