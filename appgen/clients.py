"""Async HTTP clients for the image backends.

Thin wrappers around ``httpx.AsyncClient`` for the three places an image can be
found: the local Docker engine (over its unix socket), the cluster API (image
streams) and a Docker registry v2 endpoint.  Each lookup returns the decoded
JSON metadata, ``None`` when the backend answers "not found", and raises
:class:`~appgen.errors.ClientUnavailableError` when the backend cannot be
reached.  No retries are performed.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlparse

import httpx

from .errors import ClientUnavailableError

logger = logging.getLogger(__name__)

_MANIFEST_V2 = "application/vnd.docker.distribution.manifest.v2+json"
_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
_OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
_OCI_INDEX = "application/vnd.oci.image.index.v1+json"
_INDEX_TYPES = (_MANIFEST_LIST, _OCI_INDEX)


def _decode(response: httpx.Response, backend: str) -> dict[str, Any]:
    """Decode a JSON object body, treating anything else as a broken backend."""
    try:
        data = response.json()
    except ValueError as exc:
        raise ClientUnavailableError(
            backend, f"invalid JSON from {response.request.url}: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise ClientUnavailableError(
            backend, f"expected a JSON object from {response.request.url}"
        )
    return data


class DockerEngineClient:
    """Queries the image store of a local Docker engine."""

    backend = "docker"

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        timeout: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.socket_path = socket_path
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        transport = self._transport or httpx.AsyncHTTPTransport(uds=self.socket_path)
        return httpx.AsyncClient(
            base_url="http://docker",
            transport=transport,
            timeout=httpx.Timeout(self.timeout, connect=3.0),
        )

    async def inspect_image(self, name: str) -> dict[str, Any] | None:
        """Return ``docker image inspect`` data for *name*, or ``None``."""
        try:
            async with self._client() as client:
                response = await client.get(f"/images/{quote(name, safe='/:@')}/json")
        except (httpx.TransportError, OSError) as exc:
            raise ClientUnavailableError(self.backend, str(exc) or type(exc).__name__) from exc

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ClientUnavailableError(
                self.backend, f"unexpected HTTP {response.status_code} inspecting {name}"
            )
        return _decode(response, self.backend)


class ClusterImageClient:
    """Reads image streams from the cluster API."""

    backend = "cluster"
    _API_PREFIX = "/apis/image.openshift.io/v1"

    def __init__(
        self,
        server: str,
        token: str = "",
        verify_tls: bool = True,
        timeout: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.token = token
        self.verify_tls = verify_tls
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.server,
            headers=headers,
            verify=self.verify_tls,
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout, connect=5.0),
        )

    async def _get(self, path: str) -> dict[str, Any] | None:
        try:
            async with self._client() as client:
                response = await client.get(path)
        except httpx.TransportError as exc:
            raise ClientUnavailableError(self.backend, str(exc) or type(exc).__name__) from exc

        if response.status_code in (403, 404):
            return None
        if response.status_code != 200:
            raise ClientUnavailableError(
                self.backend, f"unexpected HTTP {response.status_code} for {path}"
            )
        return _decode(response, self.backend)

    async def get_image_stream(self, namespace: str, name: str) -> dict[str, Any] | None:
        """Return the image stream *name* in *namespace*, or ``None``."""
        return await self._get(f"{self._API_PREFIX}/namespaces/{namespace}/imagestreams/{name}")

    async def get_image_stream_image(
        self, namespace: str, name: str, image_id: str
    ) -> dict[str, Any] | None:
        """Return the image metadata for ``name@image_id``, or ``None``."""
        return await self._get(
            f"{self._API_PREFIX}/namespaces/{namespace}/imagestreamimages/{name}@{image_id}"
        )


class RegistryClient:
    """Reads manifests and image configs from a Docker registry v2 API.

    Anonymous bearer tokens are requested when the registry issues a
    ``WWW-Authenticate`` challenge; no credentials are ever sent.
    """

    backend = "registry"

    def __init__(
        self,
        url: str = "https://registry-1.docker.io",
        timeout: int = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def host(self) -> str:
        return urlparse(self.url).netloc

    def for_host(self, host: str) -> "RegistryClient":
        """Return a client for another registry host with the same settings."""
        return RegistryClient(url=f"https://{host}", timeout=self.timeout, transport=self._transport)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.url,
            transport=self._transport,
            timeout=httpx.Timeout(self.timeout, connect=10.0),
            follow_redirects=True,
        )

    @staticmethod
    def _parse_challenge(header: str) -> dict[str, str]:
        """Parse ``Bearer realm="...",service="...",scope="..."``."""
        scheme, _, params = header.partition(" ")
        if scheme.lower() != "bearer":
            return {}
        result: dict[str, str] = {}
        for part in params.split(","):
            key, _, value = part.strip().partition("=")
            if key:
                result[key] = value.strip('"')
        return result

    async def _anonymous_token(self, client: httpx.AsyncClient, challenge: str) -> str:
        params = self._parse_challenge(challenge)
        realm = params.pop("realm", "")
        if not realm:
            return ""
        response = await client.get(realm, params=params)
        if response.status_code != 200:
            return ""
        data = _decode(response, self.backend)
        return data.get("token") or data.get("access_token") or ""

    async def _get(
        self, client: httpx.AsyncClient, path: str, headers: dict[str, str]
    ) -> httpx.Response:
        response = await client.get(path, headers=headers)
        if response.status_code == 401 and "Authorization" not in headers:
            token = await self._anonymous_token(
                client, response.headers.get("WWW-Authenticate", "")
            )
            if token:
                headers["Authorization"] = f"Bearer {token}"
                response = await client.get(path, headers=headers)
        return response

    async def get_image(self, repository: str, tag: str) -> dict[str, Any] | None:
        """Return ``{"registry", "digest", "config"}`` for *repository*:*tag*, or ``None``."""
        headers = {"Accept": ", ".join((_MANIFEST_V2, _OCI_MANIFEST, _MANIFEST_LIST, _OCI_INDEX))}
        try:
            async with self._client() as client:
                response = await self._get(client, f"/v2/{repository}/manifests/{tag}", headers)
                if response.status_code in (401, 403, 404):
                    return None
                if response.status_code != 200:
                    raise ClientUnavailableError(
                        self.backend, f"unexpected HTTP {response.status_code} for {repository}:{tag}"
                    )
                manifest = _decode(response, self.backend)
                digest = response.headers.get("Docker-Content-Digest", "")

                media_type = manifest.get("mediaType") or response.headers.get("Content-Type", "")
                if media_type in _INDEX_TYPES:
                    chosen = _pick_platform_manifest(manifest.get("manifests", []))
                    if chosen is None:
                        return None
                    digest = chosen.get("digest", digest)
                    response = await self._get(
                        client, f"/v2/{repository}/manifests/{digest}", headers
                    )
                    if response.status_code != 200:
                        return None
                    manifest = _decode(response, self.backend)

                config: dict[str, Any] = {}
                config_digest = manifest.get("config", {}).get("digest")
                if config_digest:
                    blob = await self._get(
                        client, f"/v2/{repository}/blobs/{config_digest}", headers
                    )
                    if blob.status_code == 200:
                        config = _decode(blob, self.backend).get("config") or {}
        except httpx.TransportError as exc:
            raise ClientUnavailableError(self.backend, str(exc) or type(exc).__name__) from exc

        return {"registry": self.host, "digest": digest, "config": config}


def _pick_platform_manifest(manifests: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Prefer the linux/amd64 entry of a manifest list."""
    for entry in manifests:
        platform = entry.get("platform", {})
        if platform.get("os") == "linux" and platform.get("architecture") == "amd64":
            return entry
    return manifests[0] if manifests else None
