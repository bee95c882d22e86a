"""OpenStack API access for block storage, networking and compute.

Authenticates against Keystone v3 with a password, then talks to the
Cinder, Neutron and Nova endpoints found in the service catalog over plain
REST. Only the calls reconciliation needs are wrapped here.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

import requests

from vmware2openstack import __version__
from vmware2openstack.config import OpenStackConfig
from vmware2openstack.exceptions import (
    CancelledError,
    ConfigurationError,
    ReconcileError,
    UpstreamAPIError,
)
from vmware2openstack.utils.deadline import Deadline
from vmware2openstack.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = f"vmware2openstack/{__version__}"

BLOCK_STORAGE_TYPES = ("volumev3", "block-storage", "volume")
NETWORK_TYPES = ("network",)
COMPUTE_TYPES = ("compute",)


class OpenStackSession:
    """Authenticated HTTP session bound to one Keystone token."""

    def __init__(self, config: OpenStackConfig):
        self.config = config
        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": USER_AGENT,
            "Content-Type": "application/json",
            "Accept": "application/json",
        })
        self.session.verify = not config.insecure
        self.catalog: list[dict[str, Any]] = []
        self.token: Optional[str] = None

    # ── Keystone ─────────────────────────────────────────────────

    def _auth_payload(self) -> dict[str, Any]:
        cfg = self.config
        if cfg.project_id:
            project: dict[str, Any] = {"id": cfg.project_id}
        else:
            project = {"name": cfg.project_name, "domain": {"name": cfg.project_domain_name}}
        password = cfg.password.get_secret_value() if cfg.password else ""
        return {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": cfg.username,
                            "domain": {"name": cfg.user_domain_name},
                            "password": password,
                        }
                    },
                },
                "scope": {"project": project},
            }
        }

    def authenticate(self, deadline: Optional[Deadline] = None) -> None:
        """Obtain a project-scoped token and the service catalog."""
        url = f"{self.config.auth_url}/auth/tokens"
        logger.info(f"Authenticating to Keystone at {self.config.auth_url} as {self.config.username}")
        resp = self._send("POST", url, deadline, json=self._auth_payload())

        token = resp.headers.get("X-Subject-Token")
        if not token:
            raise UpstreamAPIError("POST", url, resp.status_code, "response carried no X-Subject-Token")
        self.token = token
        self.session.headers["X-Auth-Token"] = token
        self.catalog = resp.json().get("token", {}).get("catalog", [])
        logger.debug(f"Keystone catalog lists {len(self.catalog)} services")

    def endpoint_for(self, service_types: tuple[str, ...]) -> str:
        """Pick the catalog URL for the first matching type, region and interface."""
        region = self.config.region_name
        for stype in service_types:
            for svc in self.catalog:
                if svc.get("type") != stype:
                    continue
                for ep in svc.get("endpoints", []):
                    if ep.get("interface") != self.config.interface:
                        continue
                    if region and region not in (ep.get("region_id"), ep.get("region")):
                        continue
                    return ep["url"].rstrip("/")
        raise ConfigurationError(
            f"No {self.config.interface} endpoint for {'/'.join(service_types)}"
            + (f" in region {region}" if region else "")
            + " in the service catalog"
        )

    # ── HTTP ─────────────────────────────────────────────────────

    def _send(
        self, method: str, url: str, deadline: Optional[Deadline] = None, **kwargs
    ) -> requests.Response:
        if deadline is not None:
            deadline.check()
            timeout = deadline.timeout_for(self.config.request_timeout)
        else:
            timeout = self.config.request_timeout

        try:
            resp = self.session.request(method, url, timeout=timeout, **kwargs)
        except requests.Timeout as e:
            if deadline is not None and (deadline.expired or deadline.cancelled):
                err: ReconcileError = CancelledError(f"Deadline exceeded during {method} {url}")
            else:
                err = UpstreamAPIError(method, url, None, str(e))
            # a read timeout means the request went out and may have been applied
            err.outcome_unknown = isinstance(e, requests.ReadTimeout)
            raise err from e
        except requests.RequestException as e:
            raise UpstreamAPIError(method, url, None, str(e)) from e

        if not resp.ok:
            logger.error(f"API error {resp.status_code} on {method} {url}: {resp.text[:500]}")
            try:
                resp.raise_for_status()
            except requests.HTTPError as e:
                raise UpstreamAPIError(method, url, resp.status_code, resp.text[:500]) from e
        return resp

    def request(
        self, method: str, url: str, deadline: Optional[Deadline] = None, **kwargs
    ) -> dict[str, Any]:
        resp = self._send(method, url, deadline, **kwargs)
        if resp.status_code == 204 or not resp.content:
            return {}
        return resp.json()

    def list_all(
        self,
        url: str,
        key: str,
        params: Optional[dict[str, Any]] = None,
        deadline: Optional[Deadline] = None,
    ) -> list[dict[str, Any]]:
        """GET a collection, following ``<key>_links`` next links."""
        items: list[dict[str, Any]] = []
        next_url: Optional[str] = url
        next_params = params
        while next_url:
            data = self.request("GET", next_url, deadline, params=next_params)
            items.extend(data.get(key, []))
            next_url = next(
                (link["href"] for link in data.get(f"{key}_links", []) if link.get("rel") == "next"),
                None,
            )
            next_params = None  # the next href already carries the query
        return items


class BlockStorageAPI:
    """Cinder v3 volume queries."""

    def __init__(self, session: OpenStackSession, endpoint: str):
        self.session = session
        self.endpoint = endpoint

    def list_volumes(
        self,
        name: str,
        metadata: Optional[dict[str, str]] = None,
        deadline: Optional[Deadline] = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"name": name}
        if metadata:
            params["metadata"] = json.dumps(metadata, sort_keys=True)
        return self.session.list_all(f"{self.endpoint}/volumes", "volumes", params, deadline)

    def get_volume(self, volume_id: str, deadline: Optional[Deadline] = None) -> dict[str, Any]:
        result = self.session.request("GET", f"{self.endpoint}/volumes/{volume_id}", deadline)
        return result.get("volume", result)


class NetworkingAPI:
    """Neutron v2.0 port queries and creation."""

    def __init__(self, session: OpenStackSession, endpoint: str):
        self.session = session
        self.endpoint = endpoint if endpoint.endswith("/v2.0") else f"{endpoint}/v2.0"

    def list_ports(
        self, network_id: str, mac_address: str, deadline: Optional[Deadline] = None
    ) -> list[dict[str, Any]]:
        params = {"network_id": network_id, "mac_address": mac_address}
        return self.session.list_all(f"{self.endpoint}/ports", "ports", params, deadline)

    def create_port(self, port: dict[str, Any], deadline: Optional[Deadline] = None) -> dict[str, Any]:
        result = self.session.request("POST", f"{self.endpoint}/ports", deadline, json={"port": port})
        return result.get("port", result)


class ComputeAPI:
    """Nova v2.1 server creation and status."""

    def __init__(self, session: OpenStackSession, endpoint: str):
        self.session = session
        self.endpoint = endpoint

    def create_server(self, server: dict[str, Any], deadline: Optional[Deadline] = None) -> dict[str, Any]:
        result = self.session.request("POST", f"{self.endpoint}/servers", deadline, json={"server": server})
        return result.get("server", result)

    def get_server(self, server_id: str, deadline: Optional[Deadline] = None) -> dict[str, Any]:
        result = self.session.request("GET", f"{self.endpoint}/servers/{server_id}", deadline)
        return result.get("server", result)


@dataclass
class ClientSet:
    """The three service clients reconciliation works against."""
    block_storage: BlockStorageAPI
    compute: ComputeAPI
    networking: NetworkingAPI

    @classmethod
    def connect(cls, config: OpenStackConfig, deadline: Optional[Deadline] = None) -> "ClientSet":
        """Authenticate and bind clients to the catalog endpoints."""
        session = OpenStackSession(config)
        session.authenticate(deadline)
        return cls(
            block_storage=BlockStorageAPI(session, session.endpoint_for(BLOCK_STORAGE_TYPES)),
            compute=ComputeAPI(session, session.endpoint_for(COMPUTE_TYPES)),
            networking=NetworkingAPI(session, session.endpoint_for(NETWORK_TYPES)),
        )
