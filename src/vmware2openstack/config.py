"""Configuration models for vmware2openstack using Pydantic v2."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Optional
from uuid import UUID

import yaml
from pydantic import (
    BaseModel,
    Field,
    IPvAnyAddress,
    SecretStr,
    field_validator,
    model_validator,
)

NIL_UUID = UUID(int=0)


def normalize_mac(mac: str) -> str:
    """Lowercase, colon-separated form used for every MAC comparison."""
    return mac.strip().lower().replace("-", ":")


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class VMwareConfig(BaseModel):
    """VMware vCenter/vSphere connection configuration."""

    vcenter: str = Field(..., description="vCenter hostname or IP")
    username: str = Field(..., description="vCenter username")
    password: Optional[SecretStr] = Field(None, description="vCenter password (prefer password_env)")
    password_env: Optional[str] = Field(None, description="Environment variable containing the password")
    insecure: bool = Field(False, description="Skip SSL certificate verification")
    port: int = Field(443, description="vCenter port")

    @model_validator(mode="after")
    def resolve_password(self) -> "VMwareConfig":
        if self.password is None and self.password_env:
            env_val = os.environ.get(self.password_env)
            if env_val:
                self.password = SecretStr(env_val)
        if self.password is None:
            raise ValueError("Either 'password' or 'password_env' (with matching env var) must be provided")
        return self


class OpenStackConfig(BaseModel):
    """Keystone v3 password credentials and endpoint selection."""

    auth_url: str = Field(..., description="Keystone v3 endpoint, e.g. https://keystone:5000/v3")
    username: str = Field(...)
    password: Optional[SecretStr] = Field(None)
    password_env: Optional[str] = Field("OS_PASSWORD")
    user_domain_name: str = Field("Default")
    project_name: Optional[str] = Field(None)
    project_id: Optional[str] = Field(None)
    project_domain_name: str = Field("Default")
    region_name: Optional[str] = Field(None, description="Catalog region, any region if unset")
    interface: str = Field("public", pattern="^(public|internal|admin)$")
    insecure: bool = Field(False, description="Skip TLS certificate verification")
    request_timeout: float = Field(60.0, gt=0, description="Per-request HTTP timeout (seconds)")

    @field_validator("auth_url")
    @classmethod
    def strip_auth_url(cls, v: str) -> str:
        v = v.rstrip("/")
        if not v:
            raise ValueError("auth_url must not be empty (check OS_AUTH_URL)")
        return v

    @model_validator(mode="after")
    def resolve_credentials(self) -> "OpenStackConfig":
        if self.password is None and self.password_env:
            env_val = os.environ.get(self.password_env)
            if env_val:
                self.password = SecretStr(env_val)
        if self.password is None:
            raise ValueError("OpenStack password not found (check OS_PASSWORD env var)")
        if not self.project_name and not self.project_id:
            raise ValueError("Either project_name or project_id must be set (OS_PROJECT_NAME / OS_PROJECT_ID)")
        return self

    @classmethod
    def from_env(cls, **overrides) -> "OpenStackConfig":
        """Build from the standard OS_* environment variables."""
        data = {
            "auth_url": os.environ.get("OS_AUTH_URL", ""),
            "username": os.environ.get("OS_USERNAME", ""),
            "user_domain_name": os.environ.get("OS_USER_DOMAIN_NAME", "Default"),
            "project_name": os.environ.get("OS_PROJECT_NAME") or None,
            "project_id": os.environ.get("OS_PROJECT_ID") or None,
            "project_domain_name": os.environ.get("OS_PROJECT_DOMAIN_NAME", "Default"),
            "region_name": os.environ.get("OS_REGION_NAME") or None,
            "interface": os.environ.get("OS_INTERFACE", "public"),
            "insecure": _env_flag("OS_INSECURE"),
        }
        data.update(overrides)
        return cls(**data)


class ReconcileOptions(BaseModel):
    """Knobs for volume matching, port creation and the instance wait."""

    unsafe_volume_by_name: bool = Field(
        False, description="Match volumes by name only, ignoring ownership metadata"
    )
    security_groups: Optional[list[str]] = Field(
        None, description="Security groups for managed-subnet ports (None keeps Neutron's default)"
    )
    wait_timeout: float = Field(300.0, gt=0, description="Max wait for the server to become ACTIVE")
    poll_interval: float = Field(5.0, gt=0, description="Seconds between server status polls")


class NetworkMapping(BaseModel):
    """Maps one source NIC (by MAC) to a target network and optional subnet/IP.

    A missing or nil ``subnet_id`` makes the port unmanaged: no fixed IP is
    requested and no security groups are attached.
    """

    mac_address: str
    network_id: UUID
    subnet_id: Optional[UUID] = None
    ip_address: Optional[IPvAnyAddress] = None

    @field_validator("mac_address")
    @classmethod
    def clean_mac(cls, v: str) -> str:
        v = normalize_mac(v)
        if not v:
            raise ValueError("mac_address must not be empty")
        return v

    @field_validator("subnet_id")
    @classmethod
    def nil_subnet_is_unmanaged(cls, v: Optional[UUID]) -> Optional[UUID]:
        return None if v == NIL_UUID else v

    @property
    def unmanaged(self) -> bool:
        return self.subnet_id is None

    @classmethod
    def parse(cls, value: str) -> "NetworkMapping":
        """Parse ``mac=..,network-id=..[,subnet-id=..][,ip=..]``."""
        fields: dict[str, str] = {}
        for part in value.split(","):
            part = part.strip()
            if not part:
                continue
            key, sep, val = part.partition("=")
            if not sep:
                raise ValueError(f"Invalid network mapping segment '{part}' (expected key=value)")
            fields[key.strip().lower().replace("-", "_")] = val.strip()

        aliases = {"mac": "mac_address", "ip": "ip_address"}
        data = {aliases.get(k, k): v for k, v in fields.items()}
        unknown = set(data) - set(cls.model_fields)
        if unknown:
            raise ValueError(f"Unknown network mapping key(s): {', '.join(sorted(unknown))}")
        return cls(**data)


class NetworkMappingTable(BaseModel):
    """Ordered MAC → NetworkMapping table. Order drives NIC attachment order."""

    mappings: list[NetworkMapping] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_macs(self) -> "NetworkMappingTable":
        seen: set[str] = set()
        for m in self.mappings:
            if m.mac_address in seen:
                raise ValueError(f"Duplicate network mapping for MAC {m.mac_address}")
            seen.add(m.mac_address)
        return self

    @classmethod
    def from_cli(cls, values: tuple[str, ...] | list[str]) -> "NetworkMappingTable":
        return cls(mappings=[NetworkMapping.parse(v) for v in values])

    def __iter__(self) -> Iterator[NetworkMapping]:  # type: ignore[override]
        return iter(self.mappings)

    def __len__(self) -> int:
        return len(self.mappings)

    def get(self, mac_address: str) -> Optional[NetworkMapping]:
        mac = normalize_mac(mac_address)
        return next((m for m in self.mappings if m.mac_address == mac), None)


class AppConfig(BaseModel):
    """Root application configuration."""

    vmware: VMwareConfig
    openstack: OpenStackConfig
    reconcile: ReconcileOptions = ReconcileOptions()

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AppConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_env_and_args(cls, **overrides) -> "AppConfig":
        """Build config from environment variables with CLI overrides."""
        base = {
            "vmware": {
                "vcenter": os.environ.get("VCENTER_HOST", ""),
                "username": os.environ.get("VCENTER_USERNAME", ""),
                "password_env": "VCENTER_PASSWORD",
                "insecure": _env_flag("VCENTER_INSECURE"),
            },
            "openstack": {
                "auth_url": os.environ.get("OS_AUTH_URL", ""),
                "username": os.environ.get("OS_USERNAME", ""),
                "user_domain_name": os.environ.get("OS_USER_DOMAIN_NAME", "Default"),
                "project_name": os.environ.get("OS_PROJECT_NAME") or None,
                "project_id": os.environ.get("OS_PROJECT_ID") or None,
                "project_domain_name": os.environ.get("OS_PROJECT_DOMAIN_NAME", "Default"),
                "region_name": os.environ.get("OS_REGION_NAME") or None,
                "interface": os.environ.get("OS_INTERFACE", "public"),
                "insecure": _env_flag("OS_INSECURE"),
            },
        }
        # Deep merge overrides
        for key, value in overrides.items():
            if isinstance(value, dict) and key in base:
                base[key].update(value)
            else:
                base[key] = value
        return cls(**base)


# --- Per-VM provisioning plans ---

class VMProvisionPlan(BaseModel):
    """What to provision for a single VM."""

    vm_name: str = Field(..., description="Source VM name in vCenter")
    flavor: str = Field(..., description="Nova flavor ID or name reference")
    network_mappings: NetworkMappingTable = Field(default_factory=NetworkMappingTable)
    security_groups: Optional[list[str]] = Field(None, description="Overrides reconcile.security_groups")
    unsafe_volume_by_name: Optional[bool] = Field(None, description="Overrides reconcile.unsafe_volume_by_name")

    @field_validator("network_mappings", mode="before")
    @classmethod
    def accept_mapping_list(cls, v):
        if isinstance(v, list):
            return {"mappings": [NetworkMapping.parse(m) if isinstance(m, str) else m for m in v]}
        return v

    def options(self, defaults: ReconcileOptions) -> ReconcileOptions:
        """Merge per-VM overrides onto the global reconcile options."""
        update = {}
        if self.security_groups is not None:
            update["security_groups"] = self.security_groups
        if self.unsafe_volume_by_name is not None:
            update["unsafe_volume_by_name"] = self.unsafe_volume_by_name
        return defaults.model_copy(update=update)


class BatchProvisionPlan(BaseModel):
    """Batch plan with multiple VMs, each reconciled independently."""

    vms: list[VMProvisionPlan] = Field(..., min_length=1)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "BatchProvisionPlan":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)
