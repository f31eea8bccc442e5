"""
Hostname resource model.

Desired state (spec) and observed state (status) of a Hostname, with
conversion to and from the camelCase JSON documents stored in the database
and served by the API.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

AUTH_TOKEN_KEY = "authToken"


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as an RFC 3339 UTC string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 string produced by format_timestamp()."""
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


@dataclass
class SecretReference:
    """Reference to the secret holding the DDNS auth token."""

    name: str
    namespace: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecretReference":
        return cls(name=data.get("name", ""), namespace=data.get("namespace", ""))

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name}
        if self.namespace:
            result["namespace"] = self.namespace
        return result


@dataclass
class DDNSService:
    """Endpoint and credentials of the DDNS provider."""

    endpoint: str
    auth_secret_ref: SecretReference

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DDNSService":
        return cls(
            endpoint=data.get("endpoint", ""),
            auth_secret_ref=SecretReference.from_dict(data.get("authSecretRef") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "authSecretRef": self.auth_secret_ref.to_dict(),
        }


@dataclass
class HostnameSpec:
    """Desired state of a Hostname."""

    hostname: str
    ddns_service: DDNSService
    # Empty means the public IP is detected at reconcile time
    address: str = ""
    check_interval_minutes: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HostnameSpec":
        return cls(
            hostname=data.get("hostname", ""),
            ddns_service=DDNSService.from_dict(data.get("ddnsService") or {}),
            address=data.get("address") or "",
            check_interval_minutes=data.get("checkIntervalMinutes"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "hostname": self.hostname,
            "address": self.address,
            "ddnsService": self.ddns_service.to_dict(),
        }
        if self.check_interval_minutes is not None:
            result["checkIntervalMinutes"] = self.check_interval_minutes
        return result


@dataclass
class LastUpdate:
    """What the most recent reconciliation attempted, and whether it failed."""

    scheduled_at: Optional[datetime] = None
    failed: bool = False
    hostname: str = ""
    address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastUpdate":
        return cls(
            scheduled_at=parse_timestamp(data.get("scheduledAt")),
            failed=bool(data.get("failed", False)),
            hostname=data.get("hostname", ""),
            address=data.get("address", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        # failed is always emitted so that clearing it reaches the store
        return {
            "scheduledAt": format_timestamp(self.scheduled_at),
            "failed": self.failed,
            "hostname": self.hostname,
            "address": self.address,
        }


@dataclass
class Condition:
    """Standard observation entry on a Hostname status."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None
    observed_generation: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=data.get("type", ""),
            status=data.get("status", "Unknown"),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=parse_timestamp(data.get("lastTransitionTime")),
            observed_generation=data.get("observedGeneration"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "lastTransitionTime": format_timestamp(self.last_transition_time),
        }
        if self.observed_generation is not None:
            result["observedGeneration"] = self.observed_generation
        return result


@dataclass
class HostnameStatus:
    """Observed state of a Hostname."""

    conditions: List[Condition] = field(default_factory=list)
    last_update: Optional[LastUpdate] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HostnameStatus":
        data = data or {}
        last_update = data.get("lastUpdate")
        return cls(
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            last_update=LastUpdate.from_dict(last_update) if last_update else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        if self.last_update is not None:
            result["lastUpdate"] = self.last_update.to_dict()
        return result

    def ensure_last_update(self) -> LastUpdate:
        """Return lastUpdate, creating it on first touch."""
        if self.last_update is None:
            self.last_update = LastUpdate()
        return self.last_update


@dataclass
class Hostname:
    """A Hostname resource as loaded from the store."""

    id: int
    name: str
    namespace: str
    spec: HostnameSpec
    status: HostnameStatus = field(default_factory=HostnameStatus)
    generation: int = 1

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Hostname":
        """Build a Hostname from a parsed database row."""
        return cls(
            id=row["id"],
            name=row["name"],
            namespace=row.get("namespace") or "default",
            spec=HostnameSpec.from_dict(row.get("spec") or {}),
            status=HostnameStatus.from_dict(copy.deepcopy(row.get("status"))),
            generation=row.get("generation", 1),
        )

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"
