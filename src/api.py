"""
REST API for Hostname and Secret management.

A FastAPI application served by uvicorn. Writes only touch the database;
the controller picks changes up on its next poll.
"""

import base64
import binascii
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg
import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from db import DatabaseManager
from providers import ProviderRegistry, get_registry
from validation import validate_hostname_spec

logger = logging.getLogger(__name__)

# Validation constants
# Kubernetes-style name pattern: lowercase alphanumeric, hyphens, max 63 chars
NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63
MAX_SPEC_SIZE = 64 * 1024  # 64KB max for a hostname spec


def validate_name_format(value: str, field_name: str) -> str:
    """Validate that a name follows Kubernetes naming conventions."""
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or '-', "
            f"must start and end with an alphanumeric character"
        )
    return value


def validate_json_size(value: Dict[str, Any], field_name: str) -> Dict[str, Any]:
    """Validate that JSON data doesn't exceed size limits."""
    if len(json.dumps(value)) > MAX_SPEC_SIZE:
        raise ValueError(
            f"{field_name} exceeds maximum size of {MAX_SPEC_SIZE // 1024}KB"
        )
    return value


# Hostname models


class HostnameCreate(BaseModel):
    """Request model for creating a hostname."""

    name: str = Field(..., description="Hostname resource name", examples=["home"])
    namespace: str = Field(default="default", description="Namespace")
    spec: Dict[str, Any] = Field(..., description="Hostname spec")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        return validate_name_format(v, "namespace")

    @field_validator("spec")
    @classmethod
    def validate_spec_size(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return validate_json_size(v, "spec")


class HostnameUpdate(BaseModel):
    """Request model for replacing a hostname's spec."""

    spec: Dict[str, Any] = Field(..., description="Updated hostname spec")

    @field_validator("spec")
    @classmethod
    def validate_spec_size(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        return validate_json_size(v, "spec")


class HostnameResponse(BaseModel):
    """Response model for a hostname."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    namespace: str
    spec: Dict[str, Any]
    status: Dict[str, Any] = {}
    generation: int
    observed_generation: int
    retry_count: int = 0
    next_reconcile_time: Optional[datetime] = None
    last_reconcile_time: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReconciliationHistoryResponse(BaseModel):
    """Response model for reconciliation history."""

    id: int
    hostname_id: int
    generation: int
    success: bool
    trigger_reason: Optional[str] = None
    message: Optional[str] = None
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
    reconcile_time: datetime


# Secret models


class SecretCreate(BaseModel):
    """
    Request model for creating or replacing a secret.

    ``data`` values are base64 encoded, ``stringData`` values are plain text.
    When a key appears in both, ``stringData`` wins.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    namespace: str = "default"
    data: Dict[str, str] = Field(default_factory=dict)
    string_data: Dict[str, str] = Field(default_factory=dict, alias="stringData")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("namespace")
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        return validate_name_format(v, "namespace")

    @field_validator("data")
    @classmethod
    def validate_base64(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key, value in v.items():
            try:
                base64.b64decode(value, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError(f"data.{key} is not valid base64")
        return v

    @model_validator(mode="after")
    def validate_not_empty(self) -> "SecretCreate":
        if not self.data and not self.string_data:
            raise ValueError("secret must have data or stringData")
        return self

    def to_bytes(self) -> Dict[str, bytes]:
        result = {key: base64.b64decode(value) for key, value in self.data.items()}
        result.update(
            {key: value.encode("utf-8") for key, value in self.string_data.items()}
        )
        return result


class SecretResponse(BaseModel):
    """Secret metadata. Values are never returned."""

    name: str
    namespace: str
    keys: List[str]


class APIServer:
    """
    HTTP API server.

    Routes are registered at construction so the app can be served by
    uvicorn or driven directly by a test client.
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        host: str = "0.0.0.0",
        port: int = 8000,
        log_level: str = "info",
        registry: Optional[ProviderRegistry] = None,
    ):
        self.host = host
        self.port = port
        self.log_level = log_level.lower()
        self.server: Optional[uvicorn.Server] = None
        self._db_manager = db_manager
        self._registry = registry

        self.app = FastAPI(
            title="DDNS Operator API",
            description="Declarative dynamic DNS hostname management",
            version="0.1.0",
        )
        self._setup_routes()

    def set_db_manager(self, db_manager: DatabaseManager) -> None:
        """Set the database manager instance."""
        self._db_manager = db_manager

    def _require_db(self) -> DatabaseManager:
        if not self._db_manager:
            raise HTTPException(status_code=503, detail="Database not available")
        return self._db_manager

    async def _get_hostname_or_404(self, hostname_id: int) -> Dict[str, Any]:
        hostname = await self._require_db().get_hostname(hostname_id)
        if not hostname:
            raise HTTPException(status_code=404, detail="Hostname not found")
        return hostname

    @staticmethod
    def _validate_spec(spec: Dict[str, Any]) -> None:
        is_valid, error = validate_hostname_spec(spec)
        if not is_valid:
            raise HTTPException(
                status_code=400, detail=f"Spec validation failed: {error}"
            )

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes for the REST API.

        - Health check: GET /
        - Hostnames CRUD: /api/v1/hostnames
        - Hostname by name: /api/v1/namespaces/{namespace}/hostnames/{name}
        - Reconciliation: POST /api/v1/hostnames/{id}/reconcile
        - History: GET /api/v1/hostnames/{id}/history
        - Secrets: /api/v1/secrets, /api/v1/namespaces/{namespace}/secrets/{name}
        - Provider discovery: GET /api/v1/providers
        """

        @self.app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "ddns-operator"}

        # ==================== Hostname Endpoints ====================

        @self.app.post(
            "/api/v1/hostnames", response_model=HostnameResponse, status_code=201
        )
        async def create_hostname(hostname: HostnameCreate):
            """Create a new hostname."""
            db = self._require_db()
            self._validate_spec(hostname.spec)

            try:
                hostname_id = await db.create_hostname(
                    name=hostname.name,
                    namespace=hostname.namespace,
                    spec=hostname.spec,
                )
                created = await db.get_hostname(hostname_id)
                return HostnameResponse(**created)
            except asyncpg.UniqueViolationError:
                raise HTTPException(
                    status_code=409,
                    detail=f"Hostname {hostname.namespace}/{hostname.name} "
                    "already exists",
                )
            except Exception as e:
                logger.error(f"Error creating hostname: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/api/v1/hostnames", response_model=List[HostnameResponse])
        async def list_hostnames(namespace: Optional[str] = None, limit: int = 100):
            """List hostnames."""
            db = self._require_db()
            try:
                hostnames = await db.list_hostnames(namespace=namespace, limit=limit)
                return [HostnameResponse(**h) for h in hostnames]
            except Exception as e:
                logger.error(f"Error listing hostnames: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get(
            "/api/v1/hostnames/{hostname_id}", response_model=HostnameResponse
        )
        async def get_hostname(hostname_id: int):
            """Get a hostname by ID."""
            try:
                return HostnameResponse(**await self._get_hostname_or_404(hostname_id))
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error getting hostname: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get(
            "/api/v1/namespaces/{namespace}/hostnames/{name}",
            response_model=HostnameResponse,
        )
        async def get_hostname_by_name(namespace: str, name: str):
            """Get a hostname by namespace and name."""
            db = self._require_db()
            try:
                hostname = await db.get_hostname_by_name(name, namespace)
                if not hostname:
                    raise HTTPException(status_code=404, detail="Hostname not found")
                return HostnameResponse(**hostname)
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error getting hostname: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.put(
            "/api/v1/hostnames/{hostname_id}", response_model=HostnameResponse
        )
        async def update_hostname(hostname_id: int, update: HostnameUpdate):
            """Replace a hostname's spec."""
            db = self._require_db()
            self._validate_spec(update.spec)

            try:
                await db.update_hostname(hostname_id, update.spec)
            except ValueError:
                raise HTTPException(status_code=404, detail="Hostname not found")
            except Exception as e:
                logger.error(f"Error updating hostname: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            return HostnameResponse(**await self._get_hostname_or_404(hostname_id))

        @self.app.delete("/api/v1/hostnames/{hostname_id}", status_code=204)
        async def delete_hostname(hostname_id: int):
            """Delete a hostname and its history."""
            db = self._require_db()
            try:
                deleted = await db.delete_hostname(hostname_id)
            except Exception as e:
                logger.error(f"Error deleting hostname: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            if not deleted:
                raise HTTPException(status_code=404, detail="Hostname not found")

        @self.app.post("/api/v1/hostnames/{hostname_id}/reconcile", status_code=202)
        async def trigger_reconciliation(hostname_id: int):
            """Make a hostname due for reconciliation now."""
            db = self._require_db()
            try:
                marked = await db.mark_hostname_for_reconciliation(hostname_id)
            except Exception as e:
                logger.error(f"Error triggering reconciliation: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            if not marked:
                raise HTTPException(status_code=404, detail="Hostname not found")
            return {"message": "Reconciliation triggered", "hostname_id": hostname_id}

        @self.app.get(
            "/api/v1/hostnames/{hostname_id}/history",
            response_model=List[ReconciliationHistoryResponse],
        )
        async def get_reconciliation_history(hostname_id: int, limit: int = 10):
            """Get reconciliation history for a hostname."""
            await self._get_hostname_or_404(hostname_id)
            try:
                history = await self._db_manager.get_reconciliation_history(
                    hostname_id, limit=limit
                )
                return [ReconciliationHistoryResponse(**h) for h in history]
            except Exception as e:
                logger.error(f"Error getting history: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        # ==================== Secret Endpoints ====================

        @self.app.post(
            "/api/v1/secrets", response_model=SecretResponse, status_code=201
        )
        async def put_secret(secret: SecretCreate):
            """Create or replace a secret."""
            db = self._require_db()
            data = secret.to_bytes()
            try:
                await db.put_secret(secret.name, secret.namespace, data)
            except Exception as e:
                logger.error(f"Error storing secret: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            return SecretResponse(
                name=secret.name, namespace=secret.namespace, keys=sorted(data)
            )

        @self.app.get(
            "/api/v1/namespaces/{namespace}/secrets/{name}",
            response_model=SecretResponse,
        )
        async def get_secret(namespace: str, name: str):
            """Get a secret's keys."""
            db = self._require_db()
            try:
                keys = await db.list_secret_keys(name, namespace)
            except Exception as e:
                logger.error(f"Error reading secret: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            if keys is None:
                raise HTTPException(status_code=404, detail="Secret not found")
            return SecretResponse(name=name, namespace=namespace, keys=keys)

        @self.app.delete(
            "/api/v1/namespaces/{namespace}/secrets/{name}", status_code=204
        )
        async def delete_secret(namespace: str, name: str):
            """Delete a secret."""
            db = self._require_db()
            try:
                deleted = await db.delete_secret(name, namespace)
            except Exception as e:
                logger.error(f"Error deleting secret: {e}")
                raise HTTPException(status_code=500, detail=str(e))

            if not deleted:
                raise HTTPException(status_code=404, detail="Secret not found")

        # ==================== Provider Discovery ====================

        @self.app.get("/api/v1/providers")
        async def list_providers():
            """List provider identifiers accepted in ddnsService.endpoint."""
            registry = self._registry or get_registry()
            return {
                "providers": registry.list_providers(),
                "default": registry.default_kind.value,
            }

    async def start(self) -> None:
        """Start the HTTP server."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level,
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP API on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP API")
        if self.server:
            self.server.should_exit = True
