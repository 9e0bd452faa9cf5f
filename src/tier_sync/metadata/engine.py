"""
HTTP client for the GraphQL metadata engine.

Wraps the engine's metadata API (``/v1/metadata``), its GraphQL endpoint
(``/v1/graphql``) and health check (``/healthz``). Every call carries the
tier's admin secret and an httpx timeout; transport failures surface as
:class:`ConnectivityError`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from tier_sync.config import EngineConfig
from tier_sync.errors import ConnectivityError, EngineError
from tier_sync.models import CommandType, MetadataCommand, TrackedState

logger = logging.getLogger(__name__)

ADMIN_SECRET_HEADER = "X-Hasura-Admin-Secret"

METADATA_PATH = "/v1/metadata"
GRAPHQL_PATH = "/v1/graphql"
HEALTH_PATH = "/healthz"

# GraphQL names are interpolated into documents; values always go through variables.
_IDENTIFIER = re.compile(r"^[_A-Za-z][_0-9A-Za-z]*$")

ALREADY_APPLIED_PHRASES = ("already exists", "already tracked", "already untracked", "already defined")
NOT_EXISTS_PHRASES = ("does not exist", "not tracked", "not found", "not exist")

SCHEMA_SUMMARY_QUERY = """
query SchemaSummary {
  __schema {
    queryType { fields { name } }
    mutationType { fields { name } }
    types { name kind }
  }
}
"""


@dataclass
class CommandResponse:
    """Outcome of one metadata command as reported by the engine."""
    ok: bool
    status_code: int
    body: Any = None
    error: Optional[str] = None
    code: Optional[str] = None

    @property
    def reason(self) -> str:
        if self.ok:
            return "success"
        parts = [p for p in (self.code, self.error) if p]
        return ": ".join(parts) if parts else f"HTTP {self.status_code}"

    @property
    def already_applied(self) -> bool:
        """Engine reports the change is already in place."""
        if self.code and self.code.startswith("already-"):
            return True
        text = (self.error or "").lower()
        return any(phrase in text for phrase in ALREADY_APPLIED_PHRASES)

    @property
    def not_exists(self) -> bool:
        """Engine reports the object to remove is already gone."""
        if self.code == "not-exists":
            return True
        text = (self.error or "").lower()
        return any(phrase in text for phrase in NOT_EXISTS_PHRASES)

    @property
    def inconsistent(self) -> bool:
        text = f"{self.code or ''} {self.error or ''}".lower()
        return "inconsistent" in text


@dataclass
class SchemaSummary:
    """Names exposed by the engine's GraphQL schema."""
    types: List[str] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    mutations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "types": len(self.types),
            "queries": len(self.queries),
            "mutations": len(self.mutations),
        }


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is a safe GraphQL identifier, else raise."""
    if not _IDENTIFIER.match(name or ""):
        raise EngineError(f"Invalid GraphQL identifier: {name!r}")
    return name


class MetadataEngineClient:
    """
    Client for one tier's metadata engine.

    Can be used as a context manager; the underlying ``httpx.Client`` is
    closed on exit.
    """

    def __init__(
        self,
        config: EngineConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize client.

        Args:
            config: Engine endpoint, admin secret and timeout
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        headers = {"Content-Type": "application/json"}
        if config.admin_secret:
            headers[ADMIN_SECRET_HEADER] = config.admin_secret

        self._client = httpx.Client(
            base_url=config.endpoint.rstrip("/"),
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def source(self) -> str:
        return self.config.source_name

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectivityError(
                f"Timed out calling {self.config.endpoint}{path}", target="engine"
            ) from e
        except httpx.TransportError as e:
            raise ConnectivityError(
                f"Cannot reach {self.config.endpoint}{path}: {e}", target="engine"
            ) from e

    # ------------------------------------------------------------------
    # Metadata API
    # ------------------------------------------------------------------

    def execute(self, command: MetadataCommand) -> CommandResponse:
        """
        Submit one metadata command.

        Non-success responses are returned, not raised; only transport
        failures raise (:class:`ConnectivityError`).
        """
        response = self._request("POST", METADATA_PATH, json=command.to_payload())

        try:
            body = response.json()
        except ValueError:
            body = {"error": response.text}

        ok = response.status_code == 200
        error = None
        code = None
        if not ok and isinstance(body, dict):
            error = body.get("error") or body.get("message")
            code = body.get("code")

        result = CommandResponse(
            ok=ok,
            status_code=response.status_code,
            body=body,
            error=error,
            code=code,
        )
        logger.debug(f"{command.type.value} -> {response.status_code} {result.reason}")
        return result

    def _execute_or_raise(self, command: MetadataCommand) -> CommandResponse:
        response = self.execute(command)
        if not response.ok:
            raise EngineError(f"{command.type.value} failed: {response.reason}", code=response.code)
        return response

    def export_metadata(self) -> TrackedState:
        """Fetch the engine's current tracked tables and relationships."""
        response = self._execute_or_raise(MetadataCommand(CommandType.EXPORT_METADATA, {}))
        body = response.body if isinstance(response.body, dict) else {}
        state = TrackedState.from_export(body, source=self.source)
        logger.debug(
            f"Exported metadata: {len(state.tables)} tables, "
            f"{len(state.relationships)} relationships"
        )
        return state

    def reload_metadata(self) -> Dict[str, Any]:
        """Reload remote schemas and sources; returns the engine response body."""
        response = self._execute_or_raise(MetadataCommand(
            CommandType.RELOAD_METADATA,
            {"reload_remote_schemas": True, "reload_sources": True},
        ))
        body = response.body if isinstance(response.body, dict) else {}
        if body.get("is_consistent") is False:
            logger.warning("Metadata reloaded but reported inconsistent")
        return body

    def clear_metadata(self) -> None:
        self._execute_or_raise(MetadataCommand(CommandType.CLEAR_METADATA, {}))
        logger.info(f"Cleared metadata on {self.config.endpoint}")

    def add_source(self) -> None:
        """Re-establish the database source after a clear."""
        command = MetadataCommand(CommandType.ADD_SOURCE, {
            "name": self.source,
            "configuration": {
                "connection_info": {
                    "database_url": {"from_env": self.config.database_url_env},
                    "pool_settings": {
                        "connection_lifetime": 600,
                        "idle_timeout": 180,
                        "max_connections": 50,
                    },
                },
            },
        })
        response = self.execute(command)
        if response.ok or response.already_applied:
            logger.info(f"Database source '{self.source}' configured")
            return
        raise EngineError(f"pg_add_source failed: {response.reason}", code=response.code)

    def health(self) -> bool:
        """True when the engine answers its health check."""
        try:
            response = self._request("GET", HEALTH_PATH)
        except ConnectivityError:
            return False
        return response.status_code == 200

    # ------------------------------------------------------------------
    # GraphQL API
    # ------------------------------------------------------------------

    def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a GraphQL document and return its ``data``."""
        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        response = self._request("POST", GRAPHQL_PATH, json=payload)
        try:
            body = response.json()
        except ValueError as e:
            raise EngineError(f"Non-JSON GraphQL response (HTTP {response.status_code})") from e

        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            first = errors[0] if isinstance(errors[0], dict) else {"message": str(errors[0])}
            code = (first.get("extensions") or {}).get("code")
            raise EngineError(first.get("message", "GraphQL error"), code=code)
        if response.status_code != 200:
            raise EngineError(f"GraphQL request failed with HTTP {response.status_code}")

        return body.get("data") or {}

    def schema_summary(self) -> SchemaSummary:
        """Object type names (excluding ``__*``) and root query/mutation fields."""
        data = self.graphql(SCHEMA_SUMMARY_QUERY)
        schema = data.get("__schema") or {}

        types = sorted(
            t["name"] for t in schema.get("types") or []
            if t.get("kind") == "OBJECT" and not t["name"].startswith("__")
        )
        queries = sorted(f["name"] for f in (schema.get("queryType") or {}).get("fields") or [])
        mutations = sorted(f["name"] for f in (schema.get("mutationType") or {}).get("fields") or [])

        return SchemaSummary(types=types, queries=queries, mutations=mutations)

    def sample_query(self, root_field: str) -> None:
        """Execute ``<root>(limit: 1)``; raises EngineError when the field is unusable."""
        root = validate_identifier(root_field)
        self.graphql(f"query Sample {{ {root}(limit: 1) {{ __typename }} }}")

    def insert_rows(self, root_field: str, rows: List[Dict[str, Any]]) -> int:
        """Insert ``rows`` through ``insert_<root>``; returns affected rows."""
        root = validate_identifier(root_field)
        query = (
            f"mutation Load($objects: [{root}_insert_input!]!) "
            f"{{ insert_{root}(objects: $objects) {{ affected_rows }} }}"
        )
        data = self.graphql(query, {"objects": rows})
        return int((data.get(f"insert_{root}") or {}).get("affected_rows", 0))

    def delete_all(self, root_field: str) -> int:
        """Delete every row through ``delete_<root>``; returns affected rows."""
        root = validate_identifier(root_field)
        data = self.graphql(f"mutation Purge {{ delete_{root}(where: {{}}) {{ affected_rows }} }}")
        return int((data.get(f"delete_{root}") or {}).get("affected_rows", 0))

    def count_rows(self, root_field: str) -> int:
        root = validate_identifier(root_field)
        data = self.graphql(f"query Count {{ {root}_aggregate {{ aggregate {{ count }} }} }}")
        aggregate = (data.get(f"{root}_aggregate") or {}).get("aggregate") or {}
        return int(aggregate.get("count", 0))
