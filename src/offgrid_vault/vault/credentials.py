# Vault - Credential Kinds
#
# Credentials live inside their server's encrypted payload; they have no
# identity outside it. Each kind is a closed enum member carrying its own
# field schema and, where one exists, a pure connection-string formatter.

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import quote

from .errors import CorruptData


@dataclass(frozen=True)
class FieldSpec:
    """One input of a credential form."""

    key: str
    label: str
    input: str = "text"         # text / number / password / select / textarea
    default: Any = None
    options: Tuple[str, ...] = ()

    @property
    def secret(self) -> bool:
        return self.input == "password"


Formatter = Callable[[Dict[str, Any]], Dict[str, str]]


@dataclass(frozen=True)
class CredentialSchema:
    name: str
    category: str
    fields: Tuple[FieldSpec, ...]
    formatter: Optional[Formatter] = None


# ── Connection string formatters ─────────────────────────────────────


def _userinfo(data: Dict[str, Any]) -> str:
    return f"{quote(str(data.get('username', '')), safe='')}:{quote(str(data.get('password', '')), safe='')}"


def _postgresql(d: Dict[str, Any]) -> Dict[str, str]:
    ssl = f"?sslmode={d['sslMode']}" if d.get("sslMode", "disable") != "disable" else ""
    return {
        "URI": f"postgresql://{_userinfo(d)}@{d['host']}:{d['port']}/{d['database']}{ssl}",
        "JDBC": f"jdbc:postgresql://{d['host']}:{d['port']}/{d['database']}?user={d['username']}&password={d['password']}",
        "psql": f"PGPASSWORD='{d['password']}' psql -h {d['host']} -p {d['port']} -U {d['username']} -d {d['database']}",
    }


def _mysql(d: Dict[str, Any]) -> Dict[str, str]:
    return {
        "URI": f"mysql://{_userinfo(d)}@{d['host']}:{d['port']}/{d['database']}",
        "JDBC": f"jdbc:mysql://{d['host']}:{d['port']}/{d['database']}?user={d['username']}&password={d['password']}",
        "mysql": f"mysql -h {d['host']} -P {d['port']} -u {d['username']} -p'{d['password']}' {d['database']}",
    }


def _mongodb(d: Dict[str, Any]) -> Dict[str, str]:
    return {
        "URI": f"mongodb://{_userinfo(d)}@{d['host']}:{d['port']}/{d['database']}?authSource={d['authSource']}",
    }


def _redis(d: Dict[str, Any]) -> Dict[str, str]:
    return {
        "URI": f"redis://:{quote(str(d['password']), safe='')}@{d['host']}:{d['port']}/{d['database']}",
        "redis-cli": f"redis-cli -h {d['host']} -p {d['port']} -a '{d['password']}' -n {d['database']}",
    }


# ── Kinds ────────────────────────────────────────────────────────────


class CredentialKind(str, Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MONGODB = "mongodb"
    REDIS = "redis"
    AWS = "aws"
    AZURE = "azure"
    GRAFANA = "grafana"
    VAULT = "vault"
    JENKINS = "jenkins"
    GITLAB = "gitlab"
    KUBERNETES = "kubernetes"
    API = "api"
    OAUTH = "oauth"
    GENERIC = "generic"

    @property
    def schema(self) -> CredentialSchema:
        return _SCHEMAS[self]


_HOST = FieldSpec("host", "Host", default="localhost")
_USERNAME = FieldSpec("username", "Username")
_PASSWORD = FieldSpec("password", "Password", "password")
_URL = FieldSpec("url", "URL")

_SCHEMAS: Dict[CredentialKind, CredentialSchema] = {
    CredentialKind.POSTGRESQL: CredentialSchema("PostgreSQL", "database", (
        _HOST,
        FieldSpec("port", "Port", "number", 5432),
        FieldSpec("database", "Database"),
        _USERNAME,
        _PASSWORD,
        FieldSpec("sslMode", "SSL Mode", "select", "disable",
                  ("disable", "require", "verify-ca", "verify-full")),
    ), _postgresql),
    CredentialKind.MYSQL: CredentialSchema("MySQL", "database", (
        _HOST,
        FieldSpec("port", "Port", "number", 3306),
        FieldSpec("database", "Database"),
        _USERNAME,
        _PASSWORD,
    ), _mysql),
    CredentialKind.MONGODB: CredentialSchema("MongoDB", "database", (
        _HOST,
        FieldSpec("port", "Port", "number", 27017),
        FieldSpec("database", "Database"),
        _USERNAME,
        _PASSWORD,
        FieldSpec("authSource", "Auth Source", default="admin"),
    ), _mongodb),
    CredentialKind.REDIS: CredentialSchema("Redis", "database", (
        _HOST,
        FieldSpec("port", "Port", "number", 6379),
        _PASSWORD,
        FieldSpec("database", "Database Index", "number", 0),
    ), _redis),
    CredentialKind.AWS: CredentialSchema("AWS", "cloud", (
        FieldSpec("accessKeyId", "Access Key ID"),
        FieldSpec("secretAccessKey", "Secret Access Key", "password"),
        FieldSpec("region", "Region", default="us-east-1"),
        FieldSpec("accountId", "Account ID"),
    )),
    CredentialKind.AZURE: CredentialSchema("Azure", "cloud", (
        FieldSpec("tenantId", "Tenant ID"),
        FieldSpec("clientId", "Client ID"),
        FieldSpec("clientSecret", "Client Secret", "password"),
        FieldSpec("subscriptionId", "Subscription ID"),
    )),
    CredentialKind.GRAFANA: CredentialSchema("Grafana", "monitoring", (
        _URL,
        _USERNAME,
        _PASSWORD,
        FieldSpec("apiKey", "API Key", "password"),
    )),
    CredentialKind.VAULT: CredentialSchema("HashiCorp Vault", "security", (
        _URL,
        FieldSpec("token", "Token", "password"),
        FieldSpec("namespace", "Namespace"),
        FieldSpec("secretPath", "Secret Path"),
    )),
    CredentialKind.JENKINS: CredentialSchema("Jenkins", "cicd", (
        _URL,
        _USERNAME,
        FieldSpec("apiToken", "API Token", "password"),
    )),
    CredentialKind.GITLAB: CredentialSchema("GitLab", "cicd", (
        _URL,
        _USERNAME,
        FieldSpec("accessToken", "Access Token", "password"),
    )),
    CredentialKind.KUBERNETES: CredentialSchema("Kubernetes", "cicd", (
        FieldSpec("clusterUrl", "Cluster URL"),
        FieldSpec("namespace", "Namespace", default="default"),
        FieldSpec("token", "Service Account Token", "password"),
        FieldSpec("kubeconfig", "Kubeconfig", "textarea"),
    )),
    CredentialKind.API: CredentialSchema("API", "web", (
        FieldSpec("url", "Base URL"),
        FieldSpec("authType", "Auth Type", "select", "API Key",
                  ("None", "API Key", "Bearer Token", "Basic Auth", "OAuth2")),
        FieldSpec("apiKey", "API Key / Token", "password"),
        _USERNAME,
        _PASSWORD,
    )),
    CredentialKind.OAUTH: CredentialSchema("OAuth / OIDC", "web", (
        FieldSpec("issuer", "Issuer URL"),
        FieldSpec("clientId", "Client ID"),
        FieldSpec("clientSecret", "Client Secret", "password"),
        FieldSpec("scopes", "Scopes"),
        FieldSpec("redirectUri", "Redirect URI"),
    )),
    CredentialKind.GENERIC: CredentialSchema("Generic Credential", "generic", (
        _USERNAME,
        _PASSWORD,
        FieldSpec("notes", "Notes", "textarea"),
    )),
}


def default_fields(kind: CredentialKind) -> Dict[str, Any]:
    """Field values a new credential of this kind starts with."""
    return {f.key: f.default for f in kind.schema.fields if f.default is not None}


# ── Credential ───────────────────────────────────────────────────────


@dataclass
class Credential:
    """A credential owned by a server. Serialized inside the server blob."""

    kind: CredentialKind
    name: str = ""
    data: Dict[str, Any] = field(default_factory=dict)
    notes: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "name": self.name,
            "data": dict(self.data),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Credential":
        if not isinstance(data, dict):
            raise CorruptData("Credential must be an object")
        try:
            kind = CredentialKind(data["type"])
        except (KeyError, ValueError) as exc:
            raise CorruptData(f"Unknown credential type: {data.get('type')!r}") from exc
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            kind=kind,
            name=data.get("name", ""),
            data=dict(data.get("data") or {}),
            notes=data.get("notes") or "",
        )

    def get(self, key: str) -> Any:
        return self.data.get(key)

    def connection_strings(self) -> Dict[str, str]:
        """Ready-to-paste connection strings; empty for kinds without a formatter."""
        formatter = self.kind.schema.formatter
        if formatter is None:
            return {}
        values = {f.key: "" for f in self.kind.schema.fields}
        values.update(default_fields(self.kind))
        values.update({k: v for k, v in self.data.items() if v is not None})
        return formatter(values)
