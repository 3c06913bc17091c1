from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

UNSET_ORDER = -1

# Characters that delimit the router rule, the middleware list or a key=value label
RULE_RESERVED = ("`", ",", "=")


def _check_rule_safe(field: str, value: str) -> str:
    if any(char.isspace() for char in value) or any(char in value for char in RULE_RESERVED):
        reserved = " ".join(RULE_RESERVED)
        raise ValueError(f"{field} '{value}' must not contain whitespace or any of: {reserved}")
    return value


# --- Routing Models ---

class HostRoute(BaseModel):
    hostname: str
    path: str = ""

    @field_validator("hostname")
    @classmethod
    def _check_hostname(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("hostname must not be empty")
        if "://" in value or "/" in value:
            raise ValueError(f"hostname '{value}' must not contain a scheme or a path")
        return _check_rule_safe("hostname", value)

    @field_validator("path")
    @classmethod
    def _strip_leading_slash(cls, value: str) -> str:
        return _check_rule_safe("path", value.strip().lstrip("/"))

    @classmethod
    def parse(cls, value: str) -> "HostRoute":
        """Build a route from an operator string such as ``example.com/api``."""
        hostname, _, path = value.strip().partition("/")
        return cls(hostname=hostname, path=path)

    def __str__(self) -> str:
        return f"{self.hostname}/{self.path}" if self.path else self.hostname


class UrlRedirect(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: int = Field(ge=0)
    from_: str = Field(alias="from")
    to: str


class ServiceRouting(BaseModel):
    name: str
    hosts: List[HostRoute] = Field(default_factory=list)
    order: int = UNSET_ORDER
    redirects: List[UrlRedirect] = Field(default_factory=list)


class Service(ServiceRouting):
    image: Optional[str] = None
    environment: Dict[str, str] = Field(default_factory=dict)

    def routing(self) -> ServiceRouting:
        return ServiceRouting(
            name=self.name,
            hosts=self.hosts,
            order=self.order,
            redirects=self.redirects,
        )


# --- Deployment Document ---

class ComposeService(BaseModel):
    """One entry under ``services:``; unknown compose keys are kept as-is."""

    model_config = ConfigDict(extra="allow")

    image: Optional[str] = None
    labels: Any = None
    networks: Any = None
    environment: Any = None

    _key_order: List[str] = PrivateAttr(default_factory=list)

    @classmethod
    def from_document(cls, data: Optional[Dict[str, Any]]) -> "ComposeService":
        """Validate a raw entry, remembering the order of its keys."""
        data = data or {}
        entry = cls.model_validate(data)
        entry._key_order = list(data)
        return entry

    def environment_dict(self) -> Dict[str, str]:
        env = self.environment
        if not env:
            return {}
        if isinstance(env, dict):
            return {str(k): "" if v is None else str(v) for k, v in env.items()}
        result: Dict[str, str] = {}
        for item in env:
            key, _, value = str(item).partition("=")
            result[key] = value
        return result

    def to_document(self) -> Dict[str, Any]:
        document = self.model_dump()
        # Unset known keys are left out; extra keys are written back untouched
        for field in type(self).model_fields:
            if document.get(field) is None:
                document.pop(field, None)
        # Keys keep their place in the entry; new keys go last
        ordered = {key: document.pop(key) for key in self._key_order if key in document}
        ordered.update(document)
        return ordered
