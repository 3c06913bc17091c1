"""
Encodes and decodes the Traefik routing labels of a docker-compose service.

A service's routing (hostnames, path prefixes, URL redirects and its display
order) lives in the deployment file as a flat list of ``key=value`` labels
that Traefik reads. This module turns a `ServiceRouting` into that list and
recovers a `ServiceRouting` from any existing list, including hand-edited
ones. It performs no I/O.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .models import UNSET_ORDER, HostRoute, ServiceRouting, UrlRedirect

Annotation = Tuple[str, str]

HOSTS_DELIMITER = " || "
PATH_PREFIX_DELIMITER = " && "
MIDDLEWARE_DELIMITER = ","

DEFAULT_CERT_RESOLVER = "lets-encrypt"


class LabelError(Exception):
    """Base exception for label codec errors."""

    pass


class MalformedHostRuleError(LabelError):
    """Raised when a router rule clause is not a ``Host(`...`)`` expression."""

    def __init__(self, name: str, clause: str, value: str):
        self.name = name
        self.clause = clause
        self.value = value
        super().__init__(
            f"Invalid host rule for service '{name}': clause '{clause}' in '{value}'"
        )


class LabelTemplate:
    """
    A label key containing ``{field}`` placeholders.

    `key()` renders the template and `match()` recovers the placeholder
    values from a rendered key.
    """

    def __init__(self, template: str):
        self.template = template
        parts = re.split(r"\{(\w+)\}", template)
        pattern = "".join(
            f"(?P<{part}>.+)" if index % 2 else re.escape(part)
            for index, part in enumerate(parts)
        )
        self._regex = re.compile(f"^{pattern}$")

    def key(self, **fields: Any) -> str:
        return self.template.format(**fields)

    def match(self, key: str) -> Optional[Dict[str, str]]:
        match = self._regex.match(key)
        return match.groupdict() if match else None

    def __repr__(self) -> str:
        return f"LabelTemplate({self.template!r})"


# --- Label Keys ---

TLS = LabelTemplate("traefik.http.routers.{name}.tls")
TLS_RESOLVER = LabelTemplate("traefik.http.routers.{name}.tls.certresolver")
ORDER = LabelTemplate("traefiker.{name}.order")
HOST_RULE = LabelTemplate("traefik.http.routers.{name}.rule")
PATH_STRIP = LabelTemplate("traefik.http.middlewares.{path}-prefix.stripprefix.prefixes")
REDIRECT_REGEX = LabelTemplate(
    "traefik.http.middlewares.{id}-redirect-{name}.redirectregex.regex"
)
REDIRECT_REPLACEMENT = LabelTemplate(
    "traefik.http.middlewares.{id}-redirect-{name}.redirectregex.replacement"
)
ROUTER_MIDDLEWARES = LabelTemplate("traefik.http.routers.{name}.middlewares")

# Names under which the router references its middlewares
PATH_MIDDLEWARE_NAME = "{path}-prefix"
REDIRECT_MIDDLEWARE_NAME = "{id}-redirect-{name}"

HOST_PATTERN = re.compile(r"Host\(`([^`]+)`\)")
PATH_PREFIX_PATTERN = re.compile(r"PathPrefix\(`([^`]+)`\)")
REDIRECT_ID_PATTERN = re.compile(r"^(\d+)-", re.ASCII)


# --- Router Rule Grammar ---

def format_host_clause(route: HostRoute) -> str:
    clause = f"Host(`{route.hostname}`)"
    if route.path:
        clause += f"{PATH_PREFIX_DELIMITER}PathPrefix(`/{route.path}`)"
    return clause


def parse_host_clause(clause: str) -> HostRoute:
    """
    Parses one ``Host(`h`) [&& PathPrefix(`/p`)]`` clause.

    Raises:
        ValueError: If the clause has no ``Host(`...`)`` expression or the
            hostname it names is not valid.
    """
    host_match = HOST_PATTERN.search(clause)
    if not host_match:
        raise ValueError(f"No Host(`...`) expression in '{clause}'")
    path_match = PATH_PREFIX_PATTERN.search(clause)
    return HostRoute(
        hostname=host_match.group(1),
        path=path_match.group(1) if path_match else "",
    )


def format_host_rule(hosts: Sequence[HostRoute]) -> str:
    return HOSTS_DELIMITER.join(format_host_clause(host) for host in hosts)


def parse_host_rule(name: str, value: str) -> List[HostRoute]:
    """
    Splits a router rule into its host clauses.

    Raises:
        MalformedHostRuleError: If any clause cannot be parsed.
    """
    hosts = []
    for clause in value.split(HOSTS_DELIMITER):
        clause = clause.strip()
        try:
            hosts.append(parse_host_clause(clause))
        except ValueError as e:
            raise MalformedHostRuleError(name, clause, value) from e
    return hosts


def path_middleware_name(path: str) -> str:
    return PATH_MIDDLEWARE_NAME.format(path=path)


def redirect_middleware_name(redirect_id: int, name: str) -> str:
    return REDIRECT_MIDDLEWARE_NAME.format(id=redirect_id, name=name)


def split_middlewares(value: str) -> List[str]:
    return [ref.strip() for ref in value.split(MIDDLEWARE_DELIMITER) if ref.strip()]


# --- Compose Label Conversion ---

def _label_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def parse_labels(labels: Any) -> List[Annotation]:
    """
    Converts compose ``labels`` (a list of ``key=value`` strings or a mapping)
    into annotation pairs. List entries are split on their first ``=``.
    """
    if not labels:
        return []
    if isinstance(labels, Mapping):
        return [(str(key), _label_value(value)) for key, value in labels.items()]
    annotations = []
    for label in labels:
        key, _, value = str(label).partition("=")
        annotations.append((key.strip(), value))
    return annotations


def format_labels(annotations: Iterable[Annotation]) -> List[str]:
    return [f"{key}={value}" for key, value in annotations]


# --- Encode ---

def _distinct_paths(hosts: Sequence[HostRoute]) -> List[str]:
    paths: List[str] = []
    for host in hosts:
        if host.path and host.path not in paths:
            paths.append(host.path)
    return paths


def encode(
    routing: ServiceRouting, cert_resolver: str = DEFAULT_CERT_RESOLVER
) -> List[Annotation]:
    """
    Builds the complete routing label set for a service.

    The output depends only on the arguments, so encoding the same routing
    twice yields identical lists. A routing without hosts gets no router
    rule label.
    """
    name = routing.name
    annotations: List[Annotation] = [
        (TLS.key(name=name), "true"),
        (TLS_RESOLVER.key(name=name), cert_resolver),
        (ORDER.key(name=name), str(routing.order)),
    ]
    if routing.hosts:
        annotations.append((HOST_RULE.key(name=name), format_host_rule(routing.hosts)))

    middlewares: List[str] = []
    for path in _distinct_paths(routing.hosts):
        annotations.append((PATH_STRIP.key(path=path), f"/{path}"))
        middlewares.append(path_middleware_name(path))

    for redirect in routing.redirects:
        annotations.append(
            (REDIRECT_REGEX.key(id=redirect.id, name=name), redirect.from_)
        )
        annotations.append(
            (REDIRECT_REPLACEMENT.key(id=redirect.id, name=name), redirect.to)
        )
        middlewares.append(redirect_middleware_name(redirect.id, name))

    if middlewares:
        annotations.append(
            (ROUTER_MIDDLEWARES.key(name=name), MIDDLEWARE_DELIMITER.join(middlewares))
        )
    return annotations


# --- Decode ---

def _first_values(annotations: Iterable[Annotation]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for key, value in annotations:
        values.setdefault(key, value)
    return values


def _decode_hosts(name: str, values: Dict[str, str]) -> List[HostRoute]:
    rule = values.get(HOST_RULE.key(name=name))
    if rule is None:
        return []
    return parse_host_rule(name, rule)


def _decode_order(name: str, values: Dict[str, str]) -> int:
    value = values.get(ORDER.key(name=name))
    if value is None:
        return UNSET_ORDER
    try:
        return int(value.strip())
    except ValueError:
        logging.warning(f"Ignoring non-integer order '{value}' of service '{name}'.")
        return UNSET_ORDER


def _decode_redirects(
    name: str, values: Dict[str, str], path_references: Set[str]
) -> List[UrlRedirect]:
    value = values.get(ROUTER_MIDDLEWARES.key(name=name))
    if value is None:
        return []

    redirects: List[UrlRedirect] = []
    seen: Set[int] = set()
    for reference in split_middlewares(value):
        if "redirect" not in reference or reference in path_references:
            continue
        id_match = REDIRECT_ID_PATTERN.match(reference)
        if not id_match:
            logging.warning(
                f"Skipping middleware '{reference}' of service '{name}': no redirect id."
            )
            continue
        redirect_id = int(id_match.group(1))
        if redirect_id in seen:
            continue
        seen.add(redirect_id)

        regex = values.get(REDIRECT_REGEX.key(id=redirect_id, name=name))
        replacement = values.get(REDIRECT_REPLACEMENT.key(id=redirect_id, name=name))
        if regex is None or replacement is None:
            # Dangling reference: the redirect is left out rather than half-built
            logging.warning(
                f"Service '{name}' references redirect {redirect_id} without "
                "regex/replacement labels; skipping it."
            )
            continue
        redirects.append(UrlRedirect(id=redirect_id, from_=regex, to=replacement))
    return redirects


def decode(name: str, annotations: Iterable[Annotation]) -> ServiceRouting:
    """
    Recovers a service's routing from its labels.

    Missing labels decode to defaults: no hosts, an unset order (-1) and no
    redirects. When several labels share a key, the first one wins.

    Raises:
        MalformedHostRuleError: If the router rule label is present but
            one of its clauses is not a host expression.
    """
    values = _first_values(annotations)
    hosts = _decode_hosts(name, values)
    path_references = {path_middleware_name(path) for path in _distinct_paths(hosts)}
    return ServiceRouting(
        name=name,
        hosts=hosts,
        order=_decode_order(name, values),
        redirects=_decode_redirects(name, values, path_references),
    )


def decode_order(name: str, annotations: Iterable[Annotation]) -> int:
    """Reads only the order label, leaving the router rule unparsed."""
    return _decode_order(name, _first_values(annotations))


def routing_keys(name: str, annotations: Sequence[Annotation]) -> Set[str]:
    """
    Returns the keys in `annotations` that `encode` owns for service `name`.

    Path-strip middlewares are not keyed by service name, so they are only
    claimed when the service's middleware list references them.
    """
    owned = {
        TLS.key(name=name),
        TLS_RESOLVER.key(name=name),
        ORDER.key(name=name),
        HOST_RULE.key(name=name),
        ROUTER_MIDDLEWARES.key(name=name),
    }
    middlewares = _first_values(annotations).get(ROUTER_MIDDLEWARES.key(name=name), "")
    references = set(split_middlewares(middlewares))

    keys: Set[str] = set()
    for key, _ in annotations:
        if key in owned:
            keys.add(key)
            continue
        fields = REDIRECT_REGEX.match(key) or REDIRECT_REPLACEMENT.match(key)
        if fields and fields["name"] == name:
            keys.add(key)
            continue
        fields = PATH_STRIP.match(key)
        if fields and path_middleware_name(fields["path"]) in references:
            keys.add(key)
    return keys
