"""Service operations on the deployment file: create, update, reorder, start, stop."""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from . import labels
from .compose_runner import ComposeRunner, ServiceState
from .compose_store import ComposeStore
from .labels import Annotation, MalformedHostRuleError
from .models import UNSET_ORDER, ComposeService, HostRoute, Service, UrlRedirect
from .settings import Settings

SERVICE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")

HostInput = Union[HostRoute, str]


# --- Custom Exceptions ---

class ServiceManagerError(Exception):
    """Base exception for service manager errors."""
    pass


class ServiceNotFoundError(ServiceManagerError):
    """Raised when a service is not in the deployment file."""
    pass


class ServiceAlreadyExistsError(ServiceManagerError):
    """Raised when creating a service whose name is taken."""
    pass


class ServiceAlreadyRunningError(ServiceManagerError):
    """Raised when trying to start a running service."""
    pass


class ServiceNotRunningError(ServiceManagerError):
    """Raised when trying to stop a service that is not running."""
    pass


def _to_host_routes(hosts: Iterable[HostInput]) -> List[HostRoute]:
    return [host if isinstance(host, HostRoute) else HostRoute.parse(host) for host in hosts]


def _check_redirect_ids(redirects: Sequence[UrlRedirect]):
    ids = [redirect.id for redirect in redirects]
    if len(ids) != len(set(ids)):
        raise ValueError(f"Redirect ids must be unique within a service, got {ids}.")


def _format_environment(environment: Dict[str, str]) -> Optional[List[str]]:
    return [f"{key}={value}" for key, value in environment.items()] or None


def _display_order(order: int, position: int) -> int:
    # Entries without an order label keep their position in the file
    return order if order != UNSET_ORDER else position


class ServiceManager:
    def __init__(self, store: ComposeStore, runner: ComposeRunner, settings: Settings):
        self._store = store
        self._runner = runner
        self._settings = settings

    # --- Reading ---

    def _to_service(self, name: str, entry: ComposeService, position: int) -> Service:
        try:
            routing = labels.decode(name, labels.parse_labels(entry.labels))
        except MalformedHostRuleError as e:
            logging.error(f"Cannot decode routing of service '{name}': {e.value!r}")
            raise

        return Service(
            name=name,
            hosts=routing.hosts,
            order=_display_order(routing.order, position),
            redirects=routing.redirects,
            image=entry.image,
            environment=entry.environment_dict(),
        )

    def _services_in(self, document: Dict[str, Any]) -> List[Service]:
        entries = self._store.entries(document)
        return [
            self._to_service(name, entry, position)
            for position, (name, entry) in enumerate(entries.items())
        ]

    def _service_in(self, document: Dict[str, Any], name: str) -> Service:
        entries = self._store.entries(document)
        if name not in entries:
            raise ServiceNotFoundError(f"Service '{name}' not found.")
        return self._to_service(name, entries[name], list(entries).index(name))

    def list_services(self) -> List[Service]:
        """All services sorted by their display order."""
        return sorted(self._services_in(self._store.load()), key=lambda s: s.order)

    def get_service(self, name: str) -> Service:
        return self._service_in(self._store.load(), name)

    def service_labels(self, name: str) -> List[Annotation]:
        service = self.get_service(name)
        return labels.encode(service.routing(), cert_resolver=self._settings.cert_resolver)

    # --- Writing ---

    def _next_order(self, document: Dict[str, Any]) -> int:
        """Highest order in use plus one. Router rules are not parsed here."""
        orders = [
            _display_order(labels.decode_order(name, labels.parse_labels(entry.labels)), position)
            for position, (name, entry) in enumerate(self._store.entries(document).items())
        ]
        return max(orders) + 1 if orders else 0

    def _build_entry(
        self,
        service: Service,
        existing: Optional[ComposeService],
        environment: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Produce the compose entry for `service`. Labels of an existing entry
        that the codec does not own for this service are kept in front of the
        freshly encoded ones.
        """
        annotations = labels.encode(
            service.routing(), cert_resolver=self._settings.cert_resolver
        )
        if existing is None:
            entry = ComposeService(
                image=service.image,
                networks=list(self._settings.networks),
            )
            kept: List[Annotation] = []
        else:
            entry = existing.model_copy()
            previous = labels.parse_labels(existing.labels)
            owned = labels.routing_keys(service.name, previous)
            kept = [annotation for annotation in previous if annotation[0] not in owned]

        entry.labels = labels.format_labels(kept + annotations)
        if environment is not None:
            entry.environment = _format_environment(environment)
        return entry.to_document()

    def create_service(
        self,
        name: str,
        image: str,
        hosts: Iterable[HostInput],
        environment: Optional[Dict[str, str]] = None,
        redirects: Optional[Sequence[UrlRedirect]] = None,
    ) -> Service:
        """
        Add a service to the deployment file with the next free order.

        The order is computed and the entry written under one lock, so two
        concurrent creations never receive the same order.
        """
        if not SERVICE_NAME_PATTERN.match(name):
            raise ValueError(
                f"Invalid service name '{name}': use letters, digits, '-' and '_'."
            )
        host_routes = _to_host_routes(hosts)
        redirects = list(redirects or [])
        _check_redirect_ids(redirects)

        with self._store.transaction() as document:
            services = document["services"]
            if name in services:
                raise ServiceAlreadyExistsError(f"Service '{name}' already exists.")
            service = Service(
                name=name,
                image=image,
                hosts=host_routes,
                order=self._next_order(document),
                redirects=redirects,
                environment=environment or {},
            )
            services[name] = self._build_entry(service, None, environment or {})

        logging.info(f"Service '{name}' created with order {service.order}.")
        return service

    def update_service(
        self,
        name: str,
        hosts: Optional[Iterable[HostInput]] = None,
        environment: Optional[Dict[str, str]] = None,
        redirects: Optional[Sequence[UrlRedirect]] = None,
    ) -> Service:
        """Replace the hosts, environment and/or redirects of a service."""
        if hosts is None and environment is None and redirects is None:
            raise ValueError("Empty update request.")
        if redirects is not None:
            redirects = list(redirects)
            _check_redirect_ids(redirects)

        with self._store.transaction() as document:
            current = self._service_in(document, name)
            service = Service(
                name=name,
                image=current.image,
                hosts=_to_host_routes(hosts) if hosts is not None else current.hosts,
                order=current.order,
                redirects=redirects if redirects is not None else current.redirects,
                environment=environment if environment is not None else current.environment,
            )
            existing = ComposeService.from_document(document["services"][name])
            document["services"][name] = self._build_entry(service, existing, environment)

        logging.info(f"Service '{name}' updated.")
        return service

    def delete_service(self, name: str, remove_container: bool = False):
        with self._store.transaction() as document:
            if name not in document["services"]:
                raise ServiceNotFoundError(f"Service '{name}' not found.")
            if remove_container:
                # Compose can only remove containers of services still in the file
                self._runner.remove(name)
            del document["services"][name]
        logging.info(f"Service '{name}' deleted.")

    def reorder_service(self, name: str, order: int):
        """Rewrite only the order label of a service."""
        if order < 0:
            raise ValueError(f"Order must be non-negative, got {order}.")

        order_key = labels.ORDER.key(name=name)
        with self._store.transaction() as document:
            if name not in document["services"]:
                raise ServiceNotFoundError(f"Service '{name}' not found.")
            entry = ComposeService.from_document(document["services"][name])
            annotations = labels.parse_labels(entry.labels)
            if any(key == order_key for key, _ in annotations):
                annotations = [
                    (key, str(order) if key == order_key else value)
                    for key, value in annotations
                ]
            else:
                annotations.append((order_key, str(order)))
            entry.labels = labels.format_labels(annotations)
            document["services"][name] = entry.to_document()
        logging.info(f"Service '{name}' moved to order {order}.")

    def add_redirect(self, name: str, from_: str, to: str) -> UrlRedirect:
        """Append a redirect, allocating the next id within the service."""
        with self._store.transaction() as document:
            current = self._service_in(document, name)
            next_id = max((r.id for r in current.redirects), default=-1) + 1
            redirect = UrlRedirect(id=next_id, from_=from_, to=to)
            service = current.model_copy(update={"redirects": [*current.redirects, redirect]})
            existing = ComposeService.from_document(document["services"][name])
            document["services"][name] = self._build_entry(service, existing)
        logging.info(f"Redirect {redirect.id} added to service '{name}'.")
        return redirect

    def remove_redirect(self, name: str, redirect_id: int):
        with self._store.transaction() as document:
            current = self._service_in(document, name)
            remaining = [r for r in current.redirects if r.id != redirect_id]
            if len(remaining) == len(current.redirects):
                raise ValueError(f"Service '{name}' has no redirect {redirect_id}.")
            service = current.model_copy(update={"redirects": remaining})
            existing = ComposeService.from_document(document["services"][name])
            document["services"][name] = self._build_entry(service, existing)
        logging.info(f"Redirect {redirect_id} removed from service '{name}'.")

    # --- Containers ---

    def service_status(self, name: str) -> ServiceState:
        self.get_service(name)
        return self._runner.status().get(name, "stopped")

    def all_status(self) -> Dict[str, ServiceState]:
        states = self._runner.status()
        return {
            service.name: states.get(service.name, "stopped")
            for service in self.list_services()
        }

    def start_service(self, name: str):
        if self.service_status(name) == "running":
            raise ServiceAlreadyRunningError(f"Service '{name}' is already running.")
        self._runner.up(name)
        logging.info(f"Service '{name}' started.")

    def stop_service(self, name: str):
        if self.service_status(name) != "running":
            raise ServiceNotRunningError(f"Service '{name}' is not running.")
        self._runner.stop(name)
        logging.info(f"Service '{name}' stopped.")

    def deploy(self):
        self._runner.deploy()
