"""Tests for the routing and compose data models."""

import pytest
from pydantic import ValidationError

from traefiker.models import UNSET_ORDER, ComposeService, HostRoute, Service, ServiceRouting, UrlRedirect


class TestHostRoute:
    """Test HostRoute parsing and validation."""

    def test_parse_hostname_only(self):
        route = HostRoute.parse("example.com")

        assert route.hostname == "example.com"
        assert route.path == ""
        assert str(route) == "example.com"

    def test_parse_with_path(self):
        route = HostRoute.parse("example.com/api/v1")

        assert route.hostname == "example.com"
        assert route.path == "api/v1"
        assert str(route) == "example.com/api/v1"

    def test_leading_slash_is_stripped(self):
        assert HostRoute(hostname="a.com", path="/api").path == "api"

    @pytest.mark.parametrize("hostname", ["", "   ", "https://a.com", "a.com/x"])
    def test_invalid_hostnames_rejected(self, hostname):
        with pytest.raises(ValidationError):
            HostRoute(hostname=hostname)

    @pytest.mark.parametrize("hostname", ["a`b.com", "a b.com", "a.com || b.com", "a,b.com", "a.com\tb"])
    def test_rule_delimiters_in_hostname_rejected(self, hostname):
        with pytest.raises(ValidationError):
            HostRoute(hostname=hostname)

    @pytest.mark.parametrize("path", ["a`b", "x || y", "x && y", "a,b", "a b", "q=1"])
    def test_rule_delimiters_in_path_rejected(self, path):
        with pytest.raises(ValidationError):
            HostRoute(hostname="a.com", path=path)

    def test_operator_string_with_delimiter_rejected(self):
        with pytest.raises(ValidationError):
            HostRoute.parse("a.com/x || y")

    def test_surrounding_whitespace_is_stripped(self):
        route = HostRoute.parse("  a.com/api  ")

        assert (route.hostname, route.path) == ("a.com", "api")


class TestUrlRedirect:
    """Test UrlRedirect field aliases and validation."""

    def test_from_alias(self):
        redirect = UrlRedirect.model_validate({"id": 1, "from": "^/a", "to": "/b"})

        assert redirect.from_ == "^/a"
        assert redirect.model_dump(by_alias=True) == {"id": 1, "from": "^/a", "to": "/b"}

    def test_negative_id_rejected(self):
        with pytest.raises(ValidationError):
            UrlRedirect(id=-1, from_="^/a", to="/b")


class TestServiceRouting:
    """Test ServiceRouting defaults."""

    def test_defaults(self):
        routing = ServiceRouting(name="web")

        assert routing.hosts == []
        assert routing.order == UNSET_ORDER
        assert routing.redirects == []

    def test_service_routing_projection(self):
        service = Service(
            name="web",
            image="nginx",
            hosts=[HostRoute(hostname="a.com")],
            order=2,
            environment={"A": "1"},
        )

        routing = service.routing()

        assert type(routing) is ServiceRouting
        assert routing.hosts == service.hosts
        assert routing.order == 2


class TestComposeService:
    """Test ComposeService handling of compose entries."""

    def test_unknown_keys_are_preserved(self):
        entry = ComposeService.model_validate(
            {"image": "nginx", "restart": "always", "volumes": ["./data:/data"]}
        )

        document = entry.to_document()

        assert document["restart"] == "always"
        assert document["volumes"] == ["./data:/data"]
        assert "labels" not in document

    def test_to_document_keeps_key_order(self):
        entry = ComposeService.from_document(
            {"ports": ["8080:80"], "labels": ["a=b"], "image": "nginx", "restart": "always"}
        )
        entry.labels = ["c=d"]
        entry.environment = ["A=1"]

        document = entry.to_document()

        assert list(document) == ["ports", "labels", "image", "restart", "environment"]
        assert document["labels"] == ["c=d"]

    def test_key_order_survives_copy(self):
        entry = ComposeService.from_document({"restart": "always", "image": "nginx"})

        assert list(entry.model_copy().to_document()) == ["restart", "image"]

    def test_from_empty_document(self):
        assert ComposeService.from_document(None).to_document() == {}

    def test_environment_list_form(self):
        entry = ComposeService(environment=["A=1", "B=x=y", "EMPTY"])

        assert entry.environment_dict() == {"A": "1", "B": "x=y", "EMPTY": ""}

    def test_environment_mapping_form(self):
        entry = ComposeService(environment={"A": 1, "B": None})

        assert entry.environment_dict() == {"A": "1", "B": ""}

    def test_no_environment(self):
        assert ComposeService().environment_dict() == {}
