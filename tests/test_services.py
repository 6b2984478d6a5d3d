import asyncio
from unittest.mock import MagicMock

import pytest
from mwclient.errors import MwClientError
from pydantic import ValidationError

from scriptmanager.exceptions import TransportFailure
from scriptmanager.services import DryRunEditService, EditRequest, InMemoryEditService, ServiceRegistry
from scriptmanager.services import mwclient_service
from scriptmanager.services.mwclient_service import MWClientEditService


def test_edit_request_needs_exactly_one_payload():
    EditRequest(title="T", summary="s", text="")
    EditRequest(title="T", summary="s", appendtext="x")
    with pytest.raises(ValidationError):
        EditRequest(title="T", summary="s")
    with pytest.raises(ValidationError):
        EditRequest(title="T", summary="s", text="a", appendtext="b")


def test_registry_routes_global_target(config):
    primary, cross_site = InMemoryEditService(), InMemoryEditService()
    registry = ServiceRegistry(primary, cross_site)
    assert registry.for_target("global", config) is cross_site
    assert registry.for_target("vector", config) is primary
    assert ServiceRegistry(primary).for_target("global", config) is primary


def test_in_memory_service():
    service = InMemoryEditService({"A": "x\n"})
    asyncio.run(service.post_edit(EditRequest(title="A", summary="s", appendtext="y\n")))
    asyncio.run(service.post_edit(EditRequest(title="B", summary="s", text="z")))
    assert service.pages == {"A": "x\ny\n", "B": "z"}
    assert asyncio.run(service.get_text("missing")) == ""
    assert len(service.requests) == 2


def test_dry_run_service_reads_through_and_keeps_edits_local():
    source = InMemoryEditService({"A": "x\n"})
    dry_run = DryRunEditService(source)
    assert asyncio.run(dry_run.get_text("A")) == "x\n"
    asyncio.run(dry_run.post_edit(EditRequest(title="A", summary="s", appendtext="y\n")))
    assert asyncio.run(dry_run.get_text("A")) == "x\ny\n"
    assert source.pages == {"A": "x\n"}
    assert source.requests == []


@pytest.fixture
def site(monkeypatch):
    site = MagicMock()
    site_class = MagicMock(return_value=site)
    monkeypatch.setattr(mwclient_service.mwclient, "Site", site_class)
    site.site_class = site_class
    return site


def test_mwclient_service_connects_once_and_logs_in(site):
    page = MagicMock(exists=True)
    page.text.return_value = "importScript('x');"
    site.pages.__getitem__.return_value = page
    service = MWClientEditService("https://en.wikipedia.org/", "Alice", "secret")
    assert asyncio.run(service.get_text("User:Alice/common.js")) == "importScript('x');"
    asyncio.run(service.get_text("User:Alice/common.js"))
    site.site_class.assert_called_once_with("en.wikipedia.org", scheme="https", path="/w/")
    site.login.assert_called_once_with("Alice", "secret")


def test_mwclient_service_missing_page(site):
    site.pages.__getitem__.return_value = MagicMock(exists=False)
    assert asyncio.run(MWClientEditService("en.wikipedia.org").get_text("Nope")) == ""
    site.login.assert_not_called()


def test_mwclient_service_edits(site):
    page = MagicMock()
    site.pages.__getitem__.return_value = page
    service = MWClientEditService("en.wikipedia.org", "Alice", "secret")
    asyncio.run(service.post_edit(EditRequest(title="T", summary="s", appendtext="x\n")))
    page.append.assert_called_once_with("x\n", summary="s")
    asyncio.run(service.post_edit(EditRequest(title="T", summary="s", text="y")))
    page.edit.assert_called_once_with("y", summary="s")


@pytest.mark.parametrize("error", [MwClientError("protected"), ConnectionError("reset")])
def test_mwclient_service_maps_errors(site, error):
    page = MagicMock()
    page.edit.side_effect = error
    site.pages.__getitem__.return_value = page
    with pytest.raises(TransportFailure) as excinfo:
        asyncio.run(MWClientEditService("en.wikipedia.org").post_edit(EditRequest(title="T", summary="s", text="y")))
    assert excinfo.value.__cause__ is error
