from __future__ import annotations

import re

import pytest

from conftest import FakeFormsService, NoIdFormsService, StubOAuth, make_credential
from formrelay.app import create_app
from formrelay.credentials import MemoryCredentialStore


def test_banner(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Running" in resp.get_data(as_text=True)


def test_favicon(client):
    assert client.get("/favicon.ico").status_code == 204


def test_auth_redirects_to_google(client):
    resp = client.get("/auth")
    assert resp.status_code == 302
    assert resp.headers["Location"].startswith("https://accounts.google.com/o/oauth2/auth")


def test_callback_stores_token(client, store):
    resp = client.get("/oauth2callback", query_string={"code": "good-code"})
    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "Authorization complete! You can now create forms."
    assert store.get().access_token == "exchanged"


@pytest.mark.parametrize("query", [{}, {"code": "bad"}, {"error": "access_denied"}])
def test_callback_failure(client, store, query):
    resp = client.get("/oauth2callback", query_string=query)
    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Authentication failed."
    assert store.get() is None


def test_export_requires_authorization(client, forms_service):
    resp = client.get("/export-form/abc")
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth")
    assert forms_service.calls == []


def test_import_requires_authorization(client, forms_service):
    resp = client.post("/import-form", json={"info": {}, "items": []})
    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth")
    assert forms_service.calls == []


def test_export_returns_form_json(client, authorized, forms_service):
    form = {"formId": "abc", "info": {"title": "Poll"}, "items": [{"itemId": "1", "title": "Q"}]}
    forms_service.existing["abc"] = form

    resp = client.get("/export-form/abc")

    assert resp.status_code == 200
    assert resp.get_json() == form


def test_export_remote_failure(client, authorized):
    resp = client.get("/export-form/unknown")
    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Error exporting form"


def test_export_saves_copy_when_configured(config, store, oauth, forms_service, tmp_path):
    config["export"]["save_dir"] = str(tmp_path)
    store.set(make_credential())
    forms_service.existing["abc"] = {"formId": "abc", "info": {"title": "Poll"}}
    app = create_app(config, store=store, oauth=oauth, forms_service=lambda credential: forms_service)

    assert app.test_client().get("/export-form/abc").status_code == 200
    assert (tmp_path / "Poll_abc.json").exists()


def test_import_page_break_end_to_end(client, authorized, forms_service):
    resp = client.post(
        "/import-form",
        json={"info": {"title": "T"}, "items": [{"title": "PB", "pageBreakItem": {}}]},
    )

    assert resp.status_code == 200
    assert re.fullmatch(r"https://docs\.google\.com/forms/d/[^/]+/viewform", resp.get_data(as_text=True))
    assert resp.mimetype == "text/plain"

    batches = [kwargs for name, kwargs in forms_service.calls if name == "batchUpdate"]
    assert len(batches) == 1
    requests = batches[0]["body"]["requests"]
    assert requests == [
        {"createItem": {"item": {"title": "PB", "pageBreakItem": {}}, "location": {"index": 0}}}
    ]
    assert forms_service.calls[0][1]["body"]["info"] == {"title": "T", "documentTitle": "Untitled Form"}


def test_import_empty_items(client, authorized, forms_service):
    resp = client.post("/import-form", json={"info": {"title": ""}, "items": []})

    assert resp.status_code == 200
    assert resp.get_data(as_text=True) == "https://docs.google.com/forms/d/form-123/viewform"
    assert forms_service.methods() == ["create", "get"]


@pytest.mark.parametrize(
    "body",
    [{"items": []}, {"info": {"title": "T"}}, {"info": {"title": "T"}, "items": "nope"}],
)
def test_import_bad_structure(client, authorized, forms_service, body):
    resp = client.post("/import-form", json=body)
    assert resp.status_code == 400
    assert resp.get_data(as_text=True) == "Invalid form JSON structure."
    assert forms_service.calls == []


def test_import_non_json_body(client, authorized, forms_service):
    resp = client.post("/import-form", data="info=1", content_type="text/plain")
    assert resp.status_code == 400
    assert forms_service.calls == []


def test_import_remote_failure(config, oauth):
    store = MemoryCredentialStore(make_credential())
    failing = FakeFormsService(fail_on={"batchUpdate"})
    app = create_app(config, store=store, oauth=oauth, forms_service=lambda credential: failing)

    resp = app.test_client().post("/import-form", json={"info": {}, "items": [{"title": "PB", "pageBreakItem": {}}]})

    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Error creating form"
    assert failing.methods() == ["create", "batchUpdate"]


def test_import_create_reply_without_form_id(config, oauth):
    store = MemoryCredentialStore(make_credential())
    service = NoIdFormsService()
    app = create_app(config, store=store, oauth=oauth, forms_service=lambda credential: service)

    resp = app.test_client().post("/import-form", json={"info": {}, "items": []})

    assert resp.status_code == 500
    assert resp.get_data(as_text=True) == "Error creating form"
    assert service.methods() == ["create"]


def test_expired_token_is_refreshed_before_export(client, store, oauth, forms_service):
    store.set(make_credential(hours=-1))
    seen = []
    forms_service.existing["abc"] = {"formId": "abc"}
    client.application.extensions["formrelay"]["forms_service"] = lambda credential: seen.append(credential) or forms_service

    resp = client.get("/export-form/abc")

    assert resp.status_code == 200
    assert oauth.refresh_calls == 1
    assert seen[0].access_token == "refreshed"
    assert store.get().access_token == "refreshed"


def test_failed_refresh_redirects_to_auth(config, forms_service):
    store = MemoryCredentialStore(make_credential(hours=-1))
    oauth = StubOAuth(refresh_ok=False)
    app = create_app(config, store=store, oauth=oauth, forms_service=lambda credential: forms_service)

    resp = app.test_client().get("/export-form/abc")

    assert resp.status_code == 302
    assert resp.headers["Location"].endswith("/auth")
    assert oauth.refresh_calls == 1
    assert forms_service.calls == []


def test_unexpected_error_is_generic_500(config, store, oauth):
    store.set(make_credential())

    def broken(credential):
        raise KeyError("discovery document")

    app = create_app(config, store=store, oauth=oauth, forms_service=broken)
    resp = app.test_client().get("/export-form/abc")

    assert resp.status_code == 500
    assert resp.get_json() == {"ok": False, "error": "Internal server error"}
