from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone

import pytest

from formrelay.app import create_app
from formrelay.config import DEFAULTS
from formrelay.credentials import Credential, MemoryCredentialStore
from formrelay.errors import AuthExchangeError


class _Call:
    def __init__(self, fn):
        self._fn = fn

    def execute(self, num_retries=0):
        return self._fn()


class _FormsResource:
    def __init__(self, service):
        self.service = service

    def create(self, body):
        return _Call(lambda: self.service._handle("create", body=body))

    def batchUpdate(self, formId, body):
        return _Call(lambda: self.service._handle("batchUpdate", formId=formId, body=body))

    def get(self, formId):
        return _Call(lambda: self.service._handle("get", formId=formId))


class FakeFormsService:
    """Records Forms API calls and keeps just enough state to answer them."""

    def __init__(self, form_id="form-123", fail_on=()):
        self.form_id = form_id
        self.fail_on = set(fail_on)
        self.calls = []
        self.info = {}
        self.items = []
        self.existing = {}

    def forms(self):
        return _FormsResource(self)

    def methods(self):
        return [name for name, _ in self.calls]

    def _handle(self, name, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.fail_on:
            raise RuntimeError(f"{name} failed")
        if name == "create":
            self.info = dict(kwargs["body"]["info"])
            return {"formId": self.form_id, "info": self.info}
        if name == "batchUpdate":
            for request in kwargs["body"]["requests"]:
                item = dict(request["createItem"]["item"])
                item["itemId"] = f"item{len(self.items)}"
                self.items.insert(request["createItem"]["location"]["index"], item)
            return {"replies": [{} for _ in kwargs["body"]["requests"]]}
        if kwargs["formId"] in self.existing:
            return self.existing[kwargs["formId"]]
        if kwargs["formId"] != self.form_id:
            raise RuntimeError("Requested entity was not found.")
        return {"formId": self.form_id, "info": self.info, "items": list(self.items)}


class NoIdFormsService(FakeFormsService):
    """Answers ``create`` without a formId."""

    def _handle(self, name, **kwargs):
        reply = super()._handle(name, **kwargs)
        if name == "create":
            reply.pop("formId")
        return reply


class StubOAuth:
    def __init__(self, refresh_ok=True):
        self.refresh_ok = refresh_ok
        self.refresh_calls = 0

    def authorization_url(self):
        return "https://accounts.google.com/o/oauth2/auth?access_type=offline&client_id=test"

    def exchange_code(self, code):
        if code != "good-code":
            raise AuthExchangeError("invalid_grant")
        return make_credential(hours=1, token="exchanged")

    def refresh(self, credential):
        self.refresh_calls += 1
        if not self.refresh_ok:
            return False, RuntimeError("invalid_grant")
        return True, make_credential(hours=1, token="refreshed", refresh_token=credential.refresh_token)

    def google_credentials(self, credential):
        return None


def make_credential(hours=1, token="ya29.test", refresh_token="1//refresh"):
    return Credential(
        access_token=token,
        refresh_token=refresh_token,
        expiry=datetime.now(timezone.utc) + timedelta(hours=hours),
        scope="https://www.googleapis.com/auth/forms.body",
    )


@pytest.fixture()
def config():
    cfg = copy.deepcopy(DEFAULTS)
    cfg["google"]["client_id"] = "client-id.apps.googleusercontent.com"
    cfg["google"]["client_secret"] = "secret"
    return cfg


@pytest.fixture()
def store():
    return MemoryCredentialStore()


@pytest.fixture()
def oauth():
    return StubOAuth()


@pytest.fixture()
def forms_service():
    return FakeFormsService()


@pytest.fixture()
def app(config, store, oauth, forms_service):
    return create_app(config, store=store, oauth=oauth, forms_service=lambda credential: forms_service)


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def authorized(store):
    store.set(make_credential(hours=1))
    return store
