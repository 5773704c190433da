"""
Credential slot.

The OAuth2 token set lives in exactly one place at a time. Every backend
implements the same three calls (get / set / clear) and the last write wins;
there is no versioning or locking, the server runs as a single process.
"""

from __future__ import annotations

import os
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from formrelay.errors import ConfigError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_expiry(raw: dict) -> Optional[datetime]:
    # ISO string (ours), epoch millis (googleapis JS clients), epoch seconds (oauthlib)
    if raw.get("expiry"):
        expiry = datetime.fromisoformat(str(raw["expiry"]).replace("Z", "+00:00"))
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry
    if raw.get("expiry_date"):
        return datetime.fromtimestamp(int(raw["expiry_date"]) / 1000, tz=timezone.utc)
    if raw.get("expires_at"):
        return datetime.fromtimestamp(float(raw["expires_at"]), tz=timezone.utc)
    return None


@dataclass
class Credential:
    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    scope: Optional[str] = None
    token_type: str = "Bearer"

    def expired(self, now: Optional[datetime] = None) -> bool:
        """True once ``expiry <= now``. A credential without expiry never expires."""
        if self.expiry is None:
            return False
        return self.expiry <= (now or _utcnow())

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expiry": self.expiry.isoformat() if self.expiry else None,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Credential":
        token = raw.get("access_token") or raw.get("token")
        if not token:
            raise ValueError("token record has no access_token")
        scope = raw.get("scope")
        if isinstance(scope, (list, tuple)):
            scope = " ".join(scope)
        return cls(
            access_token=token,
            refresh_token=raw.get("refresh_token"),
            expiry=_parse_expiry(raw),
            scope=scope,
            token_type=raw.get("token_type") or "Bearer",
        )

    @classmethod
    def from_google(cls, creds) -> "Credential":
        """Build from a ``google.oauth2.credentials.Credentials`` (naive UTC expiry)."""
        expiry = creds.expiry
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        scopes = getattr(creds, "granted_scopes", None) or creds.scopes
        return cls(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=expiry,
            scope=" ".join(scopes) if scopes else None,
        )


def _decode(raw, source: str) -> Optional[Credential]:
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return Credential.from_dict(data)
    except (ValueError, TypeError, AttributeError, OverflowError, OSError):
        logger.warning("Ignoring unreadable token stored in %s", source)
        return None


class CredentialStore:
    """Single-slot store for the current credential."""

    def get(self) -> Optional[Credential]:
        raise NotImplementedError

    def set(self, credential: Credential):
        raise NotImplementedError

    def clear(self):
        raise NotImplementedError


class MemoryCredentialStore(CredentialStore):
    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    def get(self):
        return self._credential

    def set(self, credential):
        self._credential = credential

    def clear(self):
        self._credential = None


class EnvCredentialStore(CredentialStore):
    """Keeps the token as JSON in a process environment variable."""

    def __init__(self, var: str = "GOOGLE_TOKEN"):
        self.var = var

    def get(self):
        raw = os.environ.get(self.var)
        if not raw:
            return None
        return _decode(raw, f"${self.var}")

    def set(self, credential):
        os.environ[self.var] = json.dumps(credential.to_dict())

    def clear(self):
        os.environ.pop(self.var, None)


class FileCredentialStore(CredentialStore):
    def __init__(self, path):
        self.path = Path(path)

    def get(self):
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return _decode(raw, str(self.path))

    def set(self, credential):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(json.dumps(credential.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp, self.path)

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


class PostgresCredentialStore(CredentialStore):
    """One row of ``oauth_tokens`` keyed by slot name."""

    def __init__(self, slot: str = "default"):
        self.slot = slot

    def ensure_table(self):
        from formrelay.db import db_cursor

        with db_cursor() as (conn, cur):
            cur.execute(
                "CREATE TABLE IF NOT EXISTS oauth_tokens ("
                "slot VARCHAR(64) PRIMARY KEY, "
                "token JSONB NOT NULL, "
                "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW())"
            )

    def get(self):
        from formrelay.db import db_cursor

        with db_cursor(commit=False) as (conn, cur):
            cur.execute("SELECT token FROM oauth_tokens WHERE slot = %s", (self.slot,))
            row = cur.fetchone()
        if not row:
            return None
        return _decode(row[0], f"oauth_tokens[{self.slot}]")

    def set(self, credential):
        from formrelay.db import db_cursor

        with db_cursor() as (conn, cur):
            cur.execute(
                "INSERT INTO oauth_tokens (slot, token, updated_at) VALUES (%s, %s::jsonb, NOW()) "
                "ON CONFLICT (slot) DO UPDATE SET token = EXCLUDED.token, updated_at = EXCLUDED.updated_at",
                (self.slot, json.dumps(credential.to_dict())),
            )

    def clear(self):
        from formrelay.db import db_cursor

        with db_cursor() as (conn, cur):
            cur.execute("DELETE FROM oauth_tokens WHERE slot = %s", (self.slot,))


def make_store(config: dict) -> CredentialStore:
    """Pick the backend named by ``credentials.store``."""
    section = config.get("credentials", {})
    kind = (section.get("store") or "env").lower()
    if kind == "env":
        return EnvCredentialStore(section.get("env_var") or "GOOGLE_TOKEN")
    if kind == "file":
        return FileCredentialStore(section.get("path") or "token.json")
    if kind == "memory":
        return MemoryCredentialStore()
    if kind == "postgres":
        from formrelay.db import init_db_pool

        init_db_pool(config.get("database", {}))
        store = PostgresCredentialStore(section.get("slot") or "default")
        store.ensure_table()
        return store
    raise ConfigError(f"unknown credential store: {kind!r}")
