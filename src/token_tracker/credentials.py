"""Claude Code OAuth credentials with a locally-owned mirror.

Claude Code owns the OAuth secret and rotates it on its own schedule.  It
lives in the macOS Keychain, the Linux Secret Service, or
``~/.claude/.credentials.json`` as a JSON blob::

    {"claudeAiOauth": {"accessToken": ..., "expiresAt": <epoch-ms>,
                       "subscriptionType": ..., "rateLimitTier": ...}}

Reading the Keychain can prompt the user, so we keep a mirror of the last
good blob in our data directory (mode 0600) and only go back to the
authoritative store when the mirror is missing or expired, or when asked
explicitly via :meth:`CredentialResolver.force_refresh`.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.token_tracker.plans import detect_plan

logger = logging.getLogger(__name__)

CONNECTED = "connected"
EXPIRED = "expired"
DISCONNECTED = "disconnected"


class Credentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(alias="accessToken", min_length=1)
    expires_at: int | None = Field(default=None, alias="expiresAt")
    subscription_type: str | None = Field(default=None, alias="subscriptionType")
    rate_limit_tier: str | None = Field(default=None, alias="rateLimitTier")

    def is_expired(self, now_ms: int) -> bool:
        """Credentials without an expiry never expire."""
        return self.expires_at is not None and now_ms >= self.expires_at

    @classmethod
    def from_blob(cls, blob: Any) -> Credentials | None:
        if not isinstance(blob, dict) or not isinstance(blob.get("claudeAiOauth"), dict):
            return None
        try:
            return cls.model_validate(blob["claudeAiOauth"])
        except ValidationError:
            return None

    def to_blob(self) -> dict[str, Any]:
        return {"claudeAiOauth": self.model_dump(by_alias=True)}


# ── Secret stores ────────────────────────────────────────────────────────────


class SecretStore(Protocol):
    def read(self) -> str | None:
        """Raw credential JSON, or ``None`` when unavailable."""
        ...


class CommandSecretStore:
    """Reads the secret from a command's stdout."""

    def __init__(self, args: Sequence[str], timeout: float = 5.0) -> None:
        self.args = list(args)
        self.timeout = timeout

    def read(self) -> str | None:
        try:
            result = subprocess.run(
                self.args,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            logger.debug("Secret lookup via %s failed: %s", self.args[0], type(e).__name__)
            return None
        out = result.stdout.strip()
        return out or None


class MacKeychainStore(CommandSecretStore):
    def __init__(self, service: str) -> None:
        super().__init__(["security", "find-generic-password", "-s", service, "-w"])


class SecretToolStore(CommandSecretStore):
    def __init__(self, service: str) -> None:
        super().__init__(["secret-tool", "lookup", "service", service])


class CredentialsFileStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def read(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError:
            return None


class ChainedSecretStore:
    """First store that yields a value wins."""

    def __init__(self, stores: Sequence[SecretStore]) -> None:
        self.stores = list(stores)

    def read(self) -> str | None:
        for store in self.stores:
            value = store.read()
            if value:
                return value
        return None


def default_secret_store(service: str, claude_dir: Path) -> SecretStore:
    stores: list[SecretStore] = []
    if sys.platform == "darwin":
        stores.append(MacKeychainStore(service))
    elif sys.platform.startswith("linux"):
        stores.append(SecretToolStore(service))
    stores.append(CredentialsFileStore(claude_dir / ".credentials.json"))
    return ChainedSecretStore(stores)


# ── Resolver ─────────────────────────────────────────────────────────────────


@dataclass
class CredentialStatus:
    state: str
    subscription_type: str | None = None
    rate_limit_tier: str | None = None
    expires_at: int | None = None

    @property
    def connected(self) -> bool:
        return self.state == CONNECTED

    @property
    def detected_plan(self) -> str | None:
        return detect_plan(self.rate_limit_tier)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "subscription_type": self.subscription_type,
            "rate_limit_tier": self.rate_limit_tier,
            "expires_at": self.expires_at,
            "detected_plan": self.detected_plan,
        }


def _now_ms() -> int:
    return int(time.time() * 1000)


class CredentialResolver:
    """Read-through cache over the authoritative secret store.

    Absence and expiry are states, never exceptions.  Safe to call from any
    thread.
    """

    def __init__(
        self,
        store: SecretStore,
        mirror_path: Path,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._store = store
        self._mirror_path = mirror_path
        self._clock = clock
        self._lock = threading.RLock()
        self._cached: Credentials | None = None
        # Most recent credentials seen anywhere, expired or not
        self._last_seen: Credentials | None = None

    # -- mirror ---------------------------------------------------------------

    def _load_mirror(self) -> Credentials | None:
        try:
            blob = json.loads(self._mirror_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable credential mirror: %s", e)
            return None
        return Credentials.from_blob(blob)

    def _write_mirror(self, creds: Credentials) -> None:
        try:
            self._mirror_path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._mirror_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(creds.to_blob(), f)
            os.chmod(self._mirror_path, 0o600)
        except OSError as e:
            logger.warning("Could not write credential mirror: %s", e)

    def _read_authoritative(self) -> Credentials | None:
        raw = self._store.read()
        if not raw:
            return None
        try:
            blob = json.loads(raw)
        except ValueError:
            logger.warning("Credential store returned malformed JSON")
            return None
        creds = Credentials.from_blob(blob)
        if creds is None:
            logger.warning("Credential store has no usable claudeAiOauth entry")
        return creds

    def _adopt(self, creds: Credentials) -> Credentials | None:
        self._last_seen = creds
        if creds.is_expired(self._clock()):
            self._cached = None
            return None
        self._cached = creds
        return creds

    # -- public API -----------------------------------------------------------

    def get_credentials(self) -> Credentials | None:
        """Current non-expired credentials, or ``None``."""
        with self._lock:
            creds = self._cached or self._load_mirror()
            if creds is not None:
                self._last_seen = creds
                if not creds.is_expired(self._clock()):
                    self._cached = creds
                    return creds
                logger.info("Mirrored credentials expired, re-reading secret store")

            fresh = self._read_authoritative()
            if fresh is None:
                self._cached = None
                return None
            self._write_mirror(fresh)
            return self._adopt(fresh)

    def force_refresh(self) -> Credentials | None:
        """Discard the mirror and re-read the secret store unconditionally."""
        with self._lock:
            self.invalidate()
            fresh = self._read_authoritative()
            if fresh is None:
                return None
            self._write_mirror(fresh)
            return self._adopt(fresh)

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            try:
                self._mirror_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove credential mirror: %s", e)

    def status(self) -> CredentialStatus:
        with self._lock:
            creds = self.get_credentials()
            if creds is not None:
                return CredentialStatus(
                    state=CONNECTED,
                    subscription_type=creds.subscription_type,
                    rate_limit_tier=creds.rate_limit_tier,
                    expires_at=creds.expires_at,
                )
            last = self._last_seen
            if last is not None and last.is_expired(self._clock()):
                return CredentialStatus(
                    state=EXPIRED,
                    subscription_type=last.subscription_type,
                    rate_limit_tier=last.rate_limit_tier,
                    expires_at=last.expires_at,
                )
            return CredentialStatus(state=DISCONNECTED)
