"""User identities kept as a JSON document on an IPFS node."""

from __future__ import annotations

import json
import os
import re
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Protocol

import bcrypt
import requests
from dotenv import dotenv_values

from .logger import Logger, config_from_env, new_logger

DEFAULT_COST = 10
_MAX_PASSWORD_BYTES = 72
_FRACTION = re.compile(r"\.(\d+)")


class IdentityError(Exception):
    """Base error for identity operations."""


class UserExistsError(IdentityError):
    def __init__(self, message: str = "username already exists") -> None:
        super().__init__(message)


class UserNotFoundError(IdentityError):
    def __init__(self, message: str = "user not found") -> None:
        super().__init__(message)


class InvalidPasswordError(IdentityError):
    def __init__(self, message: str = "invalid password") -> None:
        super().__init__(message)


class StorageError(IdentityError):
    """Raised when the user document cannot be stored or fetched."""


def _parse_time(text: str) -> datetime:
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    return datetime.fromisoformat(text)


@dataclass
class User:
    """A stored user; ``password`` holds a bcrypt hash."""

    id: str
    username: str
    password: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "username": self.username,
            "password": self.password,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "User":
        return cls(
            id=data["id"],
            username=data["username"],
            password=data["password"],
            created_at=_parse_time(data["created_at"]),
            updated_at=_parse_time(data["updated_at"]),
        )


class ContentStore(Protocol):
    def add(self, data: bytes) -> str: ...

    def cat(self, cid: str) -> bytes: ...


class IpfsClient:
    """Minimal client for an IPFS node's HTTP API."""

    def __init__(
        self,
        node: str,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if "://" not in node:
            node = "http://" + node
        self.base_url = node.rstrip("/") + "/api/v0"
        self._session = session or requests.Session()
        self._timeout = timeout

    def add(self, data: bytes) -> str:
        """Store ``data`` and return its content id."""
        try:
            response = self._session.post(
                f"{self.base_url}/add",
                files={"file": ("file", data)},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"failed to add data to IPFS: {exc}") from exc
        lines = [line for line in response.text.splitlines() if line.strip()]
        try:
            return json.loads(lines[-1])["Hash"]
        except (IndexError, ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"failed to add data to IPFS: bad response: {exc}") from exc

    def cat(self, cid: str) -> bytes:
        """Fetch the content stored under ``cid``."""
        try:
            response = self._session.post(
                f"{self.base_url}/cat", params={"arg": cid}, timeout=self._timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"failed to fetch data from IPFS: {exc}") from exc
        return response.content


class IdentityManager:
    """Adds, edits, deletes and authenticates users stored on IPFS."""

    def __init__(
        self,
        ipfs: ContentStore,
        log: Optional[Logger] = None,
        *,
        cost: int = DEFAULT_COST,
        cid: Optional[str] = None,
    ) -> None:
        self.ipfs = ipfs
        self._log = log
        self._cost = cost
        self._cid = cid
        self._lock = threading.RLock()

    @property
    def cid(self) -> Optional[str]:
        """Content id of the current user document, if any."""
        with self._lock:
            return self._cid

    def _info(self, msg: str) -> None:
        if self._log is not None:
            self._log.info(msg)

    def _load_users(self) -> Dict[str, User]:
        if not self._cid:
            return {}
        data = self.ipfs.cat(self._cid)
        try:
            raw = json.loads(data)
            return {key: User.from_dict(value) for key, value in raw.items()}
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise StorageError(f"failed to unmarshal user data: {exc}") from exc

    def _save_users(self, users: Mapping[str, User]) -> None:
        document = {key: users[key].to_dict() for key in sorted(users)}
        payload = json.dumps(document, separators=(",", ":")).encode("utf-8")
        self._cid = self.ipfs.add(payload)

    def _hash(self, password: str, renewal: bool = False) -> str:
        raw = password.encode()
        if len(raw) > _MAX_PASSWORD_BYTES:
            prefix = "new " if renewal else ""
            raise IdentityError(
                f"failed to hash {prefix}password: "
                f"password length exceeds {_MAX_PASSWORD_BYTES} bytes"
            )
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self._cost)).decode("ascii")

    def add_user(self, username: str, password: str) -> str:
        """Create a user and return its new id."""
        with self._lock:
            users = self._load_users()
            if any(user.username == username for user in users.values()):
                raise UserExistsError()
            hashed = self._hash(password)
            user_id = str(uuid.uuid4())
            now = datetime.now(timezone.utc)
            users[user_id] = User(user_id, username, hashed, now, now)
            self._save_users(users)
        self._info(f"User added successfully with ID: {user_id}")
        return user_id

    def edit_user(self, user_id: str, new_username: str, new_password: str) -> None:
        """Update a user; empty values leave the field unchanged."""
        with self._lock:
            users = self._load_users()
            user = users.get(user_id)
            if user is None:
                raise UserNotFoundError()
            if new_username:
                user = replace(user, username=new_username)
            if new_password:
                hashed = self._hash(new_password, renewal=True)
                user = replace(user, password=hashed)
            users[user_id] = replace(user, updated_at=datetime.now(timezone.utc))
            self._save_users(users)
        self._info(f"User with ID {user_id} updated successfully")

    def delete_user(self, user_id: str) -> None:
        with self._lock:
            users = self._load_users()
            if user_id not in users:
                raise UserNotFoundError()
            del users[user_id]
            self._save_users(users)
        self._info(f"User with ID {user_id} deleted successfully")

    def login(self, username: str, password: str) -> str:
        """Return the id of the user whose credentials match."""
        with self._lock:
            users = self._load_users()
        for user_id, user in users.items():
            if user.username != username:
                continue
            try:
                ok = bcrypt.checkpw(password.encode(), user.password.encode())
            except ValueError:
                ok = False
            if not ok:
                raise InvalidPasswordError()
            self._info(f"User {username} authenticated successfully")
            return user_id
        raise UserNotFoundError()


def new_identity_manager(environ: Optional[MutableMapping[str, str]] = None) -> IdentityManager:
    """Build a manager from ``.env`` in the working directory and the environment."""
    env = os.environ if environ is None else environ
    log = new_logger(config_from_env(env))

    env_file = Path(".env")
    if not env_file.is_file():
        log.error("Error loading .env file", path=str(env_file))
        raise IdentityError(f"error loading .env file: {env_file} not found")
    for key, value in dotenv_values(env_file).items():
        if value is not None and key not in env:
            env[key] = value

    node = env.get("IPFS_NODE")
    if not node:
        log.error("IPFS_NODE environment variable not set")
        raise IdentityError("IPFS_NODE environment variable not set")
    return IdentityManager(IpfsClient(node), log)