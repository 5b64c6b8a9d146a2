import json
import uuid
from datetime import datetime, timezone

import bcrypt
import pytest
import responses

from ipfs_identity.identity import (
    IdentityError,
    IdentityManager,
    InvalidPasswordError,
    IpfsClient,
    StorageError,
    User,
    UserExistsError,
    UserNotFoundError,
    new_identity_manager,
)

PASSWORD = "password"


class MemoryStore:
    def __init__(self):
        self.blobs = {}

    def add(self, data):
        cid = f"cid{len(self.blobs)}"
        self.blobs[cid] = data
        return cid

    def cat(self, cid):
        if cid not in self.blobs:
            raise StorageError("failed to fetch data from IPFS: missing")
        return self.blobs[cid]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def manager(store):
    return IdentityManager(store, cost=4)


def test_add_user_then_login(manager):
    user_id = manager.add_user("alice", PASSWORD)
    assert str(uuid.UUID(user_id)) == user_id
    assert manager.login("alice", PASSWORD) == user_id


def test_stored_document_holds_hash(manager, store):
    user_id = manager.add_user("alice", PASSWORD)
    document = json.loads(store.blobs[manager.cid])
    entry = document[user_id]
    assert entry["username"] == "alice"
    assert entry["id"] == user_id
    assert entry["password"] != PASSWORD
    assert bcrypt.checkpw(PASSWORD.encode(), entry["password"].encode())
    assert set(entry) == {"id", "username", "password", "created_at", "updated_at"}


def test_each_save_produces_new_cid(manager):
    assert manager.cid is None
    manager.add_user("alice", PASSWORD)
    first = manager.cid
    manager.add_user("bob", PASSWORD)
    assert manager.cid not in (None, first)


def test_duplicate_username_rejected(manager):
    manager.add_user("alice", PASSWORD)
    with pytest.raises(UserExistsError, match="username already exists"):
        manager.add_user("alice", "secret")


def test_login_wrong_password(manager):
    manager.add_user("alice", PASSWORD)
    with pytest.raises(InvalidPasswordError, match="invalid password"):
        manager.login("alice", "secret")


def test_login_unknown_user(manager):
    with pytest.raises(UserNotFoundError, match="user not found"):
        manager.login("nobody", PASSWORD)


def test_edit_username(manager):
    user_id = manager.add_user("alice", PASSWORD)
    manager.edit_user(user_id, "alicia", "")
    assert manager.login("alicia", PASSWORD) == user_id
    with pytest.raises(UserNotFoundError):
        manager.login("alice", PASSWORD)


def test_edit_password(manager):
    user_id = manager.add_user("alice", PASSWORD)
    manager.edit_user(user_id, "", "secret")
    assert manager.login("alice", "secret") == user_id
    with pytest.raises(InvalidPasswordError):
        manager.login("alice", PASSWORD)


def test_edit_with_empty_values_touches_timestamp(manager, store):
    user_id = manager.add_user("alice", PASSWORD)
    before = User.from_dict(json.loads(store.blobs[manager.cid])[user_id])
    manager.edit_user(user_id, "", "")
    after = User.from_dict(json.loads(store.blobs[manager.cid])[user_id])
    assert after.username == before.username
    assert after.password == before.password
    assert after.created_at == before.created_at
    assert after.updated_at >= before.updated_at


def test_edit_missing_user(manager):
    with pytest.raises(UserNotFoundError):
        manager.edit_user("missing", "x", "")


def test_delete_user(manager):
    user_id = manager.add_user("alice", PASSWORD)
    keep = manager.add_user("bob", PASSWORD)
    manager.delete_user(user_id)
    with pytest.raises(UserNotFoundError):
        manager.login("alice", PASSWORD)
    assert manager.login("bob", PASSWORD) == keep


def test_delete_missing_user(manager):
    with pytest.raises(UserNotFoundError):
        manager.delete_user("missing")


def test_overlong_password_rejected(manager):
    long_password = PASSWORD * 10
    with pytest.raises(IdentityError, match="failed to hash password"):
        manager.add_user("alice", long_password)


def test_overlong_new_password_rejected(manager):
    user_id = manager.add_user("alice", PASSWORD)
    long_password = PASSWORD * 10
    with pytest.raises(IdentityError, match="failed to hash new password"):
        manager.edit_user(user_id, "", long_password)


def test_corrupt_document_raises_storage_error(store):
    cid = store.add(b"not json")
    manager = IdentityManager(store, cost=4, cid=cid)
    with pytest.raises(StorageError, match="failed to unmarshal user data"):
        manager.login("alice", PASSWORD)


def test_user_round_trip():
    stamp = datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    user = User("id-1", "alice", PASSWORD, stamp, stamp)
    assert User.from_dict(user.to_dict()) == user


def test_user_from_nanosecond_utc_timestamp():
    user = User.from_dict(
        {
            "id": "id-1",
            "username": "alice",
            "password": "password",
            "created_at": "2024-01-02T03:04:05.123456789Z",
            "updated_at": "2024-01-02T03:04:05Z",
        }
    )
    assert user.created_at == datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert user.updated_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def test_ipfs_client_add_returns_hash():
    client = IpfsClient("localhost:5001")
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.POST,
            "http://localhost:5001/api/v0/add",
            body='{"Name":"file","Hash":"QmExample","Size":"3"}\n',
        )
        assert client.add(b"abc") == "QmExample"
        assert b"abc" in rsps.calls[0].request.body


def test_ipfs_client_cat_passes_cid():
    client = IpfsClient("http://localhost:5001/")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "http://localhost:5001/api/v0/cat", body=b"{}")
        assert client.cat("QmExample") == b"{}"
        assert "arg=QmExample" in rsps.calls[0].request.url


def test_ipfs_client_errors_become_storage_errors():
    client = IpfsClient("localhost:5001")
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, "http://localhost:5001/api/v0/cat", status=500)
        rsps.add(responses.POST, "http://localhost:5001/api/v0/add", status=500)
        with pytest.raises(StorageError, match="failed to fetch data from IPFS"):
            client.cat("QmExample")
        with pytest.raises(StorageError, match="failed to add data to IPFS"):
            client.add(b"x")


def test_manager_over_http_client():
    manager = IdentityManager(IpfsClient("localhost:5001"), cost=4)
    with responses.RequestsMock() as rsps:
        rsps.add(
            responses.POST,
            "http://localhost:5001/api/v0/add",
            body='{"Hash":"QmFirst"}',
        )
        manager.add_user("alice", PASSWORD)
        stored = rsps.calls[0].request.body
    assert manager.cid == "QmFirst"
    assert b"alice" in stored


def test_new_identity_manager_requires_env_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    environ = {"BASE_DIR": str(tmp_path / "logs"), "IPFS_NODE": "localhost:5001"}
    with pytest.raises(IdentityError, match=".env"):
        new_identity_manager(environ)


def test_new_identity_manager_reads_env_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("IPFS_NODE=localhost:5001\n")
    environ = {"BASE_DIR": str(tmp_path / "logs")}
    manager = new_identity_manager(environ)
    assert environ["IPFS_NODE"] == "localhost:5001"
    assert manager.ipfs.base_url == "http://localhost:5001/api/v0"


def test_new_identity_manager_requires_node(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("OTHER=1\n")
    environ = {"BASE_DIR": str(tmp_path / "logs")}
    with pytest.raises(IdentityError, match="IPFS_NODE environment variable not set"):
        new_identity_manager(environ)