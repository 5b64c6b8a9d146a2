# ipfs-identity

A small HTTP identity service. It keeps user accounts as one JSON document on an IPFS node and hashes passwords with bcrypt. Each change stores a new document, and the service keeps the content ID of the latest one in memory.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Configuration

The service reads its settings from the environment. At start-up it also loads a `.env` file from the working directory. That file must exist. Values already set in the environment take precedence over those in the file.

| Variable      | Meaning                                                           | Default   |
|---------------|-------------------------------------------------------------------|-----------|
| `SERVER_ADDR` | Address to listen on. If it has no `:`, port `6501` is added.      | required  |
| `IPFS_NODE`   | IPFS HTTP API address, such as `localhost:5001`. `http://` is assumed when no scheme is given. | required  |
| `LOG_LEVEL`   | `debug`, `info`, `warn`/`warning`, `error` or `fatal`. Case does not matter. Unknown values mean `info`. | `info`    |
| `LOG_FORMAT`  | `console` gives local ISO timestamps and coloured level names. Any other value gives epoch timestamps and plain level names. | `console` |
| `BASE_DIR`    | Directory that holds the log files                                | `logs`    |

Logs are written to `<BASE_DIR>/<YYYY-MM-DD>/log-<HH-MM>.log`, with one tab-separated line per entry. A new file is started every ten minutes.

## Running

```
ipfs-identity
```

The command exits with status 1 in these cases:

- the logger cannot be set up
- `.env` is missing
- `SERVER_ADDR` is not set
- `IPFS_NODE` is not set

## HTTP API

| Method   | Path          | Body                                 | Success response                        |
|----------|---------------|--------------------------------------|-----------------------------------------|
| `GET`    | `/`           |                                      | `{"message": "Welcome to the Identity API"}` |
| `POST`   | `/addusers`   | `{"username": ..., "password": ...}` | `{"id": ..., "message": ...}`           |
| `POST`   | `/login`      | `{"username": ..., "password": ...}` | `{"id": ...}`                           |
| `PUT`    | `/users/<id>` | `{"username": ..., "password": ...}` | `{"id": ..., "message": ...}`           |
| `DELETE` | `/users/<id>` |                                      | `{"id": ..., "message": ...}`           |

How request bodies are read:

- Field names match case-insensitively.
- A missing field counts as an empty string.
- In an update, an empty field leaves that value unchanged.

Error responses are plain text:

- A body that cannot be decoded gets `400 Invalid request`.
- A failed login gets `401` with the error text, either `user not found` or `invalid password`.
- Any other failure gets `400` with the error text.

## Using it as a library

```python
from ipfs_identity.identity import IdentityManager, IpfsClient
from ipfs_identity.logger import config_from_env, new_logger

log = new_logger(config_from_env())
manager = IdentityManager(IpfsClient("localhost:5001"), log)

password = "password"
user_id = manager.add_user("alice", password)
assert manager.login("alice", password) == user_id
manager.edit_user(user_id, "alice2", "")
manager.delete_user(user_id)
```

`IdentityManager` takes these keyword options:

- `cost`: the bcrypt cost, default 10
- `cid`: the content ID of an existing user document to start from

Passwords longer than 72 bytes are rejected. Any object with `add(data) -> cid` and `cat(cid) -> bytes` methods can stand in for `IpfsClient`.

`new_identity_manager()` builds a manager from `.env` and the environment, as the command does.

`create_app(manager, log)` in `ipfs_identity.api` returns the Flask application that serves the HTTP API. `server_address(addr)` adds the default port to an address that has none.

All failures raise subclasses of `IdentityError`:

- `UserExistsError`
- `UserNotFoundError`
- `InvalidPasswordError`
- `StorageError`

## Limitations

The content ID of the latest user document lives only in memory. A new process starts with no users. To continue from an earlier document, pass its ID as `cid=` when you build an `IdentityManager` in your own code. The command has no option for this.

The server is Flask's built-in development server.