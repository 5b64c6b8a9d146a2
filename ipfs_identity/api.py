"""HTTP API for managing and authenticating user identities."""

from __future__ import annotations

import argparse
import json
import os
from typing import Any, Dict, Mapping, Optional, Tuple

from flask import Flask, Response, request

from .identity import IdentityError, IdentityManager, new_identity_manager
from .logger import Logger, config_from_env, new_logger

DEFAULT_PORT = "6501"
_FIELDS = ("username", "password")
_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class _BadRequest(ValueError):
    """Raised when a request body cannot be decoded."""


def _json_response(payload: Mapping[str, str]) -> Response:
    text = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    text = "".join(_HTML_ESCAPES.get(ch, ch) for ch in text)
    return Response(text + "\n", status=200, content_type="application/json")


def _error_response(message: str, status: int) -> Response:
    return Response(
        message + "\n",
        status=status,
        content_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


def _decode_user_request(body: bytes) -> Dict[str, str]:
    """Decode the first JSON value of ``body`` into username and password."""
    text = body.decode("utf-8", errors="replace").lstrip(" \t\r\n")
    if not text:
        raise _BadRequest("EOF")
    try:
        value, _ = json.JSONDecoder().raw_decode(text)
    except ValueError as exc:
        raise _BadRequest(str(exc)) from exc
    fields = {name: "" for name in _FIELDS}
    if value is None:
        return fields
    if not isinstance(value, dict):
        raise _BadRequest("cannot unmarshal into request object")
    for key, item in value.items():
        name = key if key in _FIELDS else key.lower()
        if name not in _FIELDS or item is None:
            continue
        if not isinstance(item, str):
            raise _BadRequest(f"cannot unmarshal field {key!r} into string")
        fields[name] = item
    return fields


class _NullLogger:
    def __getattr__(self, name: str) -> Any:
        return lambda *args, **kwargs: None


def create_app(manager: IdentityManager, log: Optional[Logger] = None) -> Flask:
    """Build the Flask application serving the identity endpoints."""
    app = Flask(__name__)
    logger: Any = log if log is not None else _NullLogger()

    @app.route("/addusers", methods=["POST"])
    def add_user() -> Response:
        try:
            req = _decode_user_request(request.get_data())
        except _BadRequest as exc:
            logger.error("Error decoding add user request", error=str(exc))
            return _error_response("Invalid request", 400)
        try:
            user_id = manager.add_user(req["username"], req["password"])
        except IdentityError as exc:
            logger.error("Error adding user", error=str(exc))
            return _error_response(str(exc), 400)
        logger.info(f"User added with ID: {user_id}")
        return _json_response({"message": "User added successfully", "id": user_id})

    @app.route("/login", methods=["POST"])
    def login() -> Response:
        try:
            req = _decode_user_request(request.get_data())
        except _BadRequest as exc:
            logger.error("Error decoding login request", error=str(exc))
            return _error_response("Invalid request", 400)
        try:
            user_id = manager.login(req["username"], req["password"])
        except IdentityError as exc:
            logger.warn(f"Failed login attempt for username: {req['username']}")
            return _error_response(str(exc), 401)
        logger.info(f"User {req['username']} logged in successfully")
        return _json_response({"id": user_id})

    @app.route("/users/<user_id>", methods=["PUT"])
    def update_user(user_id: str) -> Response:
        try:
            req = _decode_user_request(request.get_data())
        except _BadRequest as exc:
            logger.error("Error decoding update request", error=str(exc))
            return _error_response("Invalid request", 400)
        try:
            manager.edit_user(user_id, req["username"], req["password"])
        except IdentityError as exc:
            logger.error("Error updating user", error=str(exc))
            return _error_response(str(exc), 400)
        logger.info(f"User {user_id} updated successfully")
        return _json_response({"message": "User updated successfully", "id": user_id})

    @app.route("/users/<user_id>", methods=["DELETE"])
    def delete_user(user_id: str) -> Response:
        try:
            manager.delete_user(user_id)
        except IdentityError as exc:
            logger.error("Error deleting user", error=str(exc))
            return _error_response(str(exc), 400)
        logger.info(f"User {user_id} deleted successfully")
        return _json_response({"message": "User deleted successfully", "id": user_id})

    @app.route("/", methods=["GET"])
    def root() -> Response:
        logger.info(f"Root accessed: {request.path}")
        return _json_response({"message": "Welcome to the Identity API"})

    return app


def server_address(addr: str) -> str:
    """Append the default port when ``addr`` names no port."""
    return addr if ":" in addr else f"{addr}:{DEFAULT_PORT}"


def _split_address(addr: str) -> Tuple[str, int]:
    host, _, port = addr.rpartition(":")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port) if port else 0


def main(argv: Optional[list] = None) -> int:
    """Run the identity HTTP server configured from the environment."""
    parser = argparse.ArgumentParser(
        prog="ipfs-identity",
        description="Serve the identity API backed by an IPFS node.",
    )
    parser.parse_args(argv)

    try:
        log = new_logger(config_from_env())
    except (ValueError, OSError) as exc:
        print(f"Failed to initialize logger: {exc}")
        return 1

    try:
        try:
            manager = new_identity_manager()
        except (IdentityError, ValueError, OSError) as exc:
            log.error(f"Failed to initialize identity manager: {exc}")
            return 1

        addr = os.environ.get("SERVER_ADDR", "")
        if not addr:
            log.error("SERVER_ADDR environment variable not set")
            return 1
        addr = server_address(addr)

        ipfs_node = os.environ.get("IPFS_NODE", "")
        if not ipfs_node:
            log.error("IPFS_NODE environment variable not set")
            return 1
        log.info(f"IPFS node is running at {ipfs_node}")

        try:
            host, port = _split_address(addr)
        except ValueError as exc:
            log.error(f"Server failed to start: invalid address {addr!r}: {exc}")
            return 1

        log.info(f"Starting server on {addr}")
        app = create_app(manager, log)
        try:
            app.run(host=host, port=port)
        except OSError as exc:
            log.error(f"Server failed to start: {exc}")
            log.fatal(str(exc))
        return 0
    finally:
        log.sync()