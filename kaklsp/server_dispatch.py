"""Handling of messages that language servers send to the client."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Optional

from kaklsp.context import Context, EditorMeta, remove_outstanding_request

log = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601
CONTENT_MODIFIED = -32801

CODE_ACTION_REQUEST = "textDocument/codeAction"
DID_CHANGE_WATCHED_FILES = "workspace/didChangeWatchedFiles"
DID_CHANGE_WORKSPACE_FOLDERS = "workspace/didChangeWorkspaceFolders"
SEMANTIC_TOKENS_REGISTRATION = "textDocument/semanticTokens"
REGISTER_CAPABILITY = "client/registerCapability"
WORKSPACE_FOLDERS = "workspace/workspaceFolders"
EXIT = "exit"
LOG_MESSAGE = "window/logMessage"
TELEMETRY_EVENT = "telemetry/event"

NotificationHandler = Callable[[Context, EditorMeta, str, Any], None]


def _editor_quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _deliver_success(ctx: Context, server_name: str, pending, result: Any) -> None:
    batch = ctx.batches.pop(pending.batch_id, None)
    if batch is None:
        return
    sizes = ctx.batch_sizes.pop(pending.batch_id, None)
    if sizes is None:
        return
    vals, callback = batch
    vals.append((server_name, result))
    if len(vals) >= sum(sizes.values()):
        callback(ctx, pending.meta, vals)
    else:
        ctx.batch_sizes[pending.batch_id] = sizes
        ctx.batches[pending.batch_id] = (vals, callback)


def _deliver_failure(ctx: Context, server_name: str, pending) -> bool:
    """Drop a failed server from its batch; True if the batch is still alive."""
    batch = ctx.batches.pop(pending.batch_id, None)
    if batch is None:
        return False
    sizes = ctx.batch_sizes.pop(pending.batch_id, None)
    if sizes is None:
        return False
    sizes.pop(server_name, None)
    if not sizes:
        return False
    vals, callback = batch
    vals = [(name, value) for name, value in vals if name != server_name]
    if len(vals) >= sum(sizes.values()):
        callback(ctx, pending.meta, vals)
    else:
        ctx.batch_sizes[pending.batch_id] = sizes
        ctx.batches[pending.batch_id] = (vals, callback)
    return True


def _report_failure(ctx: Context, server_name: str, pending, error: Mapping) -> None:
    code = error.get("code")
    if code == CONTENT_MODIFIED or pending.method == CODE_ACTION_REQUEST:
        # The editor may be blocked on a fifo waiting for an answer.
        ctx.exec(pending.meta, "nop")
        return
    if code == METHOD_NOT_FOUND:
        msg = f"language server {server_name} doesn't support method {pending.method}"
    else:
        msg = f"language server {server_name} error: {_editor_quote(str(error.get('message', '')))}"
    ctx.exec(pending.meta, f"lsp-show-error {_editor_quote(msg)}")


def handle_server_response(ctx: Context, server_name: str, message: Mapping) -> None:
    """Match a server's response to its request and complete the request's batch.

    A batch's callback runs once every server in it has answered; a server
    that fails is dropped from the batch so the others can still be handled.
    """
    request_id = message.get("id")
    error = message.get("error")
    pending = ctx.response_waitlist.pop(request_id, None)
    if pending is None:
        if error is not None:
            log.error("Error response from server %s: %r", server_name, error)
        log.error("Id %r is not in waitlist!", request_id)
        return
    if pending.canceled:
        return
    remove_outstanding_request(
        ctx, server_name, pending.method, pending.meta.buffile, pending.meta.client, request_id
    )
    if error is None:
        _deliver_success(ctx, server_name, pending, message.get("result"))
        return
    log.error("Error response from server %s: %r", server_name, error)
    if _deliver_failure(ctx, server_name, pending):
        return
    _report_failure(ctx, server_name, pending, error)


def _register_capabilities(ctx: Context, server_name: str, params: Mapping) -> None:
    for registration in params["registrations"]:
        method = registration["method"]
        options = registration.get("registerOptions")
        if method == DID_CHANGE_WATCHED_FILES:
            watchers = (options or {}).get("watchers", [])
            key = (server_name, registration.get("id", ""), None)
            ctx.pending_file_watchers.setdefault(key, []).extend(watchers)
        elif method == DID_CHANGE_WORKSPACE_FOLDERS:
            # Only one root path is supported, so this is never sent anyway.
            continue
        elif method == SEMANTIC_TOKENS_REGISTRATION:
            if options is None:
                log.warning("semantic tokens registration without options")
                continue
            capabilities = ctx.language_servers[server_name].capabilities
            if capabilities is None:
                raise RuntimeError(f"{server_name} server registered capabilities before init")
            capabilities["semanticTokensProvider"] = {
                **options,
                "documentSelector": None,
                "id": registration.get("id"),
            }
        else:
            log.warning("Unsupported registration: %s", method)


def _workspace_folders(ctx: Context, server_name: str) -> list:
    root = ctx.language_servers[server_name].root_path
    return [{"uri": Path(root).as_uri(), "name": root}]


def dispatch_server_request(ctx: Context, server_name: str, request: Mapping) -> None:
    """Answer a request a language server sent to the client."""
    method = request["method"]
    params = request.get("params") or {}
    result: Any = None
    error: Optional[dict] = None
    if method == REGISTER_CAPABILITY:
        _register_capabilities(ctx, server_name, params)
    elif method == WORKSPACE_FOLDERS:
        result = _workspace_folders(ctx, server_name)
    else:
        log.warning("Unsupported method: %s", method)
        error = {"code": METHOD_NOT_FOUND, "message": "Method not found"}
    ctx.reply(server_name, request.get("id"), result, error)


def dispatch_server_notification(
    ctx: Context,
    meta: EditorMeta,
    server_name: str,
    method: str,
    params: Any,
    handlers: Optional[Mapping[str, NotificationHandler]] = None,
) -> bool:
    """Handle a server notification; return whether anything handled it.

    ``handlers`` maps further methods to ``handler(ctx, meta, server_name, params)``.
    """
    if method == EXIT:
        log.debug("%s language server exited", server_name)
        return True
    if method == LOG_MESSAGE:
        message = params["message"]
        ctx.exec(
            meta,
            f"lsp-show-message-log {_editor_quote(server_name)} {_editor_quote(message)}",
        )
        return True
    if method == TELEMETRY_EVENT:
        log.debug("%r", params)
        return True
    handler = (handlers or {}).get(method)
    if handler is None:
        log.warning("Unsupported method: %s", method)
        return False
    handler(ctx, meta, server_name, params)
    return True