"""Routing of editor requests: parking, ordering by buffer version, didOpen."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from kaklsp.context import Context, EditorMeta, EditorRequest

log = logging.getLogger(__name__)

DID_OPEN = "textDocument/didOpen"
DID_CHANGE = "textDocument/didChange"
DID_CLOSE = "textDocument/didClose"
DID_SAVE = "textDocument/didSave"
DID_CHANGE_CONFIGURATION = "workspace/didChangeConfiguration"
EXIT = "exit"
WORK_DONE_PROGRESS_CANCEL = "window/workDoneProgress/cancel"
RESOLVE_COMPLETION_ITEM = "completionItem/resolve"

SCRATCH_BUFFER_ERROR = "lsp-show-error 'unsupported scratch buffer'"

_TEXT_SYNC_NOTIFICATIONS = frozenset({DID_OPEN, DID_CHANGE, DID_CLOSE, DID_SAVE})
_NOTIFICATIONS = _TEXT_SYNC_NOTIFICATIONS | {
    DID_CHANGE_CONFIGURATION,
    EXIT,
    WORK_DONE_PROGRESS_CANCEL,
}
_VERSION_BUMPS = frozenset({DID_OPEN, DID_CHANGE})

Dispatch = Callable[[Context, EditorRequest], None]
DidOpen = Callable[[Context, EditorMeta, dict], None]


def handle_editor_request(ctx: Context, request: EditorRequest, dispatch: Dispatch) -> None:
    """Accept a request from the editor.

    Requests from scratch buffers are refused; requests that arrive before
    every server is initialized are parked until initialization completes.
    """
    meta = request.meta
    if not meta.buffile.startswith("/"):
        log.debug("Unsupported scratch buffer, ignoring request from buffer '%s'", meta.buffile)
        ctx.exec(meta, "nop" if meta.hook else SCRATCH_BUFFER_ERROR)
        return

    parked = [name for name, server in ctx.language_servers.items() if server.capabilities is None]
    if not parked:
        dispatch_incoming_editor_request(ctx, request, dispatch)
        return

    servers = ", ".join(parked)
    log.debug("Language servers %s are still not initialized, parking request", servers)
    if request.method not in _TEXT_SYNC_NOTIFICATIONS and not meta.hook:
        ctx.exec(
            meta,
            f"lsp-show-error 'language servers {servers} are still not initialized, "
            "parking request'",
        )
    ctx.pending_requests.append(request)


def _document_version(ctx: Context, buffile: str) -> int:
    document = ctx.documents.get(buffile)
    return document.version if document is not None else 0


def dispatch_incoming_editor_request(
    ctx: Context, request: EditorRequest, dispatch: Dispatch
) -> None:
    """Dispatch a request, or hold it until the buffer reaches its version.

    After a didOpen or didChange, held requests whose buffer version has been
    reached are dispatched in the order they arrived.
    """
    meta = request.meta
    method = request.method
    document_version = _document_version(ctx, meta.buffile)
    if document_version > meta.version:
        # Kept anyway: at least completionItem/resolve is still useful.
        log.debug(
            "incoming request %s is stale, version %s but I already have %s",
            method,
            meta.version,
            document_version,
        )
    if (
        meta.fifo is None
        and meta.buffile
        and document_version < meta.version
        and method not in _NOTIFICATIONS
        # InsertIdle does not fire while the completion pager is shown.
        and method != RESOLVE_COMPLETION_ITEM
    ):
        ctx.pending_requests.append(request)
        return

    dispatch(ctx, request)
    if method not in _VERSION_BUMPS:
        return

    waiting, ctx.pending_requests = ctx.pending_requests, []
    still_waiting = []
    for pending in waiting:
        document = ctx.documents.get(pending.meta.buffile)
        if document is None or document.version < pending.meta.version:
            still_waiting.append(pending)
            continue
        log.info(
            "dispatching pending request %s because we have received matching version "
            "in didChange",
            pending.method,
        )
        if document.version > pending.meta.version:
            log.debug(
                "pending request %s is stale, version %s but I already have %s",
                pending.method,
                pending.meta.version,
                document.version,
            )
        dispatch(ctx, pending)
    if ctx.pending_requests:
        raise RuntimeError("pending requests were added while dispatching pending requests")
    ctx.pending_requests = still_waiting


def dispatch_pending_editor_requests(ctx: Context, dispatch: Dispatch) -> None:
    """Dispatch every parked request, in the order they were parked."""
    requests, ctx.pending_requests = ctx.pending_requests, []
    for request in requests:
        dispatch(ctx, request)


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def ensure_did_open(
    ctx: Context,
    request: EditorRequest,
    did_open: DidOpen,
    read_document: Optional[Callable[[str], str]] = None,
) -> bool:
    """Send didOpen for the request's buffer if the servers have not seen it.

    A didChange carries the buffer content itself; otherwise the file is read
    from disk. Returns whether didOpen was sent.
    """
    buffile = request.meta.buffile
    if not buffile or buffile in ctx.documents:
        return False
    if request.method == DID_CHANGE:
        did_open(ctx, request.meta, request.params)
        return True
    reader = read_document if read_document is not None else _read_text
    try:
        draft = reader(buffile)
    except (OSError, UnicodeDecodeError) as err:
        log.error("Failed to read file %s to simulate textDocument/didOpen: %s", buffile, err)
        return False
    did_open(ctx, request.meta, {"draft": draft})
    return True