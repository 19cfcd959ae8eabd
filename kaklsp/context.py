"""Per-session state shared between the editor and its language servers."""

from __future__ import annotations

import enum
import logging
import time
from collections import Counter, deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

log = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
CANCEL_REQUEST = "$/cancelRequest"

_I32_MAX = 2**31 - 1

ServerName = str
ResponsesCallback = Callable[["Context", "EditorMeta", list], None]


class OffsetEncoding(enum.Enum):
    """How character offsets in LSP positions are counted."""

    UTF8 = "utf-8"
    UTF16 = "utf-16"


@dataclass
class EditorMeta:
    """Where an editor request came from and where its answer goes."""

    session: str
    client: Optional[str] = None
    buffile: str = ""
    filetype: str = ""
    version: int = 0
    fifo: Optional[str] = None
    command_fifo: Optional[str] = None
    hook: bool = False
    server: Optional[str] = None
    word_regex: Optional[str] = None


@dataclass
class EditorRequest:
    """A request sent by the editor."""

    meta: EditorMeta
    method: str
    params: dict = field(default_factory=dict)


@dataclass
class EditorResponse:
    """A command to be evaluated by the editor."""

    meta: EditorMeta
    command: str


@dataclass
class Document:
    """Copy of the editor's timestamped buffer content."""

    version: int
    text: str


@dataclass
class ServerSettings:
    """A running language server and what is known about it.

    ``tx`` is called with each outgoing JSON-RPC message; it raises
    ``OSError`` when the server can no longer be reached.
    """

    root_path: str
    tx: Callable[[dict], None]
    offset_encoding: OffsetEncoding = OffsetEncoding.UTF16
    preferred_offset_encoding: Optional[OffsetEncoding] = None
    capabilities: Optional[dict] = None


@dataclass
class OutstandingRequests:
    """The oldest and youngest in-flight request of one kind."""

    oldest: Optional[int] = None
    youngest: Optional[int] = None


@dataclass
class _PendingResponse:
    meta: EditorMeta
    method: str
    batch_id: int
    canceled: bool = False


class Context:
    """State of one editor session talking to a set of language servers."""

    def __init__(
        self,
        language_id: str,
        language_servers: Mapping[ServerName, ServerSettings],
        initial_request: EditorRequest,
        editor_tx: Callable[[EditorResponse], None],
        config: Any = None,
    ) -> None:
        self._batch_count = 0
        self.batch_sizes: dict[int, dict[ServerName, int]] = {}
        self.batches: dict[int, tuple[list, ResponsesCallback]] = {}
        self.code_lenses: dict[str, list] = {}
        self.completion_items: list = []
        self.completion_items_timestamp = _I32_MAX
        self.completion_last_client: Optional[str] = None
        self.config = config
        self.diagnostics: dict[str, list] = {}
        self.documents: dict[str, Document] = {}
        self.dynamic_config: dict = {}
        self.editor_tx = editor_tx
        self.language_id = language_id
        self.language_servers: dict[ServerName, ServerSettings] = dict(
            sorted(language_servers.items())
        )
        self.outstanding_requests: dict[tuple, OutstandingRequests] = {}
        self.pending_requests: list[EditorRequest] = [initial_request]
        self.pending_message_requests: deque = deque()
        self.request_counter = 0
        self.response_waitlist: dict[int, _PendingResponse] = {}
        self.session = initial_request.meta.session
        self.work_done_progress: dict = {}
        self.work_done_progress_report_timestamp = time.monotonic()
        self.pending_file_watchers: dict = {}

    def call(self, meta: EditorMeta, method: str, params, callback: ResponsesCallback) -> None:
        """Send a request to language servers and collect their answers in one batch.

        ``params`` is either a list of parameter objects, sent to every server,
        or a mapping from server name to the list of parameters for that server.
        ``callback(ctx, meta, results)`` receives ``(server_name, result)`` pairs.
        """
        if isinstance(params, Mapping):
            ops = [(name, p) for name, plist in params.items() for p in plist]
        else:
            plist = list(params)
            ops = [(name, p) for name in self.language_servers for p in plist]
        self._batch_call(meta, method, ops, callback)

    def _batch_call(self, meta, method, ops, callback) -> None:
        batch_id = self._next_batch_id()
        self.batch_sizes[batch_id] = dict(Counter(name for name, _ in ops))
        self.batches[batch_id] = ([], callback)
        for server_name, params in ops:
            request_id = self._next_request_id()
            self.response_waitlist[request_id] = _PendingResponse(meta, method, batch_id)
            _add_outstanding_request(
                self, server_name, method, meta.buffile, meta.client, request_id
            )
            message = {
                "jsonrpc": JSONRPC_VERSION,
                "id": request_id,
                "method": method,
                "params": params,
            }
            self._send(server_name, message, "Failed to call language server")

    def cancel(self, server_name: ServerName, request_id) -> None:
        """Mark a request as canceled and tell the server to drop it."""
        pending = self.response_waitlist.get(request_id)
        if pending is not None:
            log.debug(
                "Canceling request to %s server %r (%s)", server_name, request_id, pending.method
            )
            pending.canceled = True
        else:
            log.error("Failed to cancel request %r to %s server", request_id, server_name)
        if not isinstance(request_id, int) or isinstance(request_id, bool):
            raise ValueError(f"expected numeric ID for {server_name} server")
        self.notify(server_name, CANCEL_REQUEST, {"id": request_id})

    def reply(self, server_name: ServerName, request_id, result=None, error=None) -> None:
        """Answer a request the server sent; ``error`` wins over ``result``."""
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id}
        if error is not None:
            message["error"] = error
        else:
            message["result"] = result
        self._send(server_name, message, f"Failed to reply to language server {server_name}")

    def notify(self, server_name: ServerName, method: str, params=None) -> None:
        """Send a notification to one server."""
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
        if params is not None:
            message["params"] = params
        self._send(
            server_name,
            message,
            f"Failed to send notification to language server {server_name}",
        )

    def exec(self, meta: EditorMeta, command: str) -> None:
        """Have the editor evaluate ``command``, through a fifo when one is waiting."""
        if meta.fifo is not None:
            fifo, which = meta.fifo, "fifo"
        elif meta.command_fifo is not None:
            fifo, which = meta.command_fifo, "kak_command_fifo"
        else:
            fifo = None
        if fifo is not None:
            log.debug("To editor `%s` via %s: %s", meta.session, which, command)
            with open(fifo, "w", encoding="utf-8") as stream:
                stream.write(command)
            return
        try:
            self.editor_tx(EditorResponse(meta, command))
        except OSError:
            log.error("Failed to send command to editor")

    def meta_for_buffer(self, client: Optional[str], buffile: str) -> Optional[EditorMeta]:
        """Metadata for an open buffer at its current version, or None if not open."""
        document = self.documents.get(buffile)
        if document is None:
            return None
        meta = meta_for_session(self.session, client)
        meta.buffile = buffile
        meta.version = document.version
        return meta

    def meta_for_buffer_version(
        self, client: Optional[str], buffile: str, version: int
    ) -> EditorMeta:
        """Metadata for a buffer at a given version."""
        meta = meta_for_session(self.session, client)
        meta.buffile = buffile
        meta.version = version
        return meta

    def _send(self, server_name: ServerName, message: dict, failure: str) -> None:
        server = self.language_servers[server_name]
        try:
            server.tx(message)
        except OSError:
            log.error("%s", failure)

    def _next_batch_id(self) -> int:
        batch_id = self._batch_count
        self._batch_count += 1
        return batch_id

    def _next_request_id(self) -> int:
        request_id = self.request_counter
        self.request_counter += 1
        return request_id


def meta_for_session(session: str, client: Optional[str]) -> EditorMeta:
    """Metadata addressing a session (and optionally a client) with no buffer."""
    return EditorMeta(session=session, client=client)


def _add_outstanding_request(ctx, server_name, method, buffile, client, request_id) -> None:
    key = (server_name, method, buffile, client)
    outstanding = ctx.outstanding_requests.get(key)
    to_cancel = None
    if outstanding is None:
        ctx.outstanding_requests[key] = OutstandingRequests(oldest=request_id)
    elif outstanding.oldest is None:
        outstanding.oldest = request_id
    else:
        to_cancel, outstanding.youngest = outstanding.youngest, request_id
    if to_cancel is not None:
        ctx.cancel(server_name, to_cancel)


def remove_outstanding_request(
    ctx: Context,
    server_name: ServerName,
    method: str,
    buffile: str,
    client: Optional[str],
    request_id,
) -> None:
    """Forget an answered request in the outstanding-request bookkeeping."""
    key = (server_name, method, buffile, client)
    outstanding = ctx.outstanding_requests.get(key)
    if outstanding is not None:
        if outstanding.youngest is not None and outstanding.youngest == request_id:
            outstanding.youngest = None
            return
        if outstanding.oldest is not None and outstanding.oldest == request_id:
            outstanding.oldest, outstanding.youngest = outstanding.youngest, None
            return
    log.error(
        "[%s] Not in outstanding requests: method %s buffile %s client %s",
        server_name,
        method,
        buffile,
        client or "",
    )