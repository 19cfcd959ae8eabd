# kaklsp

The core of a Language Server Protocol client for the Kakoune editor. It keeps
the state of an editor session, sends requests to language servers and
collects their answers in batches, checks what each server can do, and turns
results into Kakoune commands.

Messages are plain Python dicts in JSON-RPC shape. Sending and receiving them
is left to the caller: each server is given as a callable that takes one
outgoing message, and the editor as a callable that takes one
`EditorResponse`.

## Modules

- `kaklsp.context`: the session state.
  - `Context` holds open documents (`Document`), diagnostics, code lenses,
    parked editor requests and the session's language servers
    (`ServerSettings`, kept sorted by name).
  - `Context.call(meta, method, params, callback)` sends a request to several
    servers and calls `callback(ctx, meta, results)` once all have answered.
    `params` is a list sent to every server, or a mapping from server name to
    that server's list of parameters.
  - When a third request of the same method, buffer and client is sent to a
    server while two are still in flight, the younger of those two is
    canceled with `Context.cancel`, which marks it and sends
    `$/cancelRequest`. It raises `ValueError` for a non-numeric id.
  - `Context.reply` answers a server's request, with either a result or an
    error. `Context.notify` sends a notification.
  - `Context.exec(meta, command)` writes the command to `meta.fifo` or
    `meta.command_fifo` when one is set. Otherwise it passes an
    `EditorResponse` to the editor callable.
  - `Context.meta_for_buffer`, `Context.meta_for_buffer_version` and
    `meta_for_session` build `EditorMeta` values.
    `remove_outstanding_request` clears the in-flight bookkeeping for an
    answered request.
  - `OffsetEncoding`, `EditorRequest` and `OutstandingRequests` are the
    remaining data types.
- `kaklsp.capabilities`:
  - `server_has_capability(server, feature)` checks a server's advertised
    capabilities for one of the `CAPABILITY_*` features. It raises
    `ValueError` for an unknown feature name.
  - `attempt_server_capability` does the same check, and logs a warning when
    a request that did not come from a hook is refused.
  - `capabilities(meta, ctx)` shows the editor an `info` box listing the
    features each server offers.
- `kaklsp.initialization`:
  - `build_initialize_params` builds the `initialize` parameters offered to a
    server.
  - `negotiated_offset_encoding` reads the position encoding the server
    chose. The default is UTF-16.
  - `initialize(meta, ctx, initialization_options, on_initialized)` sends
    `initialize` to every server. It then stores each server's capabilities
    and encoding, sends `initialized`, and calls `on_initialized(ctx)`.
- `kaklsp.server_dispatch`:
  - `handle_server_response` matches a response to its waiting request and
    completes the batch. A server that fails is dropped from the batch, so
    the others are still handled. If no server is left, the error is shown
    in the editor.
  - `dispatch_server_request` handles `client/registerCapability` and
    `workspace/workspaceFolders`. Any other method gets a "method not found"
    error reply.
  - `dispatch_server_notification` handles `exit`, `window/logMessage` and
    `telemetry/event`. Other methods go to an optional mapping of handlers.
    It returns whether anything handled the notification.
- `kaklsp.editor_dispatch`:
  - `handle_editor_request` refuses requests from scratch buffers. It parks
    requests until every server is initialized.
  - `dispatch_incoming_editor_request` holds a request back until the buffer
    reaches the version the request refers to. After a `didOpen` or
    `didChange` it releases held requests whose version has arrived.
  - `dispatch_pending_editor_requests` dispatches everything parked, in the
    order it was parked.
  - `ensure_did_open` sends `didOpen` for a buffer the servers have not seen
    yet.
  - The actual handling of each request is the `dispatch(ctx, request)`
    callable you pass in.
- `kaklsp.diagnostics`:
  - `store_diagnostics` replaces one server's diagnostics for a buffer and
    keeps those of the other servers.
  - `gather_line_flags` builds the gutter flags from diagnostics and code
    lenses, and returns them as a `LineFlags` with the counts for each
    severity.
  - `severity_face` and `severity_label` name the face and the word used for
    a `DiagnosticSeverity`.
- `kaklsp.code_lens`:
  - `execute_command_editor_command` turns an LSP `Command` into an editor
    command.
  - `sort_lenses` orders lenses by how many lines they span.
  - `perform_code_lens` offers the editor the commands of resolved lenses.
- `kaklsp.clangd`: `switch_source_header` asks the servers for the buffer's
  source/header counterpart, then opens the first one returned.

## Example

```python
from kaklsp.context import Context, EditorMeta, EditorRequest, ServerSettings
from kaklsp.server_dispatch import handle_server_response

sent = []
server = ServerSettings(root_path="/project", tx=sent.append)
meta = EditorMeta(session="demo", buffile="/project/main.rs")
ctx = Context("rust", {"rust-analyzer": server}, EditorRequest(meta, "initialize"), print)

answers = []
ctx.call(meta, "textDocument/hover", [{"position": {"line": 0, "character": 0}}],
         lambda ctx, meta, results: answers.extend(results))

# sent[0] is {"jsonrpc": "2.0", "id": 0, "method": "textDocument/hover", ...}
handle_server_response(ctx, "rust-analyzer", {"id": 0, "result": {"contents": "fn main()"}})
# answers == [("rust-analyzer", {"contents": "fn main()"})]
```

## What this package does not do

- It does not talk to the editor. There is no socket listener for editor
  requests, and nothing sends commands to a running `kak` session. Commands
  go to the callable given to `Context`, or to a fifo named in `EditorMeta`.
- It does not start language server processes or read their output. There is
  no event loop and no command-line program.
- Hover, completion, goto, formatting, rename and the other editor features
  are not implemented here. `kaklsp.editor_dispatch` and
  `dispatch_server_notification` route to handlers that you supply.

## Requirements

Python 3.10 or later, and only the standard library.