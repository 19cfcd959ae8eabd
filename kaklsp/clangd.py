"""clangd extension: switching between a source file and its header."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from kaklsp.context import Context, EditorMeta

SWITCH_SOURCE_HEADER = "textDocument/switchSourceHeader"


def _editor_quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _uri_to_path(uri: str) -> str:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        raise ValueError(f"not a file URI: {uri}")
    return url2pathname(parsed.path)


def switch_source_header(meta: EditorMeta, ctx: Context) -> None:
    """Ask the servers for the buffer's counterpart and open the first one found."""
    uri = Path(meta.buffile).as_uri()
    params = {server_name: [{"uri": uri}] for server_name in ctx.language_servers}

    def on_results(ctx: Context, meta: EditorMeta, results: list) -> None:
        target = next((result for _, result in results if result is not None), None)
        if target is None:
            return
        command = (
            "evaluate-commands -try-client %opt{jumpclient} -verbatim -- edit -existing "
            + _editor_quote(_uri_to_path(target))
        )
        ctx.exec(meta, command)

    ctx.call(meta, SWITCH_SOURCE_HEADER, params, on_results)