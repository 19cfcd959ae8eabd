"""The LSP initialize handshake: what the client offers and what it keeps."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Callable, Optional

from kaklsp.context import Context, EditorMeta, OffsetEncoding, ServerSettings

log = logging.getLogger(__name__)

CLIENT_NAME = "kakoune-lsp"
CLIENT_VERSION = "0.1.0"
INITIALIZE = "initialize"
INITIALIZED = "initialized"

_SYMBOL_KINDS = list(range(1, 27))
_COMPLETION_ITEM_KINDS = list(range(1, 26))
_CODE_ACTION_KINDS = [
    "quickfix",
    "refactor",
    "refactor.extract",
    "refactor.inline",
    "refactor.rewrite",
    "source",
    "source.fixAll",
    "source.organizeImports",
]
_RUST_EXPERIMENTAL = {
    "hoverActions": True,
    "commands": {"commands": ["rust-analyzer.runSingle"]},
}


def _setting(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an object, falling back to ``default``."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _prune(value: Any) -> Any:
    """Drop keys whose value is None, at every level."""
    if isinstance(value, dict):
        return {k: _prune(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def _no_dynamic() -> dict:
    return {"dynamicRegistration": False}


def _goto() -> dict:
    return {"dynamicRegistration": False, "linkSupport": False}


def _encodings(preferred: Optional[OffsetEncoding]) -> list[str]:
    if preferred is OffsetEncoding.UTF16:
        return ["utf-16", "utf-8"]
    return ["utf-8", "utf-16"]


def _semantic_token_legend(config: Any) -> tuple[list[str], list[str]]:
    faces = _setting(_setting(config, "semantic_tokens"), "faces", []) or []
    token_types = dict.fromkeys(_setting(face, "token") for face in faces)
    modifiers = dict.fromkeys(
        modifier for face in faces for modifier in (_setting(face, "modifiers", []) or [])
    )
    return list(token_types), list(modifiers)


def _experimental(ctx: Context, meta: EditorMeta, server_name: str) -> Any:
    servers = _setting(ctx.config, "language_server", {}) or {}
    server_config = _setting(servers, server_name)
    configured = _setting(server_config, "experimental")
    if configured is not None:
        return configured
    if meta.filetype == "rust":
        return dict(_RUST_EXPERIMENTAL)
    return None


def build_initialize_params(
    ctx: Context,
    meta: EditorMeta,
    server_name: str,
    server: ServerSettings,
    initialization_options: Any,
    process_id: int,
) -> dict:
    """The ``initialize`` request parameters offered to one server.

    Raises ValueError if the server's root path is not absolute.
    """
    root_uri = Path(server.root_path).as_uri()
    config = ctx.config
    symbol_kind = {"valueSet": list(_SYMBOL_KINDS)}
    token_types, token_modifiers = _semantic_token_legend(config)
    encodings = _encodings(server.preferred_offset_encoding)
    file_watch = bool(_setting(config, "file_watch_support", False))

    workspace = {
        "applyEdit": True,
        "workspaceEdit": {
            "documentChanges": True,
            "resourceOperations": ["create", "delete", "rename"],
            "failureHandling": "abort",
            "normalizesLineEndings": False,
            "changeAnnotationSupport": {},
        },
        "didChangeConfiguration": _no_dynamic(),
        "didChangeWatchedFiles": (
            {"dynamicRegistration": True, "relativePatternSupport": True} if file_watch else None
        ),
        "symbol": {"dynamicRegistration": False, "symbolKind": symbol_kind},
        "executeCommand": _no_dynamic(),
        "workspaceFolders": True,
        "configuration": True,
        "codeLens": {},
        "inlayHint": {"refreshSupport": False},
    }

    text_document = {
        "synchronization": {
            "dynamicRegistration": False,
            "willSave": False,
            "willSaveWaitUntil": False,
            "didSave": True,
        },
        "completion": {
            "dynamicRegistration": False,
            "completionItem": {
                "snippetSupport": bool(_setting(config, "snippet_support", False)),
                "commitCharactersSupport": False,
                "documentationFormat": ["markdown", "plaintext"],
                "deprecatedSupport": False,
                "preselectSupport": False,
                "resolveSupport": {
                    "properties": ["additionalTextEdits", "detail", "documentation"]
                },
            },
            "completionItemKind": {"valueSet": list(_COMPLETION_ITEM_KINDS)},
            "contextSupport": False,
        },
        "hover": {"dynamicRegistration": False, "contentFormat": ["markdown", "plaintext"]},
        "signatureHelp": {
            "dynamicRegistration": False,
            "signatureInformation": {
                "documentationFormat": ["plaintext"],
                "parameterInformation": {"labelOffsetSupport": False},
            },
            "contextSupport": False,
        },
        "references": _no_dynamic(),
        "documentHighlight": _no_dynamic(),
        "documentSymbol": {
            "dynamicRegistration": False,
            "symbolKind": symbol_kind,
            "hierarchicalDocumentSymbolSupport": True,
        },
        "formatting": _no_dynamic(),
        "rangeFormatting": _no_dynamic(),
        "onTypeFormatting": _no_dynamic(),
        "declaration": _goto(),
        "definition": _goto(),
        "typeDefinition": _goto(),
        "implementation": _goto(),
        "codeAction": {
            "dynamicRegistration": False,
            "codeActionLiteralSupport": {
                "codeActionKind": {"valueSet": list(_CODE_ACTION_KINDS)}
            },
            "isPreferredSupport": False,
            "resolveSupport": {"properties": ["edit"]},
        },
        "codeLens": _no_dynamic(),
        "documentLink": {"dynamicRegistration": False, "tooltipSupport": False},
        "colorProvider": _no_dynamic(),
        "rename": {"dynamicRegistration": False, "prepareSupport": False},
        "publishDiagnostics": {"relatedInformation": True},
        "selectionRange": {},
        "semanticTokens": {
            "dynamicRegistration": True,
            "requests": {"range": False, "full": True},
            "tokenTypes": token_types,
            "tokenModifiers": token_modifiers,
            "formats": ["relative"],
            "serverCancelSupport": True,
        },
        "callHierarchy": _no_dynamic(),
        "inlayHint": {"dynamicRegistration": False},
    }

    capabilities = {
        "workspace": workspace,
        "textDocument": text_document,
        "window": {
            "workDoneProgress": True,
            "showMessage": {"messageActionItem": {"additionalPropertiesSupport": True}},
        },
        "general": {
            "regularExpressions": {"engine": "Rust regex"},
            "markdown": {"parser": CLIENT_NAME, "version": CLIENT_VERSION},
            "positionEncodings": list(encodings),
        },
        "offsetEncoding": list(encodings),
        "experimental": _experimental(ctx, meta, server_name),
    }

    params = {
        "capabilities": capabilities,
        "initializationOptions": initialization_options,
        "processId": process_id,
        "rootUri": root_uri,
        "rootPath": server.root_path,
        "trace": "off",
        "workspaceFolders": [{"uri": root_uri, "name": server.root_path}],
        "clientInfo": {"name": CLIENT_NAME, "version": CLIENT_VERSION},
    }
    return _prune(params)


def negotiated_offset_encoding(result: Mapping) -> OffsetEncoding:
    """The offset encoding a server chose in its ``initialize`` result."""
    capabilities = result.get("capabilities") or {}
    encoding = capabilities.get("positionEncoding") or result.get("offsetEncoding")
    if encoding is None:
        return OffsetEncoding.UTF16
    if encoding == "utf-8":
        return OffsetEncoding.UTF8
    if encoding == "utf-16":
        return OffsetEncoding.UTF16
    log.error("Language server sent unsupported offset encoding: %s", encoding)
    return OffsetEncoding.UTF16


def initialize(
    meta: EditorMeta,
    ctx: Context,
    initialization_options: Optional[Sequence] = None,
    on_initialized: Optional[Callable[[Context], None]] = None,
) -> None:
    """Send ``initialize`` to every server and record what each one answers.

    ``initialization_options`` holds one entry per server, in the context's
    server order. ``on_initialized(ctx)`` runs once all servers answered.
    """
    names = list(ctx.language_servers)
    options = list(initialization_options) if initialization_options is not None else []
    process_id = os.getpid()
    params = {
        name: [
            build_initialize_params(
                ctx,
                meta,
                name,
                ctx.language_servers[name],
                options[index] if index < len(options) else None,
                process_id,
            )
        ]
        for index, name in enumerate(names)
    }

    def on_results(ctx: Context, _meta: EditorMeta, results: list) -> None:
        by_server = dict(results)
        for server_name in list(ctx.language_servers):
            result = by_server[server_name]
            server = ctx.language_servers.get(server_name)
            if server is None:
                continue
            server.offset_encoding = negotiated_offset_encoding(result)
            if (
                server.preferred_offset_encoding is OffsetEncoding.UTF8
                and server.offset_encoding is OffsetEncoding.UTF16
            ):
                log.warning(
                    "Requested offset encoding utf-8 is not supported by %s server, "
                    "falling back to utf-16",
                    server_name,
                )
            server.capabilities = dict(result.get("capabilities") or {})
            ctx.notify(server_name, INITIALIZED, {})
        if on_initialized is not None:
            on_initialized(ctx)

    ctx.call(meta, INITIALIZE, params, on_results)