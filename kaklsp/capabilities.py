"""Which editor commands the language servers of a session support."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Optional

from kaklsp.context import Context, EditorMeta, ServerSettings

log = logging.getLogger(__name__)

CAPABILITY_CALL_HIERARCHY = "lsp-incoming-calls, lsp-outgoing-calls"
CAPABILITY_CODE_ACTIONS = "lsp-code-actions"
CAPABILITY_CODE_ACTIONS_RESOLVE = "lsp-code-actions-resolve"
CAPABILITY_CODE_LENS = "lsp-code-lens"
CAPABILITY_COMPLETION = "lsp-completion (hooked on InsertIdle)"
CAPABILITY_DEFINITION = "lsp-definition (mapped to `gd` by default)"
CAPABILITY_DOCUMENT_HIGHLIGHT = "lsp-highlight-references"
CAPABILITY_DOCUMENT_SYMBOL = "lsp-document-symbol"
CAPABILITY_EXECUTE_COMMANDS = "lsp-execute-commands"
CAPABILITY_FORMATTING = "lsp-formatting"
CAPABILITY_HOVER = "lsp-hover"
CAPABILITY_IMPLEMENTATION = "lsp-implementation"
CAPABILITY_INLAY_HINTS = "lsp-inlay-hints"
CAPABILITY_RANGE_FORMATTING = "lsp-range-formatting"
CAPABILITY_REFERENCES = "lsp-references (mapped to `gr` by default)"
CAPABILITY_RENAME = "lsp-rename"
CAPABILITY_SELECTION_RANGE = "lsp-selection-range"
CAPABILITY_SEMANTIC_TOKENS = "lsp-semantic-tokens"
CAPABILITY_SIGNATURE_HELP = "lsp-signature-help"
CAPABILITY_TYPE_DEFINITION = "lsp-type-definition"
CAPABILITY_WORKSPACE_SYMBOL = "lsp-workspace-symbol"

_DOCUMENT_SYMBOL_FEATURES = "lsp-document-symbol, lsp-object, lsp-goto-document-symbol"
_DIAGNOSTICS_FEATURE = "lsp-diagnostics"


def _flag_or_options(value: Any) -> bool:
    """A provider given as a boolean or as an options object."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return True


def _present(value: Any) -> bool:
    return value is not None


def _resolve_provider(value: Any) -> bool:
    return isinstance(value, dict) and value.get("resolveProvider") is True


_CHECKS: dict[str, tuple[str, Callable[[Any], bool]]] = {
    CAPABILITY_CODE_ACTIONS: ("codeActionProvider", _flag_or_options),
    CAPABILITY_CODE_ACTIONS_RESOLVE: ("codeActionProvider", _resolve_provider),
    CAPABILITY_CODE_LENS: ("codeLensProvider", _present),
    CAPABILITY_CALL_HIERARCHY: ("callHierarchyProvider", _flag_or_options),
    CAPABILITY_COMPLETION: ("completionProvider", _present),
    CAPABILITY_SIGNATURE_HELP: ("signatureHelpProvider", _present),
    CAPABILITY_DEFINITION: ("definitionProvider", _flag_or_options),
    CAPABILITY_DOCUMENT_HIGHLIGHT: ("documentHighlightProvider", _flag_or_options),
    CAPABILITY_DOCUMENT_SYMBOL: ("documentSymbolProvider", _flag_or_options),
    CAPABILITY_FORMATTING: ("documentFormattingProvider", _flag_or_options),
    CAPABILITY_HOVER: ("hoverProvider", _flag_or_options),
    CAPABILITY_IMPLEMENTATION: ("implementationProvider", _flag_or_options),
    CAPABILITY_INLAY_HINTS: ("inlayHintProvider", _flag_or_options),
    CAPABILITY_RANGE_FORMATTING: ("documentRangeFormattingProvider", _flag_or_options),
    CAPABILITY_REFERENCES: ("referencesProvider", _flag_or_options),
    CAPABILITY_RENAME: ("renameProvider", _flag_or_options),
    CAPABILITY_SELECTION_RANGE: ("selectionRangeProvider", _flag_or_options),
    CAPABILITY_SEMANTIC_TOKENS: ("semanticTokensProvider", _present),
    CAPABILITY_EXECUTE_COMMANDS: ("executeCommandProvider", _present),
    CAPABILITY_TYPE_DEFINITION: ("typeDefinitionProvider", _flag_or_options),
    CAPABILITY_WORKSPACE_SYMBOL: ("workspaceSymbolProvider", _flag_or_options),
}


def _editor_escape(text: str) -> str:
    return text.replace("'", "''")


def server_has_capability(server: ServerSettings, feature: str) -> bool:
    """Whether the server advertised support for ``feature``.

    Raises ValueError for a feature name that is not known.
    """
    try:
        key, check = _CHECKS[feature]
    except KeyError:
        raise ValueError(f"BUG: missing case: {feature}") from None
    capabilities: Optional[dict] = server.capabilities
    if capabilities is None:
        return False
    return check(capabilities.get(key))


def attempt_server_capability(
    server_name: str, server: ServerSettings, meta: EditorMeta, feature: str
) -> bool:
    """Like server_has_capability, but warn when a user-issued request is refused."""
    if server_has_capability(server, feature):
        return True
    if not meta.hook:
        log.warning("%s server does not support %s, refusing to send request", server_name, feature)
    return False


_PROBED_BEFORE_SYMBOLS = (
    CAPABILITY_SELECTION_RANGE,
    CAPABILITY_HOVER,
    CAPABILITY_COMPLETION,
    CAPABILITY_SIGNATURE_HELP,
    CAPABILITY_DEFINITION,
    CAPABILITY_TYPE_DEFINITION,
    CAPABILITY_IMPLEMENTATION,
    CAPABILITY_REFERENCES,
    CAPABILITY_DOCUMENT_HIGHLIGHT,
)

_PROBED_AFTER_SYMBOLS = (
    CAPABILITY_WORKSPACE_SYMBOL,
    CAPABILITY_FORMATTING,
    CAPABILITY_RANGE_FORMATTING,
    CAPABILITY_RENAME,
    CAPABILITY_CODE_ACTIONS,
    CAPABILITY_CODE_ACTIONS_RESOLVE,
    CAPABILITY_CODE_LENS,
    CAPABILITY_CALL_HIERARCHY,
)


def _server_features(server: ServerSettings) -> list[str]:
    features = [f for f in _PROBED_BEFORE_SYMBOLS if server_has_capability(server, f)]
    if server_has_capability(server, CAPABILITY_DOCUMENT_SYMBOL):
        features.append(_DOCUMENT_SYMBOL_FEATURES)
    features.extend(f for f in _PROBED_AFTER_SYMBOLS if server_has_capability(server, f))
    features.append(_DIAGNOSTICS_FEATURE)
    if server_has_capability(server, CAPABILITY_INLAY_HINTS):
        features.append(CAPABILITY_INLAY_HINTS)

    caps = server.capabilities
    if caps is None:
        raise RuntimeError("capabilities requested before the server was initialized")

    execute = caps.get("executeCommandProvider")
    if execute is not None:
        commands = ", ".join(execute.get("commands", []))
        features.append(f"lsp-execute-command: commands: [{commands}]")

    semantic = caps.get("semanticTokensProvider")
    if semantic is not None:
        legend = semantic.get("legend", {})
        types = ", ".join(legend.get("tokenTypes", []))
        modifiers = ", ".join(legend.get("tokenModifiers", []))
        features.append(f"lsp-semantic-tokens: types: [{types}]")
        features.append(f"lsp-semantic-tokens: modifiers: [{modifiers}]")
    return features


def capabilities(meta: EditorMeta, ctx: Context) -> None:
    """Show the editor which LSP commands the session's servers support."""
    features: dict[str, list[str]] = {}
    for server_name, server in ctx.language_servers.items():
        for feature in _server_features(server):
            features.setdefault(feature, []).append(server_name)

    several = len(ctx.language_servers) > 1
    lines = [
        f"{feature} [{', '.join(names)}]" if several else feature
        for feature, names in sorted(features.items())
    ]
    servers = _editor_escape(", ".join(ctx.language_servers))
    body = _editor_escape("\n".join(lines))
    command = f"info 'LSP commands supported by language servers ({servers}):\n\n{body}'"
    ctx.exec(meta, command)