import logging

import pytest

from kaklsp.capabilities import (
    CAPABILITY_CODE_ACTIONS,
    CAPABILITY_CODE_ACTIONS_RESOLVE,
    CAPABILITY_CODE_LENS,
    CAPABILITY_DEFINITION,
    CAPABILITY_HOVER,
    attempt_server_capability,
    capabilities,
    server_has_capability,
)
from kaklsp.context import Context, EditorMeta, EditorRequest, ServerSettings


def _server(caps):
    return ServerSettings(root_path="/project", tx=lambda message: None, capabilities=caps)


def _context(servers):
    sent = []
    meta = EditorMeta(session="session")
    ctx = Context("rust", servers, EditorRequest(meta, "capabilities"), sent.append)
    return ctx, sent


def test_no_capabilities_means_nothing_supported():
    assert server_has_capability(_server(None), CAPABILITY_HOVER) is False


@pytest.mark.parametrize(
    "value, expected",
    [(True, True), (False, False), ({}, True), (None, False)],
)
def test_boolean_or_options_provider(value, expected):
    caps = {} if value is None else {"hoverProvider": value}
    assert server_has_capability(_server(caps), CAPABILITY_HOVER) is expected


def test_code_lens_only_needs_presence():
    assert server_has_capability(_server({"codeLensProvider": {}}), CAPABILITY_CODE_LENS)
    assert not server_has_capability(_server({}), CAPABILITY_CODE_LENS)


def test_code_action_resolve_requires_resolve_provider():
    simple = _server({"codeActionProvider": True})
    resolving = _server({"codeActionProvider": {"resolveProvider": True}})
    assert server_has_capability(simple, CAPABILITY_CODE_ACTIONS)
    assert not server_has_capability(simple, CAPABILITY_CODE_ACTIONS_RESOLVE)
    assert server_has_capability(resolving, CAPABILITY_CODE_ACTIONS_RESOLVE)


def test_unknown_feature_raises():
    with pytest.raises(ValueError):
        server_has_capability(_server({}), "lsp-nonexistent")


def test_attempt_warns_only_outside_hooks(caplog):
    server = _server({})
    with caplog.at_level(logging.WARNING, logger="kaklsp.capabilities"):
        assert not attempt_server_capability("ra", server, EditorMeta("s", hook=True), CAPABILITY_DEFINITION)
        assert caplog.records == []
        assert not attempt_server_capability("ra", server, EditorMeta("s"), CAPABILITY_DEFINITION)
    assert len(caplog.records) == 1
    assert "refusing to send request" in caplog.records[0].getMessage()


def test_attempt_succeeds_when_supported():
    server = _server({"definitionProvider": True})
    assert attempt_server_capability("ra", server, EditorMeta("s"), CAPABILITY_DEFINITION)


def test_capabilities_semantic_tokens_legend():
    legend = {"tokenTypes": ["type", "macro"], "tokenModifiers": ["static"]}
    ctx, sent = _context({"ra": _server({"semanticTokensProvider": {"legend": legend}})})
    capabilities(EditorMeta("session"), ctx)
    command = sent[0].command
    assert "lsp-semantic-tokens: types: [type, macro]" in command
    assert "lsp-semantic-tokens: modifiers: [static]" in command


def test_capabilities_several_servers_name_supporters():
    ctx, sent = _context(
        {"b": _server({"hoverProvider": True}), "a": _server({})}
    )
    capabilities(EditorMeta("session"), ctx)
    command = sent[0].command
    assert "language servers (a, b):" in command
    assert "lsp-diagnostics [a, b]" in command
    assert "lsp-hover [b]" in command


def test_capabilities_escapes_quotes():
    ctx, sent = _context({"it's": _server({})})
    capabilities(EditorMeta("session"), ctx)
    assert "(it''s)" in sent[0].command


def test_capabilities_before_initialization_raises():
    ctx, _ = _context({"ra": _server(None)})
    with pytest.raises(RuntimeError):
        capabilities(EditorMeta("session"), ctx)