import json

from kaklsp.code_lens import execute_command_editor_command, perform_code_lens, sort_lenses
from kaklsp.context import Context, EditorMeta, EditorRequest, ServerSettings


def make_ctx():
    to_editor = []
    servers = {"rust": ServerSettings(root_path="/project", tx=lambda message: None)}
    initial = EditorRequest(EditorMeta(session="s"), "initialize")
    return Context("rust", servers, initial, to_editor.append), to_editor


def unquote(text):
    assert text.startswith("'") and text.endswith("'")
    return text[1:-1].replace("''", "'")


def split_command(text):
    name, cmd, args = text.split(" ", 2)
    return name, unquote(cmd), json.loads(json.loads(unquote(args)))


def lens(start, end, title=None):
    result = {
        "range": {
            "start": {"line": start, "character": 0},
            "end": {"line": end, "character": 0},
        }
    }
    if title is not None:
        result["command"] = {"title": title, "command": "run", "arguments": [{"k": title}]}
    return result


def test_execute_command_round_trips_arguments():
    command = {"title": "Run", "command": "run", "arguments": ["a", {"b": [1, "it's"]}]}
    name, cmd, args = split_command(execute_command_editor_command(command, False))
    assert name == "lsp-execute-command"
    assert cmd == "run"
    assert args == command["arguments"]


def test_execute_command_sync_and_missing_arguments():
    name, cmd, args = split_command(
        execute_command_editor_command({"title": "x", "command": "it's"}, True)
    )
    assert name == "lsp-execute-command-sync"
    assert cmd == "it's"
    assert args is None


def test_execute_command_quotes_single_quotes():
    text = execute_command_editor_command({"title": "x", "command": "it's"}, False)
    assert text.split(" ")[1] == "'it''s'"


def test_perform_code_lens_skips_unresolved():
    ctx, to_editor = make_ctx()
    meta = EditorMeta(session="s", client="main")
    perform_code_lens(meta, [("rust", lens(0, 0, "Run test")), ("rust", lens(1, 1))], ctx)
    assert len(to_editor) == 1
    command = to_editor[0].command
    assert command.startswith("lsp-perform-code-lens 'Run test' ")
    assert command.count("lsp-execute-command") == 1
    assert to_editor[0].meta is meta


def test_perform_code_lens_with_no_lenses():
    ctx, to_editor = make_ctx()
    perform_code_lens(EditorMeta(session="s"), [], ctx)
    assert to_editor[0].command == "lsp-perform-code-lens "


def test_sort_lenses_by_span_is_stable():
    lenses = [
        ("a", lens(0, 5, "wide")),
        ("a", lens(2, 2, "first")),
        ("b", lens(3, 4, "mid")),
        ("b", lens(7, 7, "second")),
    ]
    titles = [entry[1]["command"]["title"] for entry in sort_lenses(lenses)]
    assert titles == ["first", "second", "mid", "wide"]
    assert len(lenses) == 4 and lenses[0][1]["command"]["title"] == "wide"