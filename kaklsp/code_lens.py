"""Code lenses: turning them into editor commands and performing them."""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from typing import Any

from kaklsp.context import Context, EditorMeta


def _editor_quote(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, sort_keys=True)


def execute_command_editor_command(command: dict, sync: bool) -> str:
    """The editor command that runs an LSP ``Command``.

    Arguments are JSON-encoded twice so that they reach the server unchanged
    when the editor passes them back.
    """
    arguments = _to_json(command.get("arguments"))
    quoted_arguments = _editor_quote(_to_json(arguments))
    name = "lsp-execute-command-sync" if sync else "lsp-execute-command"
    return f"{name} {_editor_quote(command['command'])} {quoted_arguments}"


def perform_code_lens(
    meta: EditorMeta, lenses: Iterable[tuple[str, dict]], ctx: Context
) -> None:
    """Offer the editor the commands of the given resolved lenses."""
    choices = " ".join(
        f"{_editor_quote(lens['command']['title'])} "
        f"{_editor_quote(execute_command_editor_command(lens['command'], False))}"
        for _, lens in lenses
        if lens.get("command") is not None
    )
    ctx.exec(meta, f"lsp-perform-code-lens {choices}")


def sort_lenses(lenses: Sequence[tuple[str, dict]]) -> list[tuple[str, dict]]:
    """Lenses ordered by how many lines they span, narrowest first, stably."""

    def span(entry: tuple[str, dict]) -> int:
        lens_range = entry[1]["range"]
        return lens_range["end"]["line"] - lens_range["start"]["line"]

    return sorted(lenses, key=span)