"""Bookkeeping of diagnostics and the gutter flags shown for them."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import NamedTuple, Optional

from kaklsp.context import Context

log = logging.getLogger(__name__)

CODE_LENS_SIGN = "%opt[lsp_code_lens_sign]"


class DiagnosticSeverity(enum.IntEnum):
    """LSP diagnostic severities; smaller means more severe."""

    ERROR = 1
    WARNING = 2
    INFORMATION = 3
    HINT = 4


_FACES = {
    DiagnosticSeverity.ERROR: "DiagnosticError",
    DiagnosticSeverity.HINT: "DiagnosticHint",
    DiagnosticSeverity.INFORMATION: "DiagnosticInfo",
    DiagnosticSeverity.WARNING: "DiagnosticWarning",
}

_LABELS = {
    DiagnosticSeverity.ERROR: "error",
    DiagnosticSeverity.HINT: "hint",
    DiagnosticSeverity.INFORMATION: "info",
    DiagnosticSeverity.WARNING: "warning",
}

_LINE_FLAGS = {
    DiagnosticSeverity.ERROR: "{LineFlagError}%opt[lsp_diagnostic_line_error_sign]",
    DiagnosticSeverity.HINT: "{LineFlagHint}%opt[lsp_diagnostic_line_hint_sign]",
    DiagnosticSeverity.INFORMATION: "{LineFlagInfo}%opt[lsp_diagnostic_line_info_sign]",
    DiagnosticSeverity.WARNING: "{LineFlagWarning}%opt[lsp_diagnostic_line_warning_sign]",
}


class LineFlags(NamedTuple):
    """Gutter flags of a buffer and its diagnostic counts by severity."""

    line_flags: str
    error_count: int
    hint_count: int
    info_count: int
    warning_count: int


def _known(severity: Optional[int]) -> Optional[DiagnosticSeverity]:
    """The severity as an enum member; a missing one counts as a warning."""
    if severity is None:
        return DiagnosticSeverity.WARNING
    try:
        return DiagnosticSeverity(severity)
    except ValueError:
        log.warning("Unexpected DiagnosticSeverity: %r", severity)
        return None


def severity_face(severity: Optional[int]) -> str:
    """The face used to highlight a diagnostic of this severity."""
    known = _known(severity)
    return _FACES[known if known is not None else DiagnosticSeverity.WARNING]


def severity_label(severity: Optional[int]) -> str:
    """The word used for this severity in the diagnostics listing."""
    known = _known(severity)
    return _LABELS[known if known is not None else DiagnosticSeverity.WARNING]


def store_diagnostics(
    ctx: Context, server_name: str, buffile: str, diagnostics: Iterable[dict]
) -> list:
    """Replace one server's diagnostics for a buffer, keeping the other servers'.

    Returns the buffer's full list of ``(server_name, diagnostic)`` pairs.
    """
    kept = [
        (name, diagnostic)
        for name, diagnostic in ctx.diagnostics.pop(buffile, [])
        if name != server_name
    ]
    kept.extend((server_name, diagnostic) for diagnostic in diagnostics)
    ctx.diagnostics[buffile] = kept
    return kept


def _merge_by_line(
    left: Sequence[tuple[int, str]], right: Sequence[tuple[int, str]]
) -> Iterator[tuple[int, str]]:
    """Merge two line-tagged sequences; where lines meet, the left entry wins."""
    left_items, right_items = iter(left), iter(right)
    lhs = next(left_items, None)
    rhs = next(right_items, None)
    while lhs is not None and rhs is not None:
        if lhs[0] < rhs[0]:
            yield lhs
            lhs = next(left_items, None)
        elif lhs[0] > rhs[0]:
            yield rhs
            rhs = next(right_items, None)
        else:
            yield lhs
            lhs = next(left_items, None)
            rhs = next(right_items, None)
    if lhs is not None:
        yield lhs
        yield from left_items
    if rhs is not None:
        yield rhs
        yield from right_items


def gather_line_flags(ctx: Context, buffile: str) -> LineFlags:
    """Gutter flags for a buffer's diagnostics and code lenses, with counts."""
    counts = {severity: 0 for severity in DiagnosticSeverity}
    diagnostic_flags = []
    for _, diagnostic in ctx.diagnostics.get(buffile, []):
        severity = _known(diagnostic.get("severity"))
        if severity is None:
            label = ""
        else:
            counts[severity] += 1
            label = _LINE_FLAGS[severity]
        diagnostic_flags.append((diagnostic["range"]["start"]["line"], label))

    lens_flags = [
        (lens["range"]["start"]["line"], CODE_LENS_SIGN)
        for _, lens in ctx.code_lenses.get(buffile, [])
    ]

    line_flags = " ".join(
        f"'{line + 1}|{label}'" for line, label in _merge_by_line(diagnostic_flags, lens_flags)
    )
    return LineFlags(
        line_flags,
        counts[DiagnosticSeverity.ERROR],
        counts[DiagnosticSeverity.HINT],
        counts[DiagnosticSeverity.INFORMATION],
        counts[DiagnosticSeverity.WARNING],
    )