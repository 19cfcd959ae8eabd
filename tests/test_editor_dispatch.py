import pytest

from kaklsp.context import Context, Document, EditorMeta, EditorRequest, ServerSettings
from kaklsp.editor_dispatch import (
    DID_CHANGE,
    DID_OPEN,
    RESOLVE_COMPLETION_ITEM,
    SCRATCH_BUFFER_ERROR,
    dispatch_incoming_editor_request,
    dispatch_pending_editor_requests,
    ensure_did_open,
    handle_editor_request,
)

BUFFILE = "/project/main.c"


class Recorder:
    def __init__(self):
        self.seen = []

    def __call__(self, ctx, request):
        self.seen.append((request.method, request.meta.version))
        if request.method in (DID_OPEN, DID_CHANGE):
            ctx.documents[request.meta.buffile] = Document(request.meta.version, "")


def make_ctx(initialized=True):
    sent_to_editor = []
    initial = EditorRequest(EditorMeta(session="sess"), "initial")
    servers = {
        "clangd": ServerSettings(
            root_path="/project",
            tx=lambda message: None,
            capabilities={} if initialized else None,
        )
    }
    ctx = Context("c", servers, initial, sent_to_editor.append)
    ctx.pending_requests.clear()
    return ctx, sent_to_editor


def req(method, version=1, buffile=BUFFILE, hook=False, fifo=None, params=None):
    meta = EditorMeta(session="sess", buffile=buffile, version=version, hook=hook, fifo=fifo)
    return EditorRequest(meta, method, params or {})


@pytest.mark.parametrize("hook,expected", [(True, "nop"), (False, SCRATCH_BUFFER_ERROR)])
def test_scratch_buffer_refused(hook, expected):
    ctx, sent = make_ctx()
    recorder = Recorder()
    handle_editor_request(ctx, req("textDocument/hover", buffile="*scratch*", hook=hook), recorder)
    assert [r.command for r in sent] == [expected]
    assert recorder.seen == []


def test_parks_until_initialized_and_reports():
    ctx, sent = make_ctx(initialized=False)
    recorder = Recorder()
    request = req("textDocument/hover")
    handle_editor_request(ctx, request, recorder)
    assert ctx.pending_requests == [request]
    assert recorder.seen == []
    assert len(sent) == 1
    assert "clangd" in sent[0].command
    assert "parking request" in sent[0].command


@pytest.mark.parametrize("method,hook", [(DID_CHANGE, False), ("textDocument/hover", True)])
def test_parking_is_silent_for_sync_and_hooks(method, hook):
    ctx, sent = make_ctx(initialized=False)
    handle_editor_request(ctx, req(method, hook=hook), Recorder())
    assert sent == []
    assert len(ctx.pending_requests) == 1


def test_initialized_request_is_dispatched():
    ctx, sent = make_ctx()
    ctx.documents[BUFFILE] = Document(1, "")
    recorder = Recorder()
    handle_editor_request(ctx, req("textDocument/hover", version=1), recorder)
    assert recorder.seen == [("textDocument/hover", 1)]
    assert sent == []


def test_request_ahead_of_document_waits():
    ctx, _ = make_ctx()
    recorder = Recorder()
    request = req("textDocument/hover", version=3)
    dispatch_incoming_editor_request(ctx, request, recorder)
    assert recorder.seen == []
    assert ctx.pending_requests == [request]


@pytest.mark.parametrize(
    "request_",
    [
        req("textDocument/hover", version=3, fifo="/tmp/fifo"),
        req("textDocument/didSave", version=3),
        req(RESOLVE_COMPLETION_ITEM, version=3),
        req("textDocument/hover", version=3, buffile=""),
    ],
)
def test_requests_that_do_not_wait(request_):
    ctx, _ = make_ctx()
    recorder = Recorder()
    dispatch_incoming_editor_request(ctx, request_, recorder)
    assert recorder.seen == [(request_.method, 3)]
    assert ctx.pending_requests == []


def test_version_bump_releases_matching_pending_requests():
    ctx, _ = make_ctx()
    recorder = Recorder()
    hover = req("textDocument/hover", version=2)
    later = req("textDocument/definition", version=5)
    dispatch_incoming_editor_request(ctx, hover, recorder)
    dispatch_incoming_editor_request(ctx, later, recorder)
    assert recorder.seen == []

    dispatch_incoming_editor_request(ctx, req(DID_CHANGE, version=2), recorder)
    assert recorder.seen == [(DID_CHANGE, 2), ("textDocument/hover", 2)]
    assert ctx.pending_requests == [later]


def test_stale_pending_request_still_dispatched():
    ctx, _ = make_ctx()
    recorder = Recorder()
    dispatch_incoming_editor_request(ctx, req("textDocument/hover", version=2), recorder)
    dispatch_incoming_editor_request(ctx, req(DID_OPEN, version=4), recorder)
    assert recorder.seen[-1] == ("textDocument/hover", 2)
    assert ctx.pending_requests == []


def test_dispatch_pending_in_order():
    ctx, _ = make_ctx()
    recorder = Recorder()
    first, second = req("a", version=1), req("b", version=2)
    ctx.pending_requests.extend([first, second])
    dispatch_pending_editor_requests(ctx, recorder)
    assert recorder.seen == [("a", 1), ("b", 2)]
    assert ctx.pending_requests == []


def collect_did_open():
    calls = []

    def did_open(ctx, meta, params):
        calls.append((meta.buffile, params))

    return calls, did_open


def test_ensure_did_open_skips_known_document():
    ctx, _ = make_ctx()
    ctx.documents[BUFFILE] = Document(1, "")
    calls, did_open = collect_did_open()
    assert ensure_did_open(ctx, req("textDocument/hover"), did_open) is False
    assert calls == []


def test_ensure_did_open_uses_did_change_params():
    ctx, _ = make_ctx()
    calls, did_open = collect_did_open()
    params = {"draft": "int x;"}
    assert ensure_did_open(ctx, req(DID_CHANGE, params=params), did_open) is True
    assert calls == [(BUFFILE, params)]


def test_ensure_did_open_reads_file(tmp_path):
    path = tmp_path / "main.c"
    path.write_text("int main;", encoding="utf-8")
    ctx, _ = make_ctx()
    calls, did_open = collect_did_open()
    assert ensure_did_open(ctx, req("textDocument/hover", buffile=str(path)), did_open) is True
    assert calls == [(str(path), {"draft": "int main;"})]


def test_ensure_did_open_read_failure(tmp_path):
    ctx, _ = make_ctx()
    calls, did_open = collect_did_open()
    missing = str(tmp_path / "missing.c")
    assert ensure_did_open(ctx, req("textDocument/hover", buffile=missing), did_open) is False
    assert calls == []


def test_ensure_did_open_custom_reader():
    ctx, _ = make_ctx()
    calls, did_open = collect_did_open()
    result = ensure_did_open(
        ctx, req("textDocument/hover"), did_open, read_document=lambda path: path.upper()
    )
    assert result is True
    assert calls == [(BUFFILE, {"draft": BUFFILE.upper()})]