import contextlib

import gui_streamlit


class _Box:
    def __init__(self):
        self.shown = []

    def markdown(self, text):
        self.shown.append(text)

    def text_area(self, label, value="", height=None):
        pass


class _FakeStreamlit:
    def __init__(self):
        self.boxes = []

    def empty(self):
        box = _Box()
        self.boxes.append(box)
        return box

    def spinner(self, text):
        return contextlib.nullcontext()


class TestRunStreaming:
    def _run(self, monkeypatch, target):
        fake = _FakeStreamlit()
        monkeypatch.setattr(gui_streamlit, "st", fake)
        res = gui_streamlit._run_streaming("Researching", target, gui_streamlit._LogBufferHandler())
        return res, fake.boxes[0].shown

    def test_streamed_chunks_are_shown(self, monkeypatch):
        def target(cb):
            cb("Hello ")
            cb("world")

        res, shown = self._run(monkeypatch, target)
        assert res == {"streamed": True}
        assert shown[-1] == "Hello world"

    def test_single_piece_result_is_flagged(self, monkeypatch):
        res, shown = self._run(monkeypatch, lambda cb: "Full report")
        assert res == {"streamed": False}
        assert shown[-1] == ""

    def test_failure_reported(self, monkeypatch):
        def target(cb):
            raise RuntimeError("boom")

        res, _ = self._run(monkeypatch, target)
        assert res["error"] == "boom"
