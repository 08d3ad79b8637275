from __future__ import annotations

from overlay import STATUS_TEXT, render_transcript
from models import SessionState


def test_render_transcript_greys_out_interim() -> None:
    rendered = render_transcript("hello", "wor")

    assert rendered.startswith("<span style='color: white;'>hello</span>")
    assert "font-style: italic;'>wor</span>" in rendered


def test_render_transcript_escapes_markup() -> None:
    rendered = render_transcript("a <b> & c", "")
    assert "a &lt;b&gt; &amp; c" in rendered
    assert render_transcript("", "") == ""


def test_every_state_has_status_text() -> None:
    assert set(STATUS_TEXT) == {state.value for state in SessionState}
