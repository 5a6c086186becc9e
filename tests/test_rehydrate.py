import logging
import subprocess
from pathlib import Path

import pytest

from folio.placeholders import Fragment, FragmentKind
from folio.protocols import DiagramRenderer, MathRenderer
from folio.rehydrate import (
    KatexClientRenderer,
    MermaidCliRenderer,
    MermaidClientRenderer,
    Rehydrator,
    WidgetError,
    find_mmdc,
    validate_tex,
)
from folio.renderers import MarkdownRenderer


def render(source: str, rehydrator: Rehydrator | None = None):
    document = MarkdownRenderer().render(source)
    return (rehydrator or Rehydrator()).rehydrate(document.html, document.fragments)


def test_plain_html_passes_through_unchanged():
    html = MarkdownRenderer().render("Some *text*.\n\n- a\n- b\n\n```\nx < y\n```\n").html
    assert Rehydrator().rehydrate(html).html == html


def test_diagram_placeholder_becomes_client_widget():
    result = render("```mermaid\ngraph TD\n  A-->B\n```\n")
    assert '<div class="mermaid-container"><pre class="mermaid">graph TD\n  A--&gt;B</pre></div>' in result.html
    assert "mermaid-placeholder" not in result.html
    assert result.consumed == [0]
    assert result.errors == []
    assert result.unconsumed == []


def test_math_placeholders_become_katex_containers():
    result = render("Inline $a<b$ here.\n\n$$\nx^2\n$$\n")
    assert '<span class="math math-inline">\\(a&lt;b\\)</span>' in result.html
    assert '<div class="math math-display">\\[x^2\\]</div>' in result.html
    assert "math-placeholder" not in result.html
    assert result.consumed == [0, 1]


def test_malformed_math_degrades_to_error_marker(caplog):
    with caplog.at_level(logging.WARNING, logger="folio.rehydrate"):
        result = render("Bad $\\frac{1}{2$ and good $x$.")
    assert '<span class="math-error">\\frac{1}{2</span>' in result.html
    assert '<span class="math math-inline">\\(x\\)</span>' in result.html
    assert len(result.errors) == 1
    assert "Math rendering failed" in caplog.text


def test_failed_diagram_degrades_to_error_marker():
    class Broken:
        def render(self, source):
            raise WidgetError("boom")

    result = render("```mermaid\ngraph TD\n```\n\nAfter.", Rehydrator(diagram_renderer=Broken()))
    assert 'class="mermaid-error"' in result.html
    assert "<p>After.</p>" in result.html
    assert result.errors == ["diagram: boom"]


def test_whitelist_strips_unsafe_markup():
    html = (
        '<p onclick="evil()">Hi <script>alert(1)</script><a href="javascript:alert(1)">x</a>'
        '<a href="https://example.com" target="_blank">ok</a><blink>text</blink></p>'
        '<style>p{}</style><iframe src="https://example.com"></iframe>'
        '<table><tr><td style="color:red">c</td><th style="text-align: right">h</th></tr></table>'
        '<img src="data:image/png;base64,AAA" alt="d"><img src="/local.png" alt="l">'
    )
    result = Rehydrator().rehydrate(html).html
    assert "script" not in result and "alert" not in result
    assert "onclick" not in result
    assert "<style>" not in result and "iframe" not in result
    assert "target" not in result
    assert '<a href="https://example.com">ok</a>' in result
    assert "<a>x</a>" in result
    assert "blink" not in result and "text" in result
    assert '<td>c</td>' in result
    assert 'style="text-align: right' in result
    assert 'color' not in result
    assert '<img alt="d"/>' in result
    assert 'src="/local.png"' in result


def test_raw_html_in_markdown_is_sanitized():
    result = render('Text\n\n<div class="note" data-x="1"><script>bad()</script>kept</div>\n')
    assert '<div class="note">kept</div>' in result.html


def test_unconsumed_fragment_is_reported(caplog):
    stray = Fragment(index=7, kind=FragmentKind.MATH_INLINE, source="y")
    with caplog.at_level(logging.WARNING, logger="folio.rehydrate"):
        result = Rehydrator().rehydrate("<p>No placeholders</p>", [stray])
    assert result.unconsumed == [stray]
    assert "never consumed" in caplog.text


def test_validate_tex():
    assert validate_tex("x^2") is None
    assert validate_tex("\\{ a \\}") is None
    assert validate_tex("\\begin{align}a\\end{align}") is None
    assert validate_tex("  ") == "empty expression"
    assert validate_tex("{a") == "unbalanced braces"
    assert validate_tex("a}") == "unexpected '}'"
    assert validate_tex("\\begin{a}x\\end{b}") == "mismatched \\end{b}"
    assert validate_tex("\\begin{matrix}x") == "unclosed \\begin{matrix}"


def test_widget_renderers_follow_protocols():
    assert isinstance(MermaidClientRenderer(), DiagramRenderer)
    assert isinstance(KatexClientRenderer(), MathRenderer)


def test_mmdc_renderer_inlines_svg(monkeypatch, tmp_path):
    calls = {}

    def fake_run(cmd, check, capture_output, timeout):
        calls["cmd"] = cmd
        output = Path(cmd[cmd.index("-o") + 1])
        output.write_text('<svg id="d"><g></g></svg>', encoding="utf-8")
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr("folio.rehydrate.find_mmdc", lambda root=None: "/bin/mmdc")
    monkeypatch.setattr("folio.rehydrate.subprocess.run", fake_run)
    rehydrator = Rehydrator.from_config({"diagrams": {"renderer": "mmdc"}}, tmp_path)
    assert isinstance(rehydrator.diagram_renderer, MermaidCliRenderer)

    result = render("```mermaid\ngraph TD\n  A-->B\n```\n", rehydrator)
    assert '<div class="mermaid-container"><svg id="d"><g></g></svg></div>' in result.html
    assert calls["cmd"][0] == "/bin/mmdc"
    assert calls["cmd"][calls["cmd"].index("-t") + 1] == "neutral"


def test_mmdc_failure_and_missing_binary(monkeypatch):
    monkeypatch.setattr("folio.rehydrate.find_mmdc", lambda root=None: None)
    result = render("```mermaid\ngraph TD\n```\n", Rehydrator(diagram_renderer=MermaidCliRenderer()))
    assert 'class="mermaid-error"' in result.html
    assert "mmdc executable not found" in result.errors[0]

    def failing_run(cmd, check, capture_output, timeout):
        raise subprocess.CalledProcessError(1, cmd, stderr=b"parse error")

    monkeypatch.setattr("folio.rehydrate.find_mmdc", lambda root=None: "/bin/mmdc")
    monkeypatch.setattr("folio.rehydrate.subprocess.run", failing_run)
    result = render("```mermaid\ngraph TD\n```\n", Rehydrator(diagram_renderer=MermaidCliRenderer()))
    assert 'class="mermaid-error"' in result.html
    assert result.errors[0].startswith("diagram: mmdc failed")


def test_find_mmdc_lookup_order(monkeypatch, tmp_path):
    binary = tmp_path / "node_modules" / ".bin" / "mmdc"
    binary.parent.mkdir(parents=True)
    binary.write_text("", encoding="utf-8")

    monkeypatch.setenv("FOLIO_MMDC", str(binary))
    assert find_mmdc() == str(binary)
    monkeypatch.setenv("FOLIO_MMDC", str(tmp_path / "nope"))
    assert find_mmdc(tmp_path) is None

    monkeypatch.delenv("FOLIO_MMDC")
    monkeypatch.setattr("folio.rehydrate.shutil.which", lambda name: None)
    assert find_mmdc(tmp_path) == str(binary)
    assert find_mmdc() is None


def test_obfuscated_script_schemes_are_dropped():
    html = (
        '<p><a href="java&#x09;script:alert(1)">a</a>'
        '<a href="&#106;avascript:alert(2)">b</a>'
        '<a href=" JAVASCRIPT:alert(3)">c</a>'
        '<img src="vbscript:msgbox(4)" alt="d">'
        '<a href="/relative/">e</a><a href="#top">f</a></p>'
    )
    result = Rehydrator().rehydrate(html).html
    assert "script:" not in result.lower()
    assert "<a>a</a><a>b</a><a>c</a>" in result
    assert '<a href="/relative/">e</a>' in result
    assert '<a href="#top">f</a>' in result


def test_unexpected_renderer_exception_degrades_to_marker(caplog):
    class Crashing:
        def render(self, source, display=False):
            raise ValueError("bad widget")

    rehydrator = Rehydrator(diagram_renderer=Crashing(), math_renderer=Crashing())
    with caplog.at_level(logging.WARNING, logger="folio.rehydrate"):
        result = render("Inline $x$.\n\n```mermaid\ngraph TD\n```\n\nAfter.", rehydrator)
    assert '<span class="math-error">x</span>' in result.html
    assert 'class="mermaid-error"' in result.html
    assert "<p>After.</p>" in result.html
    assert result.errors == ["math: bad widget", "diagram: bad widget"]


def test_mmdc_unreadable_output_is_a_widget_error(monkeypatch):
    def fake_run(cmd, check, capture_output, timeout):
        output = Path(cmd[cmd.index("-o") + 1])
        output.write_bytes(b"\xff\xfe<svg/>")
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr("folio.rehydrate.find_mmdc", lambda root=None: "/bin/mmdc")
    monkeypatch.setattr("folio.rehydrate.subprocess.run", fake_run)
    with pytest.raises(WidgetError, match="no usable output"):
        MermaidCliRenderer().render("graph TD")
