from datetime import date
from pathlib import Path

from folio.content import Post
from folio.pipeline import ContentPipeline


def make_post(body: str) -> Post:
    return Post(
        slug="sample",
        title="Sample",
        description="A sample",
        date=date(2024, 2, 3),
        tags=["t"],
        published=True,
        body=body,
        path=Path("sample.md"),
    )


def test_render_markdown_returns_final_html():
    assert ContentPipeline().render_markdown("# Hi") == "<h1>Hi</h1>\n"


def test_render_post_flags_widgets_and_collects_toc():
    body = "# Top\n\n## Part\n\nMass $m$.\n\n```mermaid\ngraph TD\n  A-->B\n```\n"
    rendered = ContentPipeline().render(make_post(body))
    assert rendered.has_math and rendered.has_diagrams
    assert [h.text for h in rendered.toc] == ["Top", "Part"]
    assert "placeholder" not in rendered.html
    assert rendered.errors == []
    assert rendered.reading_time == "1 min read"


def test_to_dict_carries_metadata_and_content():
    rendered = ContentPipeline().render(make_post("Hello there."))
    data = rendered.to_dict()
    assert data["slug"] == "sample"
    assert data["date"] == "2024-02-03"
    assert data["content"] == "<p>Hello there.</p>\n"
    assert data["reading_time"] == 1


def test_from_config_respects_heading_ids():
    pipeline = ContentPipeline.from_config({"markdown": {"heading_ids": True}})
    assert pipeline.render_markdown("## Section") == '<h2 id="section">Section</h2>\n'
