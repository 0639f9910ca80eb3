from markupsafe import Markup

from markdown_renderer import MarkdownRenderer, renderer


def test_raw_html_is_escaped():
    html = MarkdownRenderer().render_fragment('Hello <script>alert(1)</script> **there**')
    assert '<script>' not in html
    assert '<strong>there</strong>' in html


def test_empty_input_renders_nothing():
    assert renderer.render_fragment(None) == ''
    assert renderer.render_fragment('   ') == ''


def test_tables_and_strikethrough():
    html = renderer.render_fragment('| a | b |\n|---|---|\n| 1 | ~~2~~ |')
    assert '<table>' in html
    assert '<s>2</s>' in html


def test_output_is_markup():
    assert isinstance(renderer.render_fragment('*x*'), Markup)
