"""
Tests for the tag token stream.

Offsets matter more than anything else here: the rewriter splices edits into
the source using them, so every token must point at the exact source text.
"""

from types import GeneratorType

import pytest

from core.proxy.html_scanner import TagToken, line_offsets, scan_tags

pytestmark = pytest.mark.unit


class TestScanTags:
    def test_yields_start_and_end_tags_in_order(self) -> None:
        html = "<html><head></head><body><p>hi</p></body></html>"

        tokens = list(scan_tags(html))

        assert [(t.kind, t.name) for t in tokens] == [
            ("start", "html"), ("start", "head"), ("end", "head"),
            ("start", "body"), ("start", "p"), ("end", "p"),
            ("end", "body"), ("end", "html"),
        ]

    def test_start_tag_offsets_cover_raw_tag(self) -> None:
        html = 'text\n  <A HREF="x.html" class=big>link</A>'

        token = next(t for t in scan_tags(html) if t.kind == "start")

        assert html[token.start:token.end] == '<A HREF="x.html" class=big>'
        assert token.name == "a"

    def test_end_tag_offset_points_at_closing_tag(self) -> None:
        html = "<head>\n<title>x</title>\n</HEAD>"

        token = [t for t in scan_tags(html) if t.kind == "end" and t.name == "head"][0]

        assert html[token.start:].startswith("</HEAD>")

    def test_attribute_values_and_quotes(self) -> None:
        html = """<img src="a.png" alt='b c' width=10 hidden>"""

        token = next(scan_tags(html))

        by_name = {a.name: a for a in token.attributes}
        assert (by_name["src"].value, by_name["src"].quote) == ("a.png", '"')
        assert (by_name["alt"].value, by_name["alt"].quote) == ("b c", "'")
        assert (by_name["width"].value, by_name["width"].quote) == ("10", "")
        assert by_name["hidden"].value is None
        for attribute in token.attributes:
            if attribute.value is not None:
                assert html[attribute.start:attribute.end] == attribute.value

    def test_gt_inside_quoted_value(self) -> None:
        html = '<a title="a > b" href="next.html">x</a>'

        token = next(scan_tags(html))

        assert token.get("href").value == "next.html"
        assert html[token.start:token.end] == '<a title="a > b" href="next.html">'

    def test_self_closing_tag_is_one_start_token(self) -> None:
        tokens = list(scan_tags('<br/><img src="a.png" />'))

        assert [(t.kind, t.name) for t in tokens] == [("start", "br"), ("start", "img")]

    def test_comments_and_script_text_are_skipped(self) -> None:
        html = (
            '<!-- <a href="hidden.html"> -->'
            '<script>var s = \'<img src="x.png">\';</script>'
            '<style>a:after { content: "<b>"; }</style>'
        )

        names = [(t.kind, t.name) for t in scan_tags(html)]

        assert names == [("start", "script"), ("end", "script"), ("start", "style"), ("end", "style")]

    def test_title_and_textarea_content_is_text(self) -> None:
        html = '<head><title>a </head> <b>x</b></title></head><textarea><a href="/t"></textarea>'

        tokens = list(scan_tags(html))

        assert [(t.kind, t.name) for t in tokens] == [
            ("start", "head"), ("start", "title"), ("end", "title"), ("end", "head"),
            ("start", "textarea"), ("end", "textarea"),
        ]
        assert tokens[3].start == html.index("</title></head>") + len("</title>")

    def test_offsets_survive_chunk_boundaries(self) -> None:
        html = "\n".join(f'<a href="/page{i}.html">p{i}</a>' for i in range(200))

        tokens = [t for t in scan_tags(html, chunk_size=7) if t.kind == "start"]

        assert len(tokens) == 200
        for i, token in enumerate(tokens):
            href = token.get("href")
            assert html[href.start:href.end] == f"/page{i}.html"

    def test_is_a_lazy_single_use_iterator(self) -> None:
        tokens = scan_tags("<p>a</p><p>b</p>")

        assert isinstance(tokens, GeneratorType)
        assert isinstance(next(tokens), TagToken)
        rest = list(tokens)
        assert len(rest) == 3
        assert list(tokens) == []

    def test_empty_document(self) -> None:
        assert list(scan_tags("")) == []


class TestLineOffsets:
    def test_newlines_only(self) -> None:
        assert line_offsets("ab\ncd\r\nef") == [0, 3, 7]
