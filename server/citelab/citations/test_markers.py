import unittest

from server.citelab.citations.markers import (
    MarkerChange,
    extract_citation_ids,
    render_citation_marker,
    rewrite_citation_markers,
)

NESTED = (
    '<p><span style="color:red">see <span class="citation" data-citation-id="a" data-citation-number="2">[2]</span></span>'
    ' and <em><span class="note">also <span class="citation" data-citation-id="b" data-citation-number="1">[1]</span></span></em></p>'
)


class TestRenderAndExtract(unittest.TestCase):
    def test_render_uses_sub_number_only_when_above_one(self) -> None:
        self.assertEqual(
            render_citation_marker("c1", 3),
            '<span class="citation" data-citation-id="c1" data-citation-number="3">[3]</span>',
        )
        self.assertTrue(render_citation_marker("c1", 3, 2).endswith(">[3.2]</span>"))

    def test_extract_ids_in_document_order_without_duplicates(self) -> None:
        content = (
            "<p>See "
            + render_citation_marker("b", 1)
            + " and "
            + render_citation_marker("a", 2)
            + " again "
            + render_citation_marker("b", 1)
            + ' <span class="other">x</span></p>'
        )
        self.assertEqual(extract_citation_ids(content), ["b", "a"])
        self.assertEqual(extract_citation_ids(""), [])

    def test_extract_finds_markers_inside_styled_spans(self) -> None:
        self.assertEqual(extract_citation_ids(NESTED), ["a", "b"])


class TestRewriteMarkers(unittest.TestCase):
    def test_rewrites_markers_inside_styled_spans(self) -> None:
        out = rewrite_citation_markers(NESTED, [MarkerChange("a", 2, 1), MarkerChange("b", 1, 2)])
        self.assertEqual(out.missing, [])
        self.assertEqual(sorted(out.rewritten), ["a", "b"])
        self.assertIn('<span style="color:red">see <span class="citation" data-citation-id="a" data-citation-number="1">[1]</span></span>', out.content)
        self.assertIn('data-citation-id="b" data-citation-number="2">[2]</span></span></em>', out.content)

    def test_rewrites_attribute_and_text_in_either_attribute_order(self) -> None:
        content = (
            '<p>A <span class="citation" data-citation-id="c1" data-citation-number="1">[1]</span> '
            "B <span data-citation-number='2' data-citation-id='c2' class='citation'>[2.3]</span> "
            "C [1] stays</p>"
        )
        out = rewrite_citation_markers(
            content,
            [MarkerChange("c1", 1, 2), MarkerChange("c2", 2, 1)],
        )
        self.assertIn('data-citation-id="c1" data-citation-number="2">[2]</span>', out.content)
        self.assertIn("data-citation-number='1' data-citation-id='c2' class='citation'>[1.3]</span>", out.content)
        self.assertIn("C [1] stays", out.content)
        self.assertEqual(sorted(out.rewritten), ["c1", "c2"])
        self.assertEqual(out.missing, [])

    def test_reports_missing_markers(self) -> None:
        content = render_citation_marker("c1", 1)
        out = rewrite_citation_markers(content, [MarkerChange("c1", 1, 4), MarkerChange("gone", 2, 3)])
        self.assertIn("[4]", out.content)
        self.assertEqual(out.missing, ["gone"])

    def test_unchanged_numbers_are_ignored(self) -> None:
        content = render_citation_marker("c1", 1)
        out = rewrite_citation_markers(content, [MarkerChange("c1", 1, 1)])
        self.assertEqual(out.content, content)
        self.assertEqual(out.missing, [])


if __name__ == "__main__":
    unittest.main()
