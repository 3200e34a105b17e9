import unittest

from server.citelab.citations.identity import base_doi, dedupe_key, extract_doi, normalize_title


class TestBaseDoi(unittest.TestCase):
    def test_drops_version_suffix_and_lowercases(self) -> None:
        self.assertEqual(base_doi("10.1101/2020.05.01.123456/v2/full"), "10.1101/2020.05.01.123456")
        self.assertEqual(base_doi(" 10.1000/ABC "), "10.1000/abc")

    def test_empty_values(self) -> None:
        self.assertEqual(base_doi(None), "")
        self.assertEqual(base_doi("   "), "")


class TestExtractDoi(unittest.TestCase):
    def test_pulls_doi_from_url_and_trims_punctuation(self) -> None:
        self.assertEqual(extract_doi("https://doi.org/10.1000/XYZ.123)."), "10.1000/xyz.123")
        self.assertEqual(extract_doi("doi:10.1016/j.cell.2020.01.001;"), "10.1016/j.cell.2020.01.001")

    def test_returns_none_without_doi(self) -> None:
        self.assertIsNone(extract_doi("no identifier here"))
        self.assertIsNone(extract_doi(None))


class TestDedupeKey(unittest.TestCase):
    def test_precedence_pmid_then_doi_then_title_then_id(self) -> None:
        self.assertEqual(dedupe_key({"id": "a", "pmid": "111", "doi": "10.1/x"}), "pmid:111")
        self.assertEqual(dedupe_key({"id": "a", "doi": "10.1/X/v3/abs"}), "doi:10.1/x")
        self.assertEqual(dedupe_key({"id": "a", "title": "Hello, World!"}), "title:hello world")
        self.assertEqual(dedupe_key({"id": "a"}), "id:a")

    def test_reads_attributes_from_objects(self) -> None:
        class _Row:
            id = "row1"
            pmid = None
            doi = ""
            title = "  A Study: Part 2.  "

        self.assertEqual(dedupe_key(_Row()), "title:a study part 2")

    def test_same_paper_imported_twice_shares_key(self) -> None:
        first = {"id": "1", "doi": "10.5555/ABC"}
        second = {"id": "2", "doi": "10.5555/abc/v1/full"}
        self.assertEqual(dedupe_key(first), dedupe_key(second))

    def test_normalize_title_strips_punctuation(self) -> None:
        self.assertEqual(normalize_title("COVID-19: a review."), "covid19 a review")


if __name__ == "__main__":
    unittest.main()
