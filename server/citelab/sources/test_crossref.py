import tempfile
import unittest
from dataclasses import replace

from server.citelab.config import Settings
from server.citelab.core.cache import Cache
from server.citelab.core.db import init_db
from server.citelab.sources.crossref import CrossrefClient, strip_jats, summarize_work


class _StubResponse:
    def __init__(self, status_code: int, payload: object = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self):  # type: ignore[no-untyped-def]
        return self._payload


class _CountingSession:
    def __init__(self, response: _StubResponse) -> None:
        self._response = response
        self.calls: list[dict] = []

    def get(self, url, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append({"url": url, **kwargs})
        return self._response


class TestSummarizeWork(unittest.TestCase):
    def test_extracts_graph_fields(self) -> None:
        message = {
            "DOI": "10.1000/ABC",
            "title": ["  A   study "],
            "container-title": ["Journal of Tests"],
            "published-online": {"date-parts": [[2019, 5]]},
            "author": [{"family": f"F{i}", "given": "G"} for i in range(7)],
            "is-referenced-by-count": 42,
            "abstract": "<jats:p>Effect was large (p = 0.004).</jats:p>",
        }
        summary = summarize_work(message)
        self.assertEqual(summary["doi"], "10.1000/abc")
        self.assertEqual(summary["title"], "A study")
        self.assertEqual(summary["journal"], "Journal of Tests")
        self.assertEqual(summary["year"], 2019)
        self.assertEqual(summary["authors"], ["F0 G", "F1 G", "F2 G", "F3 G", "F4 G", "et al."])
        self.assertEqual(summary["cited_by_count"], 42)
        self.assertEqual(summary["abstract"], "Effect was large (p = 0.004).")

    def test_issued_takes_precedence_and_missing_fields_are_none(self) -> None:
        summary = summarize_work({"issued": {"date-parts": [[2001]]}, "published-print": {"date-parts": [[1999]]}})
        self.assertEqual(summary["year"], 2001)
        self.assertIsNone(summary["title"])
        self.assertIsNone(summary["cited_by_count"])
        self.assertEqual(summary["authors"], [])

    def test_strip_jats(self) -> None:
        self.assertEqual(strip_jats("<jats:title>Abstract</jats:title><jats:p>A &amp; B</jats:p>"), "Abstract A & B")
        self.assertIsNone(strip_jats(""))


class TestCrossrefClient(unittest.TestCase):
    def test_not_found_is_cached_as_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            settings = replace(Settings.from_env(), db_url=f"sqlite:///{tmp}/crossref.db", cache_enabled=True)
            init_db(settings)
            client = CrossrefClient(user_agent="citelab-test", mailto="dev@example.org", cache=Cache(settings=settings))
            session = _CountingSession(_StubResponse(404))
            client._session_local.session = session

            self.assertIsNone(client.get_work_by_doi("https://doi.org/10.1000/missing"))
            self.assertIsNone(client.get_work_by_doi("10.1000/MISSING"))
            self.assertEqual(len(session.calls), 1)
            self.assertIn("mailto:dev@example.org", session.calls[0]["headers"]["User-Agent"])

    def test_message_is_returned(self) -> None:
        client = CrossrefClient(user_agent="citelab-test")
        client._session_local.session = _CountingSession(_StubResponse(200, {"message": {"DOI": "10.1000/x"}}))
        self.assertEqual(client.get_work_by_doi("10.1000/x"), {"DOI": "10.1000/x"})
        self.assertIn("/works/10.1000/x", client._session_local.session.calls[0]["url"])
        self.assertIsNone(client.get_work_by_doi("not a doi"))


if __name__ == "__main__":
    unittest.main()
