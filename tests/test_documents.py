"""
Tests for marksheet PDF rendering and the document cache
"""
import pytest

from app.core.exceptions import NotFoundError
from app.services.documents import DocumentCache, DocumentService, document_url


class FakeMonotonic:

    def __init__(self):
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value


class TestDocumentCache:

    def test_entries_expire(self):
        clock = FakeMonotonic()
        cache = DocumentCache(max_size=5, ttl_seconds=300, clock=clock)
        cache.put("pdf_1_v1", b"one")

        clock.value += 299
        assert cache.get("pdf_1_v1") == b"one"

        clock.value += 2
        assert cache.get("pdf_1_v1") is None
        assert len(cache) == 0

    def test_least_recently_used_is_evicted(self):
        cache = DocumentCache(max_size=2, ttl_seconds=300, clock=FakeMonotonic())
        cache.put("a", b"a")
        cache.put("b", b"b")
        cache.get("a")

        cache.put("c", b"c")

        assert cache.get("b") is None
        assert cache.get("a") == b"a"
        assert cache.get("c") == b"c"

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            DocumentCache(max_size=0, ttl_seconds=10)


class TestDocumentService:

    @pytest.fixture
    def service(self, db_session):
        return DocumentService(db_session, cache=DocumentCache(max_size=5, ttl_seconds=300))

    def test_renders_pdf(self, service, make_marksheet, marksheet_service):
        marksheet = make_marksheet(stage="approved", subjects=[
            {"subject_name": "Compiler Design", "marks": 78},
            {"subject_name": "Computer Networks", "marks": "AB"},
        ])
        token = marksheet_service.get_marksheet(marksheet.id).document_token

        content = service.get_pdf(token)

        assert content.startswith(b"%PDF")

    def test_repeat_requests_are_cached_per_version(self, service, make_marksheet, marksheet_service, monkeypatch):
        marksheet = make_marksheet(stage="approved")
        token = marksheet_service.get_marksheet(marksheet.id).document_token
        renders = []
        monkeypatch.setattr(service, "render_pdf", lambda m: renders.append(m.version) or b"%PDF-fake")

        service.get_pdf(token)
        service.get_pdf(token)
        assert renders == [marksheet.version]

        marksheet_service.mark_visited(marksheet.id)
        service.get_pdf(token)
        assert renders == [marksheet.version, marksheet.version + 1]

    @pytest.mark.parametrize("stage", ["draft", "verified", "requested", "rejected"])
    def test_undispatchable_marksheets_are_hidden(self, service, make_marksheet, marksheet_service, stage):
        marksheet = make_marksheet(stage=stage)
        token = marksheet_service.get_marksheet(marksheet.id).document_token

        with pytest.raises(NotFoundError):
            service.get_pdf(token)

    def test_unknown_token(self, service, make_marksheet):
        marksheet = make_marksheet(stage="approved")

        with pytest.raises(NotFoundError):
            service.get_pdf(str(marksheet.id))

    def test_tokens_are_random_per_marksheet(self, make_marksheet, marksheet_service):
        first = marksheet_service.get_marksheet(make_marksheet().id)
        second = marksheet_service.get_marksheet(make_marksheet().id)

        assert first.document_token != second.document_token
        assert len(first.document_token) >= 32


def test_document_url(make_marksheet, marksheet_service):
    marksheet = marksheet_service.get_marksheet(make_marksheet().id)

    assert document_url(marksheet) == (
        f"https://academics.test/api/v1/documents/marksheets/{marksheet.document_token}.pdf"
    )
