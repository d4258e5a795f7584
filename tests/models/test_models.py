"""
Tests for model classes in AutoOrganize.

Test Organization:
1. Document models and content normalization
2. Entity models and normalization keys
3. Search models
4. Job and ingestion result models
"""

from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from autoorganize.models import (
    DataSourceType,
    Document,
    DocumentInput,
    DocumentListFilter,
    Entity,
    EntityType,
    IngestionResult,
    IngestionStatus,
    ItemStatus,
    Job,
    JobItemResult,
    JobStatus,
    ResultKind,
    SearchFilter,
    StageStatus,
    TimeRange,
    compute_content_hash,
    entity_key_id,
    normalize_content,
    normalize_entity_name,
)


class TestContentNormalization:
    """Tests for normalize_content / compute_content_hash."""

    def test_line_endings_and_whitespace(self):
        assert normalize_content("  line one\r\nline two\rline three\n\n") == (
            "line one\nline two\nline three"
        )

    def test_bytes_decoded(self):
        assert normalize_content("café".encode()) == "café"

    def test_invalid_utf8_replaced(self):
        assert normalize_content(b"ok \xff") == "ok \ufffd"

    def test_unicode_nfc(self):
        decomposed = "cafe\u0301"
        assert normalize_content(decomposed) == "caf\u00e9"

    def test_hash_format(self):
        content_hash = compute_content_hash("hello")
        assert content_hash.startswith("sha256:")
        assert len(content_hash) == len("sha256:") + 64

    def test_hash_is_function_of_normalized_content(self):
        assert compute_content_hash("hello\r\nworld ") == compute_content_hash("hello\nworld")
        assert compute_content_hash(b"hello") == compute_content_hash("hello")
        assert compute_content_hash("hello") != compute_content_hash("Hello")


class TestDocument:
    """Tests for Document and DocumentInput."""

    def test_document_defaults(self):
        document = Document(id="doc_000000000001", content_hash="sha256:abc")

        assert document.source_type == DataSourceType.FILE_SYSTEM
        assert document.content_encoding == "utf-8"
        assert document.encrypted is False
        assert document.entities == []
        assert document.is_enriched()

    def test_content_preview_hides_ciphertext(self):
        plain = Document(id="doc_1", content_hash="sha256:a", content="x" * 300)
        cipher = Document(
            id="doc_2", content_hash="sha256:b", content="AAAA", content_encoding="base64"
        )

        assert len(plain.content_preview) == 200
        assert cipher.content_preview == ""

    def test_is_enriched(self):
        document = Document(
            id="doc_1",
            content_hash="sha256:a",
            stage_status={"extract": StageStatus.OK, "index": StageStatus.FAILED},
        )
        assert not document.is_enriched()

    def test_input_defaults(self):
        document = DocumentInput(content="text")
        assert document.file_path == ""
        assert document.encrypted is False
        assert document.metadata == {}

    def test_list_filter_bounds(self):
        with pytest.raises(ValidationError):
            DocumentListFilter(limit=0)
        with pytest.raises(ValidationError):
            DocumentListFilter(offset=-1)


class TestEntity:
    """Tests for Entity and normalization."""

    def test_normalized_name_filled(self):
        entity = Entity(id="ent_1", type=EntityType.PERSON, name="  Ada   LOVELACE ")
        assert entity.normalized_name == "ada lovelace"

    def test_phone_normalization(self):
        assert normalize_entity_name(EntityType.PHONE, "(555) 123-4567") == "5551234567"

    def test_url_normalization_keeps_path(self):
        assert normalize_entity_name(EntityType.URL, "HTTPS://Example.COM/Docs?Q=1") == (
            "https://example.com/Docs?Q=1"
        )

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            Entity(id="ent_1", type=EntityType.PERSON, name="A", confidence=1.2)

    def test_entity_key_id_deterministic(self):
        first = entity_key_id(EntityType.PERSON, "ada lovelace")
        second = entity_key_id(EntityType.PERSON, "ada lovelace")
        other_type = entity_key_id(EntityType.ORGANIZATION, "ada lovelace")
        other_scope = entity_key_id(EntityType.PERSON, "ada lovelace", scope="email")

        assert first == second
        assert first.startswith("ent_") and len(first) == 16
        assert len({first, other_type, other_scope}) == 3


class TestSearchModels:
    def test_time_range_order(self):
        now = datetime.now()
        with pytest.raises(ValidationError):
            TimeRange(start=now, end=now - timedelta(days=1))

    def test_time_range_contains(self):
        now = datetime.now()
        window = TimeRange(start=now - timedelta(hours=1), end=now + timedelta(hours=1))

        assert window.contains(now)
        assert not window.contains(now - timedelta(hours=2))
        assert TimeRange().contains(now)

    def test_default_kinds(self):
        assert SearchFilter().kinds == [ResultKind.DOCUMENT, ResultKind.ENTITY]


class TestJobModels:
    def test_job_counts(self):
        job = Job(
            id="job_1",
            items=[
                JobItemResult(index=0, status=ItemStatus.SUCCEEDED, document_id="doc_a"),
                JobItemResult(index=1, status=ItemStatus.FAILED),
                JobItemResult(index=2, status=ItemStatus.PARTIAL, document_id="doc_c"),
                JobItemResult(index=3, status=ItemStatus.FAILED),
            ],
        )

        assert job.status == JobStatus.QUEUED
        assert not job.is_terminal()
        assert job.count(ItemStatus.FAILED) == 2
        assert job.failure_ratio() == 0.5
        assert job.document_ids == ["doc_a", "doc_c"]

    def test_empty_job_ratio(self):
        assert Job(id="job_1").failure_ratio() == 0.0

    def test_terminal_statuses(self):
        for status in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED):
            assert Job(id="job_1", status=status).is_terminal()

    def test_ingestion_result_failed_stages(self):
        result = IngestionResult(
            document_id="doc_1",
            status=IngestionStatus.PARTIAL,
            stages={"store": StageStatus.OK, "extract": StageStatus.FAILED},
        )
        assert result.success
        assert result.failed_stages == ["extract"]
