"""
Metadata parsing, chunk identity and ORM model tests.
"""

from site_knowledge.db.models import CuratedContent, KnowledgeEvent, SiteContent
from site_knowledge.retrieval.models import (
    DocxMetadata,
    ManualMetadata,
    PdfMetadata,
    WebsiteMetadata,
    build_result,
    infer_source_type,
    parse_metadata,
    stable_chunk_id,
)


class TestSourceTypeInference:

    def test_explicit_source_type_wins(self):
        assert infer_source_type("website_content", {"sourceType": "manual"}) == "manual"

    def test_site_rows_default_to_website(self):
        assert infer_source_type("website_content", {}) == "website"

    def test_curated_pdf_and_docx_by_extension(self):
        assert infer_source_type("document_knowledge", {"sourceFile": "prices.PDF"}) == "pdf"
        assert infer_source_type("document_knowledge", {"sourceFile": "faq.docx"}) == "docx"

    def test_curated_without_file_is_manual(self):
        assert infer_source_type("document_knowledge", {"title": "x"}) == "manual"


class TestParseMetadata:

    def test_variants(self):
        assert isinstance(parse_metadata("website_content", {"url": "u"}), WebsiteMetadata)
        assert isinstance(parse_metadata("document_knowledge", None), ManualMetadata)
        assert isinstance(
            parse_metadata("document_knowledge", {"sourceFile": "a.pdf"}), PdfMetadata
        )
        assert isinstance(
            parse_metadata("document_knowledge", {"sourceFile": "a.docx"}), DocxMetadata
        )

    def test_pdf_without_source_file_downgrades_to_manual(self):
        meta = parse_metadata("document_knowledge", {"sourceType": "pdf"})
        assert meta.sourceType == "manual"

    def test_extension_keys_are_kept(self):
        meta = parse_metadata("document_knowledge", {"category": "pricing"})
        assert meta.model_dump()["category"] == "pricing"

    def test_malformed_known_key_does_not_fail_row(self):
        meta = parse_metadata(
            "document_knowledge",
            {"sourceType": "pdf", "sourceFile": "a.pdf", "language": "fr"},
        )
        assert meta.sourceType == "pdf"
        assert meta.language is None

    def test_json_encoded_string_is_decoded(self):
        meta = parse_metadata(
            "document_knowledge",
            '{"sourceFile": "prices.pdf", "title": "Prices"}',
        )
        assert isinstance(meta, PdfMetadata)
        assert meta.title == "Prices"

    def test_undecodable_or_non_object_metadata_is_empty(self):
        assert isinstance(parse_metadata("website_content", "not json"), WebsiteMetadata)
        assert isinstance(parse_metadata("document_knowledge", '["a", "b"]'), ManualMetadata)
        assert isinstance(parse_metadata("document_knowledge", 42), ManualMetadata)

    def test_invalid_source_file_keeps_the_inferred_variant(self):
        meta = parse_metadata("document_knowledge", {"sourceFile": 123, "title": ["x"]})

        assert isinstance(meta, PdfMetadata)
        assert meta.sourceFile == "123"
        assert meta.title is None

    def test_build_result_survives_invalid_metadata(self):
        result = build_result("website_content", 1, "text", "https://x", {"url": 5}, 0.7)

        assert result.source_type == "website"
        assert result.chunk_id.startswith("website_content:")


class TestChunkIdentity:

    def test_curated_rows_use_primary_key(self):
        assert stable_chunk_id("document_knowledge", 42, None, "x") == "document_knowledge:42"

    def test_site_rows_use_stable_hash(self):
        first = stable_chunk_id("website_content", 1, "https://a", "same content")
        rebuilt = stable_chunk_id("website_content", 999, "https://a", "same content")
        other = stable_chunk_id("website_content", 1, "https://b", "same content")

        assert first == rebuilt
        assert first != other
        assert first.startswith("website_content:")

    def test_explicit_chunk_id_is_preserved(self):
        result = build_result("website_content", 1, "text", None, {"chunkId": "abc"}, 0.7)
        assert result.chunk_id == "abc"

    def test_public_shape(self):
        result = build_result(
            "document_knowledge", 7, "Pricing", "https://x", {"title": "Prices"}, 0.82
        )
        public = result.to_public()

        assert public["content"] == "Pricing"
        assert public["similarity"] == 0.82
        assert public["metadata"]["sourceTable"] == "document_knowledge"
        assert public["metadata"]["sourceType"] == "manual"
        assert public["metadata"]["chunkId"] == "document_knowledge:7"


class TestOrmModels:

    def test_table_names(self):
        assert SiteContent.__tablename__ == "website_content"
        assert CuratedContent.__tablename__ == "document_knowledge"
        assert KnowledgeEvent.__tablename__ == "knowledge_events"

    def test_metadata_column_name(self):
        assert "metadata" in CuratedContent.__table__.columns
        assert "embedding" in SiteContent.__table__.columns

    def test_event_creation(self):
        event = KnowledgeEvent(query="hi", hit=False)
        assert event.query == "hi"
        assert event.hit is False
        assert event.source_id is None
