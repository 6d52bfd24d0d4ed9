"""Unit tests for idempotent enrichment attachment."""

from datetime import UTC, datetime, timedelta

from common.models.message import EnrichmentKind
from enrichment.idempotency import (
    add_enrichment_idempotent,
    add_enrichments_idempotent,
    clear_enrichment_by_kind,
    deduplicate_enrichment_by_kind,
    get_enrichment_by_kind,
    get_enrichments,
    has_all_enrichments,
    should_skip_enrichment,
)

BASE_DATE = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class TestAddEnrichmentIdempotent:
    """Test suite for add_enrichment_idempotent function."""

    def test_adds_new_kind_to_media(self, make_media, make_enrichment):
        message = add_enrichment_idempotent(make_media("m1"), make_enrichment())

        assert [e.kind for e in message.media.enrichment] == [EnrichmentKind.IMAGE_ANALYSIS]

    def test_adds_link_context_to_text(self, make_text, make_enrichment):
        message = add_enrichment_idempotent(
            make_text("t1", "see https://example.com"), make_enrichment("link_context")
        )

        assert message.enrichment[0].kind == EnrichmentKind.LINK_CONTEXT

    def test_applying_twice_is_a_no_op(self, make_media, make_enrichment):
        enrichment = make_enrichment()
        once = add_enrichment_idempotent(make_media("m1"), enrichment)
        twice = add_enrichment_idempotent(once, make_enrichment(provider="other"))

        assert twice == once
        assert len(twice.media.enrichment) == 1

    def test_force_refresh_replaces_in_place(self, make_media, make_enrichment):
        message = make_media("m1")
        message = add_enrichment_idempotent(message, make_enrichment("image_analysis"))
        message = add_enrichment_idempotent(message, make_enrichment("transcription"))

        refreshed = add_enrichment_idempotent(
            message,
            make_enrichment("image_analysis", provider="fresh"),
            force_refresh=True,
        )

        kinds = [e.kind for e in refreshed.media.enrichment]
        assert kinds == [EnrichmentKind.IMAGE_ANALYSIS, EnrichmentKind.TRANSCRIPTION]
        assert refreshed.media.enrichment[0].provider == "fresh"

    def test_other_kinds_are_untouched(self, make_tapback, make_enrichment):
        tapback = make_tapback("tb1")
        assert add_enrichment_idempotent(tapback, make_enrichment()) is tapback

    def test_original_message_is_not_mutated(self, make_media, make_enrichment):
        original = make_media("m1")
        add_enrichment_idempotent(original, make_enrichment())
        assert original.media.enrichment is None


class TestDeduplicate:
    def test_latest_created_at_wins(self, make_enrichment):
        older = make_enrichment(provider="old", created_at=BASE_DATE)
        newer = make_enrichment(provider="new", created_at=BASE_DATE + timedelta(hours=1))
        other = make_enrichment("transcription")

        result = deduplicate_enrichment_by_kind([older, other, newer])

        assert [e.provider for e in result] == ["new", "test-provider"]


def test_bulk_add_by_guid(make_media, make_text, make_enrichment):
    messages = [make_media("m1"), make_text("t1")]

    result = add_enrichments_idempotent(messages, {"m1": make_enrichment()})

    assert len(get_enrichments(result[0])) == 1
    assert result[1] is messages[1]


def test_query_helpers(make_media, make_enrichment):
    message = add_enrichment_idempotent(make_media("m1"), make_enrichment())

    assert should_skip_enrichment(message, EnrichmentKind.IMAGE_ANALYSIS)
    assert should_skip_enrichment(message, "image_analysis")
    assert not should_skip_enrichment(message, "transcription")
    assert has_all_enrichments(message, ["image_analysis"])
    assert not has_all_enrichments(message, ["image_analysis", "transcription"])
    assert not has_all_enrichments(make_media("m2"), [])
    assert get_enrichment_by_kind(message, "image_analysis").provider == "test-provider"
    assert get_enrichment_by_kind(message, "pdf_summary") is None

    cleared = clear_enrichment_by_kind(message, "image_analysis")
    assert cleared.media.enrichment is None
