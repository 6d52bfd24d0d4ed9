"""Tests for CSV/DB reconciliation."""

from datetime import UTC, datetime

import pytest
from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from common.models.message import MediaMessage, TextMessage, parse_message
from ingest.dedup_merge import (
    MergeStats,
    apply_authoritative_fields,
    detect_content_equivalence,
    normalize_text,
    reconcile,
    verify_no_data_loss,
)
from ingest.exceptions import DuplicateGuidError


class TestNormalizeText:
    """Test suite for normalize_text function."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Hi!", "hi"),
            ("  Hello,   World  ", "hello world"),
            ("What?!?", "what"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalization(self, raw, expected):
        assert normalize_text(raw) == expected


class TestDetectContentEquivalence:
    """Test suite for content equivalence rules."""

    def test_text_matches_on_normalized_text(self, make_text):
        match = detect_content_equivalence(
            make_text("a1", "Hi!", handle="alice"), make_text("b1", "hi", handle="alice")
        )
        assert match is not None
        assert match.confidence == 1.0
        assert match.authoritative_guid == "b1"
        assert "same_normalized_text" in match.reasons

    def test_different_handle_never_matches(self, make_text):
        assert (
            detect_content_equivalence(
                make_text("a1", "hi", handle="alice"), make_text("b1", "hi", handle="bob")
            )
            is None
        )

    def test_different_kind_never_matches(self, make_text, make_media):
        assert detect_content_equivalence(make_text("a1"), make_media("b1")) is None

    def test_media_matches_on_media_id(self, make_media):
        assert detect_content_equivalence(make_media("a1", "att-9"), make_media("b1", "att-9"))
        assert detect_content_equivalence(make_media("a1", "att-9"), make_media("b1", "att-8")) is None

    def test_tapbacks_never_content_match(self, make_tapback):
        """Tapbacks are only reconciled by guid."""
        assert detect_content_equivalence(make_tapback("a1"), make_tapback("b1")) is None


class TestApplyAuthoritativeFields:
    def test_authoritative_timestamps_and_guid_win(self, make_text):
        primary = make_text("a1", "Hi!", handle="alice", dateRead=None)
        authoritative = make_text(
            "b1",
            "hi",
            handle="alice",
            date="2024-01-01T11:59:58Z",
            dateRead="2024-01-01T12:05:00Z",
            isRead=True,
            rowid=42,
        )

        merged = apply_authoritative_fields(primary, authoritative)

        assert isinstance(merged, TextMessage)
        assert merged.guid == "b1"
        assert merged.text == "Hi!"
        assert merged.date == datetime(2024, 1, 1, 11, 59, 58, tzinfo=UTC)
        assert merged.date_read == datetime(2024, 1, 1, 12, 5, tzinfo=UTC)
        assert merged.is_read is True
        assert merged.rowid == 42

    def test_reply_target_comes_from_authoritative(self, make_text):
        primary = make_text("a1", replyingTo={"sender": "bob", "text": "earlier"})
        authoritative = make_text("b1", replyingTo={"targetMessageGuid": "p:0/xyz"})

        merged = apply_authoritative_fields(primary, authoritative)

        assert merged.replying_to.sender == "bob"
        assert merged.replying_to.target_message_guid == "p:0/xyz"

    def test_primary_media_is_preserved(self, make_media):
        primary = make_media("a1", "att-1", media={"mimeType": "image/heic"})
        authoritative = make_media("b1", "att-1", media={"path": "/db/att-1.jpg"})

        merged = apply_authoritative_fields(primary, authoritative)

        assert isinstance(merged, MediaMessage)
        assert merged.media.mime_type == "image/heic"
        assert merged.media.path == "/tmp/attachments/att-1.jpg"


class TestReconcile:
    """Test suite for the reconcile entrypoint."""

    def test_content_match_takes_authoritative_guid(self, make_text):
        result = reconcile(
            [make_text("a1", "Hi!", handle="alice")],
            [make_text("b1", "hi", handle="alice")],
        )

        assert [m.guid for m in result.messages] == ["b1"]
        assert result.stats.content_matches == 1
        assert result.stats.exact_matches == 0
        assert result.stats.output_count == 1
        assert result.content_match_pairs[0].primary_guid == "a1"

    def test_exact_match_has_precedence_over_content_match(self, make_text):
        """A DB message with the same guid is never consumed by a content match."""
        primary = [make_text("a0", "hi"), make_text("g1", "hi")]
        authoritative = [make_text("g1", "hi")]

        result = reconcile(primary, authoritative)

        assert result.stats.exact_matches == 1
        assert result.stats.content_matches == 0
        assert result.stats.no_matches == 1
        assert sorted(m.guid for m in result.messages) == ["a0", "g1"]

    def test_no_data_loss_with_unmatched_on_both_sides(
        self, make_text, make_media, make_tapback
    ):
        primary = [make_text("c1", "only csv"), make_media("c2", "att-2"), make_text("x", "same")]
        authoritative = [make_text("d1", "only db"), make_tapback("d2"), make_text("x", "same")]

        result = reconcile(primary, authoritative)
        stats = result.stats

        assert stats.csv_count == 3
        assert stats.db_count == 3
        assert stats.output_count == 5
        assert stats.exact_matches == 1
        assert stats.no_matches == 2
        assert verify_no_data_loss(stats)
        guids = [m.guid for m in result.messages]
        assert len(guids) == len(set(guids))
        assert set(guids) == {"c1", "c2", "x", "d1", "d2"}

    def test_each_authoritative_message_matches_once(self, make_text):
        primary = [make_text("a1", "ok"), make_text("a2", "OK!")]
        authoritative = [make_text("b1", "ok")]

        result = reconcile(primary, authoritative)

        assert result.stats.content_matches == 1
        assert result.stats.no_matches == 1
        assert sorted(m.guid for m in result.messages) == ["a2", "b1"]

    def test_reconcile_is_idempotent(self, make_text, make_media):
        primary = [make_text("a1", "Hi!", handle="alice"), make_media("a2", "att-3")]
        authoritative = [make_text("b1", "hi", handle="alice"), make_text("b2", "db only")]

        first = reconcile(primary, authoritative).messages
        second = reconcile(first, authoritative).messages

        assert sorted(m.guid for m in first) == sorted(m.guid for m in second)
        assert {m.guid: m for m in first} == {m.guid: m for m in second}

    def test_reconcile_with_empty_authoritative_keeps_result(self, make_text, make_media):
        primary = [make_text("a1", "Hi!", handle="alice"), make_media("a2", "att-3")]
        authoritative = [make_text("b1", "hi", handle="alice"), make_text("b2", "db only")]
        result = reconcile(primary, authoritative).messages

        again = reconcile(result, [])

        assert [m.guid for m in result] == ["b1", "a2", "b2"]
        assert [m.guid for m in again.messages] == ["a2", "b1", "b2"]
        assert {m.guid: m for m in again.messages} == {m.guid: m for m in result}
        assert again.stats.no_matches == len(result)
        assert again.stats.output_count == len(result)

    def test_duplicate_guid_is_rejected(self, make_text):
        with pytest.raises(DuplicateGuidError) as exc_info:
            reconcile([make_text("a1"), make_text("a1", "again")], [])
        assert exc_info.value.key == "a1"
        assert exc_info.value.source == "primary"

    def test_empty_inputs(self):
        result = reconcile([], [])
        assert result.messages == []
        assert result.stats == MergeStats()


def test_verify_no_data_loss_detects_mismatch():
    stats = MergeStats(csv_count=2, db_count=1, output_count=2, exact_matches=1, no_matches=1)
    assert verify_no_data_loss(stats)
    assert not verify_no_data_loss(stats.model_copy(update={"output_count": 1}))


# =============================================================================
# PROPERTIES
# =============================================================================

# Small pools so generated collections overlap on guid and on content.
GUIDS = [f"g{i}" for i in range(8)]
HANDLES = ["alice", "bob"]
TEXTS = ["hi", "Hi!", "ok", "see you"]
MEDIA_IDS = ["att-1", "att-2"]


@composite
def generated_messages(draw, guid_prefix: str):
    guid = guid_prefix + draw(st.sampled_from(GUIDS))
    data = {
        "guid": guid,
        "date": "2024-01-01T12:00:00Z",
        "handle": draw(st.sampled_from(HANDLES)),
    }
    if draw(st.booleans()):
        data.update(messageKind="text", text=draw(st.sampled_from(TEXTS)))
    else:
        media_id = draw(st.sampled_from(MEDIA_IDS))
        data.update(
            messageKind="media",
            media={"id": media_id, "filename": f"{media_id}.jpg", "path": f"/tmp/{media_id}"},
        )
    return parse_message(data)


def collections(guid_prefix: str = ""):
    return st.lists(generated_messages(guid_prefix), max_size=8, unique_by=lambda m: m.guid)


@given(st.data())
def test_reconcile_never_loses_or_duplicates(data):
    # Shared prefix for some draws so exact guid matches occur too.
    primary = data.draw(collections(data.draw(st.sampled_from(["", "c-"]))))
    authoritative = data.draw(collections(data.draw(st.sampled_from(["", "d-"]))))

    result = reconcile(primary, authoritative)
    stats = result.stats
    guids = [m.guid for m in result.messages]
    content_matched = {pair.primary_guid for pair in result.content_match_pairs}

    assert verify_no_data_loss(stats)
    assert stats.output_count == (
        stats.exact_matches
        + stats.content_matches
        + stats.no_matches
        + (len(authoritative) - stats.matched_db_count)
    )
    assert len(guids) == len(set(guids))
    assert set(guids) == (
        {m.guid for m in authoritative} | ({m.guid for m in primary} - content_matched)
    )


@given(collections(), collections())
def test_reconcile_then_empty_merge_keeps_messages(primary, authoritative):
    result = reconcile(primary, authoritative).messages

    again = reconcile(result, []).messages

    assert {m.guid: m for m in again} == {m.guid: m for m in result}
    assert len(again) == len(result)
