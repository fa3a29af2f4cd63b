"""Tests for the Event Decoder."""

import json

import pytest

from factories import frame, profile_event
from imposter_guard.errors import DecodeError
from imposter_guard.moderation.decoder import decode_event, parse_event
from imposter_guard.moderation.models import EventKind, Label, Operation


class TestDecodeValidEvents:
    def test_profile_update_decodes_fully(self):
        result = decode_event(frame(profile_event("did:plc:AAA", "Elon Musk")))

        assert result.ok
        assert result.actionable
        event = result.event
        assert event.did == "did:plc:AAA"
        assert event.time_us == 1725911162329308
        assert event.kind is EventKind.COMMIT
        assert event.commit.operation is Operation.UPDATE
        assert event.commit.collection == "app.bsky.actor.profile"
        assert event.commit.rkey == "self"
        record = event.commit.record
        assert record.display_name == "Elon Musk"
        assert record.description == "not who you think"
        assert record.avatar.mime_type == "image/jpeg"
        assert record.avatar.size == 79776
        assert record.avatar.link.startswith("bafkrei")
        assert record.banner is None
        assert record.labels == ()

    def test_bytes_payload(self):
        raw = frame(profile_event("did:plc:AAA", "Elon Musk")).encode("utf-8")
        assert decode_event(raw).actionable

    def test_missing_display_name_is_empty(self):
        result = decode_event(frame(profile_event("did:plc:AAA", None)))
        assert result.ok
        assert result.event.commit.record.display_name == ""

    def test_non_commit_kind_is_not_actionable(self):
        result = decode_event(frame(profile_event("did:plc:AAA", "Elon Musk", kind="identity")))
        assert result.ok
        assert not result.actionable
        assert result.event.kind is EventKind.OTHER
        assert result.event.kind_raw == "identity"
        assert result.event.commit is None

    def test_labeled_record_is_not_actionable(self):
        labels = [{"val": "impersonation"}]
        result = decode_event(frame(profile_event("did:plc:AAA", "Elon Musk", labels=labels)))
        assert result.ok
        assert not result.actionable
        assert result.event.commit.record.labels == (Label(val="impersonation"),)

    def test_self_labels_object_is_not_actionable(self):
        labels = {"$type": "com.atproto.label.defs#selfLabels", "values": [{"val": "!no-unauthenticated"}]}
        result = decode_event(frame(profile_event("did:plc:AAA", "Elon Musk", labels=labels)))
        assert result.ok
        assert not result.actionable

    def test_empty_labels_are_actionable(self):
        assert decode_event(frame(profile_event("did:plc:AAA", "Elon Musk", labels=[]))).actionable
        empty_self = {"$type": "com.atproto.label.defs#selfLabels", "values": []}
        assert decode_event(frame(profile_event("did:plc:AAA", "Elon Musk", labels=empty_self))).actionable

    def test_delete_without_record_is_not_actionable(self):
        doc = profile_event("did:plc:AAA", "Elon Musk", operation="delete")
        del doc["commit"]["record"]
        del doc["commit"]["cid"]
        result = decode_event(frame(doc))
        assert result.ok
        assert result.event.commit.operation is Operation.DELETE
        assert result.event.commit.record is None
        assert not result.actionable

    def test_other_collection_is_not_actionable(self):
        doc = profile_event("did:plc:AAA", "Elon Musk", collection="app.bsky.feed.post")
        result = decode_event(frame(doc))
        assert result.ok
        assert not result.actionable

    def test_unknown_top_level_fields_ignored(self):
        doc = profile_event("did:plc:AAA", "Elon Musk")
        doc["extra"] = {"anything": [1, 2, 3]}
        assert decode_event(frame(doc)).actionable


class TestDecodeFailures:
    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            None,
            b"\xff\xfe\x00garbage",
            "not json at all",
            "{",
            "[]",
            "42",
            "null",
            '"a string"',
            json.dumps({"did": "did:plc:AAA"}),
            json.dumps({"did": "", "time_us": 1, "kind": "commit"}),
            json.dumps({"did": "did:plc:AAA", "time_us": "soon", "kind": "commit"}),
            json.dumps({"did": "did:plc:AAA", "time_us": True, "kind": "commit"}),
            json.dumps({"did": 7, "time_us": 1, "kind": "commit"}),
            "[" * 100000 + "]" * 100000,
        ],
    )
    def test_malformed_payloads_never_raise(self, raw):
        result = decode_event(raw)
        assert not result.ok
        assert not result.actionable
        assert result.error
        assert result.payload == raw

    def test_commit_kind_without_commit_is_malformed(self):
        doc = {"did": "did:plc:AAA", "time_us": 1, "kind": "commit"}
        result = decode_event(frame(doc))
        assert not result.ok
        assert "commit" in result.error

    def test_unknown_operation_is_malformed(self):
        doc = profile_event("did:plc:AAA", "Elon Musk", operation="upsert")
        assert not decode_event(frame(doc)).ok

    def test_record_wrong_type_is_malformed(self):
        doc = profile_event("did:plc:AAA", "Elon Musk")
        doc["commit"]["record"] = "not an object"
        assert not decode_event(frame(doc)).ok

    def test_non_string_display_name_is_malformed(self):
        doc = profile_event("did:plc:AAA", "Elon Musk")
        doc["commit"]["record"]["displayName"] = ["Elon", "Musk"]
        result = decode_event(frame(doc))
        assert not result.ok
        assert "displayName" in result.error

    def test_bad_blob_is_malformed(self):
        doc = profile_event("did:plc:AAA", "Elon Musk")
        doc["commit"]["record"]["banner"] = "https://example.com/banner.png"
        assert not decode_event(frame(doc)).ok

    def test_parse_event_raises_decode_error(self):
        with pytest.raises(DecodeError) as exc:
            parse_event("{}")
        assert exc.value.reason
