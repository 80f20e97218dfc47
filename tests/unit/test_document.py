"""
Unit tests for the snapshot document codec.
"""

import gzip
import json

import pytest

from recovery.safeback_server.engine.document import (
    ENGINE_VERSION,
    SnapshotDocument,
    decode_document,
    encode_document,
)
from recovery.safeback_server.registry import DomainSlice


def make_document():
    return SnapshotDocument(
        workspace_id="ws_1",
        snapshot_id="snap_1",
        created_at=1_704_067_200_000,
        snapshot_type="manual",
        providers={
            "workboard": DomainSlice(
                provider="workboard",
                version=1,
                data={"tasks": [{"id": "t1", "title": "Café"}], "goals": []},
            )
        },
        omitted=[{"provider": "team_chat", "error": "chat service unavailable"}],
    )


class TestSnapshotDocument:
    """Tests for SnapshotDocument encoding."""

    def test_canonical_encoding(self):
        """Encoding is compact JSON with sorted keys and UTF-8 text."""
        data, suffix = encode_document(make_document())

        assert suffix == ".json"
        text = data.decode("utf-8")
        assert text.startswith('{"created_at":1704067200000,"engine_version":2,')
        assert ": " not in text
        assert "Café" in text
        assert encode_document(make_document())[0] == data

    def test_gzip_encoding_decodes(self):
        data, suffix = encode_document(make_document(), compression="gzip")

        assert suffix == ".json.gz"
        assert json.loads(gzip.decompress(data))["snapshot_id"] == "snap_1"
        decoded = decode_document(data)
        assert decoded.providers["workboard"].data["tasks"][0]["title"] == "Café"

    def test_decode_inline_text(self):
        text = encode_document(make_document())[0].decode("utf-8")

        decoded = decode_document(text)

        assert decoded.engine_version == ENGINE_VERSION
        assert decoded.workspace_id == "ws_1"
        assert decoded.omitted == [{"provider": "team_chat", "error": "chat service unavailable"}]
        assert decoded.entity_counts == {"tasks": 1, "goals": 0}

    def test_manifest(self):
        manifest = make_document().manifest()

        assert manifest == {
            "engine_version": 2,
            "providers": ["workboard"],
            "entity_counts": {"tasks": 1, "goals": 0},
            "omitted": [{"provider": "team_chat", "error": "chat service unavailable"}],
        }

    def test_slice_carries_entity_counts(self):
        payload = json.loads(encode_document(make_document())[0])
        assert payload["providers"]["workboard"]["entity_counts"] == {"tasks": 1, "goals": 0}

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"snapshot_id": "x"}'])
    def test_invalid_payload_raises(self, payload):
        with pytest.raises(ValueError, match="Invalid snapshot document"):
            decode_document(payload)
