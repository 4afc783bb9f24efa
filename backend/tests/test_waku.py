"""
Waku topic derivation and envelope tests.
"""

from app.services.waku import (
    CONTENT_TOPIC_PREFIX,
    build_broadcast_topic,
    build_direct_message_topic,
    build_group_topic,
    create_waku_envelope,
    fnv1a_32,
)


class TestFnv1a:
    def test_empty_string_is_offset_basis(self):
        assert fnv1a_32("") == "811c9dc5"

    def test_known_vector(self):
        # FNV-1a 32 of "a"
        assert fnv1a_32("a") == "e40c292c"

    def test_always_eight_hex_chars(self):
        for text in ["x", "alpha:beta", "ünïcödé"]:
            assert len(fnv1a_32(text)) == 8


class TestTopics:
    def test_direct_topic_is_symmetric(self):
        assert build_direct_message_topic("alpha", "beta") == build_direct_message_topic("beta", "alpha")

    def test_direct_topic_case_insensitive(self):
        assert build_direct_message_topic("Alpha", "BETA") == build_direct_message_topic("alpha", "beta")

    def test_direct_topic_shape(self):
        topic = build_direct_message_topic("alpha", "beta")
        assert topic == f"{CONTENT_TOPIC_PREFIX}/dm-{fnv1a_32('alpha:beta')}/proto"

    def test_group_topic_order_independent(self):
        assert build_group_topic(["c", "a", "b"]) == build_group_topic(["a", "b", "c"])
        assert build_group_topic(["a", "b"]).startswith(f"{CONTENT_TOPIC_PREFIX}/group-")

    def test_broadcast_topic(self):
        assert build_broadcast_topic("Alpha") == "/nftmail/1/broadcast-alpha/proto"

    def test_envelope(self):
        envelope = create_waku_envelope("alpha", "beta", "ciphertext", timestamp_ms=123)
        assert envelope.content_topic == build_direct_message_topic("alpha", "beta")
        assert envelope.timestamp == 123
        assert envelope.ephemeral is True
        assert envelope.version == 1

