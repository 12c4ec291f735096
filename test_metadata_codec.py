"""Tests for the textual mapping and link records."""
from bot.services.metadata_codec import (
    MAX_TEXT_LENGTH,
    MessageLink,
    TopicMapping,
    decode_links,
    decode_metadata,
    encode_link,
    encode_links,
    encode_metadata,
    parse_group_id,
    sanitize_label,
)


def test_decode_full_record():
    mapping = decode_metadata("-100123;10:555;11:b777:vip")

    assert mapping.super_group_id == -100123
    assert mapping.user_of(10) == 555
    assert mapping.thread_of(777) == 11
    assert mapping.is_banned(11)
    assert not mapping.is_banned(10)
    assert mapping.topic_to_label == {11: "vip"}
    assert mapping.chat_to_label == {777: "vip"}


def test_encode_decode_keeps_bindings_bans_and_labels():
    mapping = TopicMapping(super_group_id=-100123)
    mapping.bind(10, 555)
    mapping.bind(11, 777, "vip")
    mapping.set_banned(11, True)

    text = encode_metadata(mapping)

    assert text == "-100123;10:555;11:b777:vip"
    assert decode_metadata(text) == mapping


def test_decode_empty_and_garbage():
    assert decode_metadata("") == TopicMapping()
    assert decode_metadata(None) == TopicMapping()

    mapping = decode_metadata("not-a-number;x:1;12;13:abc;14:b;15:900")
    assert mapping.super_group_id is None
    assert mapping.topic_to_chat == {15: 900}


def test_group_id_only_record():
    mapping = decode_metadata("-100123")

    assert mapping.super_group_id == -100123
    assert mapping.topic_to_chat == {}
    assert parse_group_id("-100123;10:555") == -100123
    assert parse_group_id("hello") is None


def test_bind_keeps_maps_mutual_inverses():
    mapping = TopicMapping(super_group_id=-1)
    mapping.bind(10, 555)
    mapping.bind(11, 555)  # chat moved to a new thread
    mapping.bind(11, 777)  # thread reassigned

    for topic_id, chat_id in mapping.topic_to_chat.items():
        assert mapping.thread_of(chat_id) == topic_id
    for chat_id, topic_id in mapping.chat_to_topic.items():
        assert mapping.user_of(topic_id) == chat_id
    assert mapping.thread_of(555) is None
    assert mapping.user_of(10) is None


def test_unbind_forgets_ban_and_label():
    mapping = decode_metadata("-1;10:b555:note")

    assert mapping.unbind(10) == 555
    assert mapping.thread_of(555) is None
    assert not mapping.is_banned(10)
    assert mapping.topic_to_label == {}
    assert mapping.unbind(10) is None


def test_encode_evicts_oldest_bindings_without_mutating():
    mapping = TopicMapping(super_group_id=-100123)
    for topic_id in range(1, 1001):
        mapping.bind(topic_id, 10_000_000 + topic_id)

    text = encode_metadata(mapping)

    assert len(text) <= MAX_TEXT_LENGTH
    decoded = decode_metadata(text)
    assert decoded.super_group_id == -100123
    assert 1000 in decoded.topic_to_chat
    assert 1 not in decoded.topic_to_chat
    assert len(mapping.topic_to_chat) == 1000


def test_labels_cannot_break_the_grammar():
    mapping = TopicMapping(super_group_id=-1)
    mapping.bind(10, 555, "a;b:c")

    assert sanitize_label("a;b:c") == "abc"
    assert decode_metadata(encode_metadata(mapping)).topic_to_label == {10: "abc"}


def test_json_document_round_trip():
    mapping = decode_metadata("-100123;10:555;11:b777:vip")
    document = mapping.to_json()

    assert document["superGroupChatId"] == -100123
    assert document["bannedTopics"] == ["11"]
    assert TopicMapping.from_json(document) == mapping
    assert TopicMapping.from_json({"topicToFromChat": [["x", 1], [2]]}) == TopicMapping()


def test_links_grammar():
    links = [MessageLink(10, 1001, 7), MessageLink(11, 1002, 8)]

    assert encode_link(links[0]) == "10-1001:7"
    assert encode_links(links) == "10-1001:7;11-1002:8"
    assert decode_links("10-1001:7;bad;11-x:3;11-1002:8;") == links
    assert decode_links("") == []


def test_links_drop_oldest_and_keep_newest():
    links = [MessageLink(10, 1000 + i, i) for i in range(50)]

    text = encode_links(links, limit=40)

    assert len(text) <= 40
    decoded = decode_links(text)
    assert decoded[-1] == links[-1]
    assert links[0] not in decoded


def test_message_link_json():
    link = MessageLink(10, 1001, 7)

    assert link.to_json() == {"topicId": 10, "topicMessageId": 1001, "pmMessageId": 7}
    assert MessageLink.from_json(link.to_json()) == link
    assert MessageLink.from_json({"topicId": 10}) is None
