import pytest

from factoryplus_client.sparkplug.topic import Address, MessageType, Topic
from factoryplus_client.sparkplug.types import PayloadKind


def test_parse_node_topic():
    topic = Topic.parse("spBv1.0/Plant1/NDATA/Edge1")

    assert topic.group == "Plant1"
    assert topic.message_type is MessageType.NDATA
    assert topic.node == "Edge1"
    assert topic.device is None
    assert topic.kind is PayloadKind.DATA
    assert topic.address == Address("Plant1", "Edge1")
    assert str(topic) == "spBv1.0/Plant1/NDATA/Edge1"


def test_parse_device_topic():
    topic = Topic.parse("spBv1.0/Plant1/DBIRTH/Edge1/Press")

    assert topic.kind is PayloadKind.BIRTH
    assert topic.address == Address("Plant1", "Edge1", "Press")
    assert topic.to_string() == "spBv1.0/Plant1/DBIRTH/Edge1/Press"


@pytest.mark.parametrize(
    "text",
    [
        "spBv1.0/Plant1/NDATA/Edge1/Press",
        "spBv1.0/Plant1/DDATA/Edge1",
        "spAv1.0/Plant1/NDATA/Edge1",
        "spBv1.0/Plant1/NDATA",
        "spBv1.0/Plant1/STATE/Edge1",
        "spBv1.0/+/NDATA/Edge1",
        "spBv1.0//NDATA/Edge1",
        "spBv1.0/Plant1/NDATA/Edge1/Press/extra",
        "other/topic",
    ],
)
def test_parse_rejects_invalid_topics(text):
    with pytest.raises(ValueError):
        Topic.parse(text)


def test_message_type_kinds():
    assert MessageType.NCMD.kind is PayloadKind.COMMAND
    assert MessageType.DDEATH.kind is PayloadKind.DEATH
    assert MessageType.DDEATH.is_device
    assert not MessageType.NBIRTH.is_device
    assert MessageType.for_kind(PayloadKind.COMMAND, device=True) is MessageType.DCMD
    assert MessageType.for_kind(PayloadKind.BIRTH, device=False) is MessageType.NBIRTH


def test_address_relationships():
    node = Address("G", "N")
    device = node.child_device("D")

    assert device == Address("G", "N", "D")
    assert device.parent_node() == node
    assert device.is_child_of(node)
    assert not node.is_child_of(node)
    with pytest.raises(ValueError):
        device.child_device("E")


def test_address_wildcard_matching():
    assert Address("+", "N").matches(Address("G", "N"))
    assert Address("G", "+", "+").matches(Address("G", "N", "D"))
    assert not Address("G", "+", "+").matches(Address("G", "N"))
    assert not Address("G", "N").matches(Address("G", "N", "D"))
    assert not Address("G", "N").matches(Address("H", "N"))


def test_address_topic_and_filter():
    address = Address.parse("G/N/D")

    assert address.topic(MessageType.DDATA) == Topic("G", MessageType.DDATA, "N", "D")
    assert address.filter() == "spBv1.0/G/+/N/D"
    assert address.filter(MessageType.DCMD) == "spBv1.0/G/DCMD/N/D"
    with pytest.raises(ValueError):
        Address.parse("G")
