import pytest

from gmaps_crawler.decoder.pb import PbFieldType, PbTree, decode_pb, parse_path

SEARCH_PB = "!4m12!1m3!1d3000.5!2d14.42!3d50.08!2m3!1f0!2f0!3f0!3m2!1i1366!2i768!4f13.1!7i20!8i0!10b1"


def test_decode_encode_is_lossless() -> None:
    assert decode_pb(SEARCH_PB).encode() == SEARCH_PB


def test_url_encoded_input_is_unquoted() -> None:
    assert PbTree.decode(SEARCH_PB.replace("!", "%21")).encode() == SEARCH_PB


def test_typed_values() -> None:
    tree = decode_pb(SEARCH_PB)

    assert tree.get("!4m!1m!2d") == pytest.approx(14.42)
    assert tree.get("!4m!3m!1i") == 1366
    assert tree.get("!10b") is True
    assert tree.node("!7i").field_type == PbFieldType.INTEGER
    assert tree.get("!99s", "missing") == "missing"


def test_set_existing_leaf_keeps_the_rest() -> None:
    tree = decode_pb(SEARCH_PB)

    tree.set("!7i", 40)

    assert tree.encode() == SEARCH_PB.replace("!7i20", "!7i40")


def test_set_creates_messages_and_recounts() -> None:
    tree = decode_pb("!1m2!1sabc!2i3!3e1")

    tree.set("!1m!3s", "next")
    tree.set("!5m!1m!2b", True)

    assert tree.encode() == "!1m3!1sabc!2i3!3snext!3e1!5m2!1m1!2b1"
    assert decode_pb(tree.encode()).get("!1m!3s") == "next"


def test_string_values_keep_escaped_bangs() -> None:
    tree = decode_pb("!1sfoo*21bar!2i1")

    assert tree.get("!1s") == "foo*21bar"
    assert tree.encode() == "!1sfoo*21bar!2i1"


def test_message_value_returns_the_field() -> None:
    tree = decode_pb(SEARCH_PB)

    message = tree.get("!4m")

    assert message.is_message
    assert message.count_descendants() == 12


def test_invalid_tokens_raise() -> None:
    with pytest.raises(ValueError):
        decode_pb("!1sok!garbage")


def test_invalid_paths_raise() -> None:
    with pytest.raises(ValueError):
        parse_path("not a path")
    with pytest.raises(ValueError):
        parse_path("!1s!2i")
    with pytest.raises(ValueError):
        decode_pb("!1m1!1i0").set("!1m", 5)


def test_to_dict_shape() -> None:
    fields = decode_pb("!1m1!2sx!3e2").to_dict()

    assert fields[0]["children"][0] == {"field": 2, "type": "s", "type_name": "string", "value": "x"}
    assert fields[1]["value"] == 2
