# calllog/tests/test_serializer.py
import io
from dataclasses import dataclass

from calllog.serializer import (
    CIRCULAR_REFERENCE,
    EXCLUDED_CLASS,
    MAX_DEPTH_REACHED,
    TRUNCATED,
    ErrorNode,
    MappingNode,
    OpaqueNode,
    SafeSerializer,
    ScalarNode,
    SequenceNode,
    serialize,
    to_plain,
)


class Upload:
    def __init__(self, filename, content_type, size, is_empty):
        self.filename = filename
        self.content_type = content_type
        self.size = size
        self.is_empty = is_empty


class BrokenUpload:
    filename = "b.bin"
    content_type = "application/octet-stream"

    @property
    def size(self):
        raise RuntimeError("stream gone")


class Point:
    """Shapely-style point: coordinate, SRID and WKT accessors."""

    x = 1.5
    y = -2.0
    srid = 4326
    wkt = "POINT (1.5 -2)"
    is_empty = False

    @property
    def is_valid(self):
        raise ValueError("topology check failed")


class SecretBox:
    def __init__(self):
        self.secret = "do not reflect me"

    def __str__(self):
        return "SecretBox(...)"


@dataclass
class User:
    name: str
    age: int


class Described:
    def describe_for_log(self):
        return {"id": 7, "kind": "described"}


class Exploding:
    def __init__(self):
        self.ok = 1

    @property
    def bad(self):
        raise KeyError("nope")

    def __str__(self):
        raise RuntimeError("no str either")


class Slotted:
    __slots__ = ("a", "b")

    def __init__(self):
        self.a = 1


def test_none_and_scalars():
    assert serialize(None) == ScalarNode(None)
    assert serialize(3) == ScalarNode(3)
    assert serialize("x") == ScalarNode("x")
    assert serialize(True) == ScalarNode(True)


def test_mapping_preserves_order():
    node = serialize({"b": 1, "a": [1, 2]})
    assert isinstance(node, MappingNode)
    assert node.keys() == ["b", "a"]
    assert node.get("a") == SequenceNode((ScalarNode(1), ScalarNode(2)))


def test_upload_like_object():
    node = serialize(Upload("a.txt", "text/plain", 12, False))
    assert node == OpaqueNode(
        "MultipartFile",
        (("fileName", "a.txt"), ("contentType", "text/plain"), ("size", 12), ("isEmpty", False)),
    )


def test_upload_accessor_failure_is_isolated():
    node = serialize(BrokenUpload())
    assert isinstance(node, OpaqueNode)
    attrs = node.attrs
    assert attrs["fileName"] == "b.bin"
    assert attrs["contentType"] == "application/octet-stream"
    assert attrs["size"] == -1
    assert attrs["isEmpty"] == "unknown"


def test_geometry_like_object():
    node = serialize(Point())
    assert node.type_name == "Geometry"
    attrs = node.attrs
    assert attrs["x"] == 1.5
    assert attrs["y"] == -2.0
    assert attrs["srid"] == 4326
    assert attrs["wkt"] == "POINT (1.5 -2)"
    assert attrs["isEmpty"] is False
    assert attrs["isValid"] == "unknown"


def test_open_stream_is_not_read():
    buf = io.BytesIO(b"payload-bytes")
    node = serialize(buf)
    assert isinstance(node, OpaqueNode)
    assert node.type_name == "BytesIO"
    assert node.attrs["size"] == len(b"payload-bytes")
    assert buf.tell() == 0


def test_open_file_handle(tmp_path):
    p = tmp_path / "data.txt"
    p.write_text("hello")
    with open(p, "r", encoding="utf-8") as fh:
        node = serialize(fh)
        assert fh.tell() == 0
    attrs = node.attrs
    assert attrs["name"] == str(p)
    assert attrs["exists"] is True
    assert attrs["size"] == 5


def test_path_describes_file(tmp_path):
    p = tmp_path / "f.bin"
    p.write_bytes(b"1234")
    node = serialize(p)
    assert node.type_name == "File"
    assert node.attrs["name"] == "f.bin"
    assert node.attrs["isFile"] is True
    assert node.attrs["length"] == 4


def test_excluded_type_short_circuits_reflection():
    node = serialize({"box": SecretBox()}, excluded_type_names=["SecretBox"])
    box = node.get("box")
    assert box.type_name == EXCLUDED_CLASS
    assert box.attrs["_toString"] == "SecretBox(...)"
    assert box.attrs["_class"].endswith("SecretBox")
    assert "secret" not in box.attrs


def test_excluded_check_precedes_special_cases():
    node = serialize(Upload("a", "b", 1, False), excluded_type_names=["Upload"])
    assert node.type_name == EXCLUDED_CLASS


def test_self_reference_terminates():
    a = {"name": "a"}
    a["self"] = a
    node = serialize(a)
    inner = node.get("self")
    assert isinstance(inner, OpaqueNode)
    assert inner.type_name == CIRCULAR_REFERENCE


def test_mutual_reference_terminates():
    a, b = [], []
    a.append(b)
    b.append(a)
    node = serialize(a)
    assert node.items[0].items[0].type_name == CIRCULAR_REFERENCE


def test_shared_reference_is_not_a_cycle():
    shared = [1]
    node = serialize({"x": shared, "y": shared})
    assert node.get("x") == node.get("y") == SequenceNode((ScalarNode(1),))


def test_depth_bound():
    deep = current = {}
    for _ in range(30):
        current["next"] = {}
        current = current["next"]
    node = SafeSerializer(max_depth=3).serialize(deep)
    for _ in range(4):
        node = node.get("next")
    assert isinstance(node, OpaqueNode)
    assert node.type_name == MAX_DEPTH_REACHED


def test_dataclass_fields_are_reflected():
    node = serialize(User("alice", 30))
    plain = to_plain(node)
    assert plain["_class"].endswith("User")
    assert plain["name"] == "alice"
    assert plain["age"] == 30
    assert "_toString" in plain


def test_describe_capability_wins_over_reflection():
    plain = to_plain(serialize(Described()))
    assert plain["id"] == 7
    assert plain["kind"] == "described"


def test_unreadable_field_and_str_never_raise():
    class Holder:
        def __init__(self):
            self.inner = Exploding()

    plain = to_plain(serialize(Holder()))
    inner = plain["inner"]
    assert inner["ok"] == 1
    assert inner["_toString"].startswith("<")


def test_slots_are_reflected():
    plain = to_plain(serialize(Slotted()))
    assert plain["a"] == 1
    assert plain["b"].startswith("[inaccessible: AttributeError")


def test_exception_becomes_error_node():
    node = serialize(ValueError("bad input"))
    assert node == ErrorNode("ValueError", "bad input")


def test_generator_is_not_consumed():
    gen = (i for i in range(3))
    node = serialize(gen)
    assert node.type_name == "Iterator"
    assert next(gen) == 0


def test_long_sequence_is_truncated():
    node = SafeSerializer(max_items=5).serialize(list(range(8)))
    assert len(node) == 6
    marker = node.items[-1]
    assert marker.type_name == TRUNCATED
    assert marker.attrs["remaining"] == 3


def test_registry_extension():
    class Money:
        def __init__(self, cents):
            self.cents = cents

    s = SafeSerializer()
    s.registry.register(
        "money",
        lambda v: isinstance(v, Money),
        lambda v: OpaqueNode("Money", (("amount", v.cents / 100),)),
        before="resource",
    )
    assert s.registry.names()[0] == "money"
    assert s.serialize(Money(250)).attrs == {"amount": 2.5}


def test_raising_predicate_is_skipped():
    s = SafeSerializer()

    def _boom(_):
        raise RuntimeError("predicate failure")

    s.registry.register("boom", _boom, lambda v: OpaqueNode("never"), before="resource")
    assert s.serialize(5) == ScalarNode(5)


def test_to_plain_shapes():
    plain = to_plain(serialize({"u": Upload("a.txt", "text/plain", 0, True), "e": KeyError("k")}))
    assert plain["u"] == {
        "_type": "MultipartFile",
        "fileName": "a.txt",
        "contentType": "text/plain",
        "size": 0,
        "isEmpty": True,
    }
    assert plain["e"]["_type"] == "Error"
    assert plain["e"]["_class"] == "KeyError"


def test_colliding_keys_are_kept_apart():
    plain = to_plain(serialize({1: "a", "1": "b", "1 (str)": "c"}))
    assert plain["1"] == "a"
    assert plain["1 (str)"] == "b"
    assert sorted(plain.values()) == ["a", "b", "c"]
