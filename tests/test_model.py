"""
Typed schema tests: serialization order, round trips, range checks and
signed payloads.

Run with: pytest tests/test_model.py -v
"""

import pytest

from rift.cell import Address, Builder, Cell
from rift.crypto import KeyPair, verify_digest
from rift.errors import CellUnderflow, FieldRangeError
from rift.model import (
    Bits,
    Ref,
    Schema,
    SignedPayload,
    address,
    boolean,
    coins,
    int8,
    int257,
    maybe_ref,
    ref,
    uint8,
    uint32,
    uint64,
    uint256,
)


Point = Schema("Point", [("x", int8), ("y", int8)])
Everything = Schema(
    "Everything",
    [
        ("flag", boolean),
        ("small", uint8),
        ("big", uint256),
        ("signed", int257),
        ("amount", coins),
        ("owner", address),
        ("tag", Bits(12)),
        ("origin", Point),
        ("target", Ref(Point)),
        ("extra", maybe_ref),
        ("child", ref),
    ],
)

OWNER = Address(0, b"\x11" * 32)


def _everything(**overrides):
    values = dict(
        flag=True,
        small=255,
        big=(1 << 256) - 1,
        signed=-(1 << 256),
        amount=12345,
        owner=OWNER,
        tag="101010101010",
        origin=Point.new(x=-1, y=2),
        target=Point.new(x=3, y=-4),
        extra=None,
        child=Cell("1"),
    )
    values.update(overrides)
    return Everything.new(**values)


class TestSchemaLayout:
    """Tests for declaration-ordered serialization."""

    def test_fields_in_declaration_order(self):
        """Fields are written in the order they are declared."""
        Pair = Schema("Pair", [("a", uint8), ("b", uint8)])
        cell = Pair.as_cell(Pair.new(a=1, b=2))
        assert cell.bits == "00000001" + "00000010"

    def test_nested_schema_is_inlined(self):
        """A nested schema shares the parent cell."""
        Outer = Schema("Outer", [("p", Point)])
        cell = Outer.as_cell(Outer.new(p=Point.new(x=1, y=1)))
        assert len(cell.bits) == 16
        assert cell.refs == ()

    def test_ref_schema_uses_child(self):
        """Ref(schema) occupies exactly one reference."""
        Outer = Schema("Outer", [("p", Ref(Point))])
        cell = Outer.as_cell(Outer.new(p=Point.new(x=1, y=1)))
        assert cell.bits == ""
        assert len(cell.refs) == 1
        assert Point.parse(cell.refs[0]) == Point.new(x=1, y=1)

    def test_static_size(self):
        """Schemas know their fixed bit and ref usage."""
        assert Point.bits == 16
        assert Schema("S", [("a", address), ("b", uint64)]).bits == 267 + 64


class TestRoundTrip:
    """Tests for parse(as_cell(v)) == v."""

    def test_every_field_type(self):
        """All field types round trip, including extremes."""
        value = _everything()
        assert Everything.parse(Everything.as_cell(value)) == value

    def test_maybe_ref_present(self):
        """Maybe ^Cell round trips when present."""
        value = _everything(extra=Cell("0110"))
        assert Everything.parse(value.as_cell()) == value

    def test_address_none(self):
        """A None address round trips."""
        value = _everything(owner=None)
        assert Everything.parse(value.as_cell()).owner is None

    def test_bytes_bits(self):
        """Byte-aligned Bits fields load as bytes."""
        Blob = Schema("Blob", [("data", Bits(16))])
        value = Blob.new(data=b"\xbe\xef")
        assert Blob.parse(value.as_cell()).data == b"\xbe\xef"

    def test_parse_from_slice(self):
        """parse accepts a slice and consumes only the schema's fields."""
        cell = Builder().store_uint(7, 8).store_uint(9, 8).store_uint(1, 1).end_cell()
        Pair = Schema("Pair", [("a", uint8), ("b", uint8)])
        s = cell.begin_parse()
        assert s % Pair == Pair.new(a=7, b=9)
        assert s.read_bool() is True

    def test_cell_mod_operator(self):
        """``cell % Schema`` parses."""
        cell = Point.as_cell(Point.new(x=5, y=6))
        assert (cell % Point).y == 6

    def test_short_cell_underflows(self):
        """Parsing a cell that is too short fails loudly."""
        with pytest.raises(CellUnderflow):
            Point.parse(Cell("0000"))


class TestRecordChecks:
    """Tests for value validation."""

    def test_out_of_range_rejected(self):
        """Values outside the declared width are rejected on construction."""
        with pytest.raises(FieldRangeError):
            Point.new(x=128, y=0)
        with pytest.raises(FieldRangeError):
            Schema("U", [("v", uint32)]).new(v=-1)

    def test_missing_field(self):
        """Every non-optional field must be given."""
        with pytest.raises(FieldRangeError):
            Point.new(x=1)

    def test_maybe_ref_defaults_to_none(self):
        """Maybe ^Cell fields may be omitted."""
        M = Schema("M", [("c", maybe_ref)])
        assert M.new().c is None

    def test_unknown_field(self):
        """Unknown fields are rejected."""
        with pytest.raises(FieldRangeError):
            Point.new(x=1, y=1, z=1)

    def test_assignment_is_checked(self):
        """Assigning an out-of-range value raises."""
        p = Point.new(x=1, y=1)
        with pytest.raises(FieldRangeError):
            p.x = 300
        p.x = -128
        assert p.x == -128

    def test_replace(self):
        """replace() returns a new validated record."""
        p = Point.new(x=1, y=1)
        q = p.replace(y=7)
        assert (p.y, q.y) == (1, 7)

    def test_bits_width(self):
        """Bits fields require the exact width."""
        with pytest.raises(FieldRangeError):
            Schema("B", [("b", Bits(8))]).new(b="1")

    def test_reserved_names(self):
        """Names that clash with record helpers are refused."""
        with pytest.raises(ValueError):
            Schema("Bad", [("save", uint8)])
        with pytest.raises(ValueError):
            Schema("Bad", [("a", uint8), ("a", uint8)])

    def test_to_dict(self):
        """to_dict flattens nested records."""
        Outer = Schema("Outer", [("p", Point), ("n", uint8)])
        assert Outer.new(p=Point.new(x=1, y=2), n=3).to_dict() == {
            "p": {"x": 1, "y": 2},
            "n": 3,
        }


class TestSignedPayload:
    """Tests for signature-wrapped schemas."""

    Order = Schema("Order", [("seq_no", uint32), ("valid_until", uint32)])

    def test_sign_and_verify(self):
        """A signed record verifies against the signer's key only."""
        keys = KeyPair.from_seed(b"\x01" * 32)
        other = KeyPair.from_seed(b"\x02" * 32)
        signed = SignedPayload(self.Order)
        record = signed.sign(self.Order.new(seq_no=1, valid_until=100), keys.private_key)
        parsed = signed.parse(record.as_cell())
        assert parsed.seq_no == 1
        assert parsed.verify_signature(keys.public_key_int) is True
        assert parsed.verify_signature(other.public_key_int) is False

    def test_layout(self):
        """Signature comes first, then the payload inline."""
        keys = KeyPair.from_seed(b"\x01" * 32)
        signed = SignedPayload(self.Order)
        cell = signed.sign(self.Order.new(seq_no=1, valid_until=2), keys.private_key).as_cell()
        assert len(cell.bits) == 512 + 64
        assert cell.bits[512:] == self.Order.as_cell(self.Order.new(seq_no=1, valid_until=2)).bits

    def test_sign_cell_covers_tail(self):
        """sign_cell signs the payload together with appended bits and refs."""
        keys = KeyPair.from_seed(b"\x03" * 32)
        signed = SignedPayload(self.Order)
        tail = Builder().store_uint(3, 8).store_ref(Cell("1")).end_cell()
        body = signed.sign_cell(self.Order.new(seq_no=0, valid_until=9), keys.private_key, tail)

        s = body.begin_parse()
        signature = bytes(int(s.read(512), 2).to_bytes(64, "big"))
        region = s.to_cell()
        assert region.refs == (Cell("1"),)
        assert verify_digest(region.repr_hash, signature, keys.public_key)

        parsed = signed.parse(body)
        assert parsed.verify_signature(keys.public_key) is True

    def test_tampered_payload_fails(self):
        """Changing a signed field breaks verification."""
        keys = KeyPair.from_seed(b"\x01" * 32)
        signed = SignedPayload(self.Order)
        record = signed.sign(self.Order.new(seq_no=1, valid_until=100), keys.private_key)
        forged = signed.new(record.signature, self.Order.new(seq_no=2, valid_until=100))
        assert signed.parse(forged.as_cell()).verify_signature(keys.public_key) is False
