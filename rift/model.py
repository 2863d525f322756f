"""
Rift Typed Schema Layer

Declarative record layouts that serialize to and from cells.

A ``Schema`` is a named, ordered list of ``(field name, field type)`` pairs.
Serialization follows declaration order; a nested schema used as a field type
is inlined into the parent cell, while ``Ref(schema)`` always occupies exactly
one child reference. ``parse`` is the exact inverse of ``as_cell``.

Field types only talk to their cursor through the ``read_*`` / ``store_*``
protocol. Concrete ``Slice``/``Builder`` objects and the symbolic
``SymSlice``/``SymBuilder`` used during tracing both implement it, so one
schema definition serves storage encoding, message construction in tests and
contract lowering.

Example:
    Data = Schema("Data", [("admin", address), ("value", UInt(64))])
    cell = Data.as_cell(Data.new(admin=addr, value=1))
    assert Data.parse(cell).value == 1

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rift.cell import ADDRESS_BITS, Address, Builder, Cell, Slice, as_slice
from rift.crypto import SIGNATURE_BITS, sign_digest, verify_digest
from rift.errors import FieldRangeError, SchemaMismatchError


def is_symbolic(value: Any) -> bool:
    return getattr(value, "__rift_symbolic__", False)


def _find_trace(values: Iterable[Any]):
    for value in values:
        if is_symbolic(value):
            return value.trace
        if isinstance(value, Record):
            found = _find_trace(value.values())
            if found is not None:
                return found
        if isinstance(value, SignedRecord):
            found = _find_trace([value.signature, value.payload])
            if found is not None:
                return found
    return None


# =============================================================================
# FIELD TYPES
# =============================================================================

class FieldType:
    """Base class for field types."""

    name = "field"
    # Static footprint, used for capacity accounting on symbolic builders.
    bits = 0
    refs = 0

    def load(self, cursor: Any) -> Any:
        raise NotImplementedError

    def store(self, builder: Any, value: Any) -> None:
        raise NotImplementedError

    def check(self, value: Any, field_name: str) -> None:
        """Validate a concrete value; symbolic values are checked while tracing."""

    def __repr__(self) -> str:
        return self.name


class UInt(FieldType):
    """Fixed-width unsigned integer."""

    def __init__(self, width: int):
        if not 0 < width <= 256:
            raise ValueError(f"uint width must be 1..256, got {width}")
        self.width = width
        self.bits = width
        self.name = f"uint{width}"

    def load(self, cursor: Any) -> Any:
        return cursor.read_uint(self.width)

    def store(self, builder: Any, value: Any) -> None:
        builder.store_uint(value, self.width)

    def check(self, value: Any, field_name: str) -> None:
        if is_symbolic(value):
            return
        if isinstance(value, bool) or not isinstance(value, int):
            raise FieldRangeError(field_name, f"expected int for {self.name}", value)
        if not 0 <= value < (1 << self.width):
            raise FieldRangeError(field_name, f"does not fit {self.name}", value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, UInt) and other.width == self.width

    def __hash__(self) -> int:
        return hash(("uint", self.width))


class Int(FieldType):
    """Fixed-width two's complement integer."""

    def __init__(self, width: int):
        if not 0 < width <= 257:
            raise ValueError(f"int width must be 1..257, got {width}")
        self.width = width
        self.bits = width
        self.name = f"int{width}"

    def load(self, cursor: Any) -> Any:
        return cursor.read_int(self.width)

    def store(self, builder: Any, value: Any) -> None:
        builder.store_int(value, self.width)

    def check(self, value: Any, field_name: str) -> None:
        if is_symbolic(value):
            return
        if isinstance(value, bool) or not isinstance(value, int):
            raise FieldRangeError(field_name, f"expected int for {self.name}", value)
        bound = 1 << (self.width - 1)
        if not -bound <= value < bound:
            raise FieldRangeError(field_name, f"does not fit {self.name}", value)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Int) and other.width == self.width

    def __hash__(self) -> int:
        return hash(("int", self.width))


class BoolType(FieldType):
    name = "bool"
    bits = 1

    def load(self, cursor: Any) -> Any:
        return cursor.read_bool()

    def store(self, builder: Any, value: Any) -> None:
        builder.store_bool(value)

    def check(self, value: Any, field_name: str) -> None:
        if not is_symbolic(value) and not isinstance(value, bool):
            raise FieldRangeError(field_name, "expected bool", value)


class CoinsType(FieldType):
    """``VarUInteger 16`` nanoton amounts."""

    name = "coins"
    bits = 4 + 120

    def load(self, cursor: Any) -> Any:
        return cursor.read_coins()

    def store(self, builder: Any, value: Any) -> None:
        builder.store_coins(value)

    def check(self, value: Any, field_name: str) -> None:
        if is_symbolic(value):
            return
        if isinstance(value, bool) or not isinstance(value, int):
            raise FieldRangeError(field_name, "expected int for coins", value)
        if not 0 <= value < (1 << 120):
            raise FieldRangeError(field_name, "does not fit coins", value)


class AddressType(FieldType):
    """``MsgAddressInt`` (``addr_std``); ``None`` encodes ``addr_none``."""

    name = "address"
    bits = ADDRESS_BITS

    def load(self, cursor: Any) -> Any:
        return cursor.read_address()

    def store(self, builder: Any, value: Any) -> None:
        builder.store_address(value)

    def check(self, value: Any, field_name: str) -> None:
        if value is None or is_symbolic(value) or isinstance(value, Address):
            return
        raise FieldRangeError(field_name, "expected Address or None", value)


class Bits(FieldType):
    """Fixed-width raw bit string (``bytes`` when width is a multiple of 8)."""

    def __init__(self, width: int):
        if not 0 < width <= 1023:
            raise ValueError(f"bits width must be 1..1023, got {width}")
        self.width = width
        self.bits = width
        self.name = f"bits{width}"

    def load(self, cursor: Any) -> Any:
        if isinstance(cursor, Slice):
            raw = cursor.read(self.width)
            if self.width % 8 == 0:
                return int(raw, 2).to_bytes(self.width // 8, "big")
            return raw
        return cursor.read_slice(self.width)

    def _check_symbolic(self, value: Any, field_name: str) -> None:
        if getattr(value, "kind", None) != "slice" or value.exact_bits != self.width:
            width = getattr(value, "exact_bits", None)
            got = f"{width}-bit slice" if width is not None else f"symbolic {value.kind}"
            raise SchemaMismatchError(f"{field_name}: cannot store {got} as {self.name}")

    def store(self, builder: Any, value: Any) -> None:
        if is_symbolic(value):
            self._check_symbolic(value, self.name)
            builder.store_slice(value)
        elif isinstance(value, bytes):
            builder.store_bits(format(int.from_bytes(value, "big"), f"0{len(value) * 8}b"))
        else:
            builder.store_bits(value)

    def check(self, value: Any, field_name: str) -> None:
        if is_symbolic(value):
            self._check_symbolic(value, field_name)
            return
        if isinstance(value, bytes):
            length = len(value) * 8
        elif isinstance(value, str):
            length = len(value)
        else:
            raise FieldRangeError(field_name, "expected bytes or bit string", value)
        if length != self.width:
            raise FieldRangeError(field_name, f"expected {self.width} bits, got {length}", value)


class RefCellType(FieldType):
    """Raw child cell reference."""

    name = "ref"
    refs = 1

    def load(self, cursor: Any) -> Any:
        return cursor.read_ref()

    def store(self, builder: Any, value: Any) -> None:
        builder.store_ref(value)

    def check(self, value: Any, field_name: str) -> None:
        if not is_symbolic(value) and not isinstance(value, Cell):
            raise FieldRangeError(field_name, "expected Cell", value)


class MaybeRefType(FieldType):
    """``Maybe ^Cell``: one presence bit plus an optional reference."""

    name = "maybe_ref"
    bits = 1
    refs = 1

    def load(self, cursor: Any) -> Any:
        return cursor.read_maybe_ref()

    def store(self, builder: Any, value: Any) -> None:
        builder.store_maybe_ref(value)

    def check(self, value: Any, field_name: str) -> None:
        if value is None or is_symbolic(value) or isinstance(value, Cell):
            return
        raise FieldRangeError(field_name, "expected Cell or None", value)


class Ref(FieldType):
    """A nested schema serialized into its own child cell."""

    refs = 1

    def __init__(self, schema: "Schema"):
        self.schema = schema
        self.name = f"^{schema.name}"

    def load(self, cursor: Any) -> Any:
        return self.schema.parse(cursor.read_ref())

    def store(self, builder: Any, value: Any) -> None:
        builder.store_ref(self.schema.as_cell(value))

    def check(self, value: Any, field_name: str) -> None:
        self.schema.check(value, field_name)


uint8 = UInt(8)
uint16 = UInt(16)
uint32 = UInt(32)
uint64 = UInt(64)
uint256 = UInt(256)
int8 = Int(8)
int32 = Int(32)
int64 = Int(64)
int257 = Int(257)
boolean = BoolType()
coins = CoinsType()
address = AddressType()
ref = RefCellType()
maybe_ref = MaybeRefType()


# =============================================================================
# RECORDS
# =============================================================================

class Record:
    """
    An instance of a schema.

    Field values are plain Python values (``int``, ``Address``, ``Cell``,
    nested ``Record``) or symbolic values while tracing. Records are mutable
    so contract bodies can assign storage fields before saving.
    """

    def __init__(self, schema: "Schema", values: Dict[str, Any]):
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_values", dict(values))

    @property
    def schema(self) -> "Schema":
        return self._schema

    def __getattr__(self, name: str) -> Any:
        values = object.__getattribute__(self, "_values")
        if name in values:
            return values[name]
        raise AttributeError(f"{self._schema.name} has no field '{name}'")

    def __setattr__(self, name: str, value: Any) -> None:
        if name not in self._values:
            raise AttributeError(f"{self._schema.name} has no field '{name}'")
        self._schema.field_type(name).check(value, f"{self._schema.name}.{name}")
        self._values[name] = value

    def values(self) -> List[Any]:
        return [self._values[name] for name, _ in self._schema.fields]

    def to_dict(self) -> Dict[str, Any]:
        return {
            name: v.to_dict() if isinstance(v, Record) else v
            for name, v in self._values.items()
        }

    def replace(self, **changes: Any) -> "Record":
        values = dict(self._values)
        values.update(changes)
        return self._schema.new(**values)

    def as_cell(self) -> Any:
        return self._schema.as_cell(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self._schema is other._schema and self._values == other._values

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"{self._schema.name}({inner})"


# =============================================================================
# SCHEMA
# =============================================================================

_RESERVED = frozenset({"schema", "values", "to_dict", "replace", "as_cell", "save"})

class Schema(FieldType):
    """
    Named, ordered list of typed fields.

    Used as a field type, a schema is inlined into the parent cell.
    """

    def __init__(
        self,
        name: str,
        fields: Union[Sequence[Tuple[str, FieldType]], Dict[str, FieldType]],
    ):
        items = list(fields.items()) if isinstance(fields, dict) else list(fields)
        seen = set()
        for field_name, field_type in items:
            if field_name in seen:
                raise ValueError(f"Duplicate field '{field_name}' in schema {name}")
            if field_name.startswith("_"):
                raise ValueError(f"Field names cannot start with '_': {field_name}")
            if field_name in _RESERVED:
                raise ValueError(f"Field name '{field_name}' is reserved")
            if not isinstance(field_type, FieldType):
                raise TypeError(f"Field '{field_name}' type must be a FieldType, got {field_type!r}")
            seen.add(field_name)
        self.name = name
        self.fields: Tuple[Tuple[str, FieldType], ...] = tuple(items)
        self._types = dict(items)
        self.bits = sum(t.bits for _, t in items)
        self.refs = sum(t.refs for _, t in items)

    @property
    def field_names(self) -> List[str]:
        return [name for name, _ in self.fields]

    def field_type(self, name: str) -> FieldType:
        try:
            return self._types[name]
        except KeyError:
            raise AttributeError(f"{self.name} has no field '{name}'") from None

    def new(self, **values: Any) -> Record:
        unknown = set(values) - set(self._types)
        if unknown:
            raise FieldRangeError(self.name, f"unknown fields {sorted(unknown)}")
        out = {}
        for field_name, field_type in self.fields:
            if field_name in values:
                value = values[field_name]
            elif isinstance(field_type, MaybeRefType):
                value = None
            else:
                raise FieldRangeError(f"{self.name}.{field_name}", "missing value")
            field_type.check(value, f"{self.name}.{field_name}")
            out[field_name] = value
        return Record(self, out)

    __call__ = new

    def check(self, value: Any, field_name: str) -> None:
        if not isinstance(value, Record) or value.schema is not self:
            raise FieldRangeError(field_name, f"expected {self.name} record", value)

    # -- serialization -------------------------------------------------------

    def store(self, builder: Any, value: Any) -> None:
        self.check(value, self.name)
        for field_name, field_type in self.fields:
            try:
                field_type.store(builder, getattr(value, field_name))
            except FieldRangeError as e:
                raise FieldRangeError(f"{self.name}.{field_name}", e.message, e.value) from e
            except SchemaMismatchError as e:
                e.message = f"{self.name}.{field_name}: {e.message}"
                raise e.with_context()

    def load(self, cursor: Any) -> Record:
        values = {}
        for field_name, field_type in self.fields:
            values[field_name] = field_type.load(cursor)
        return Record(self, values)

    def as_cell(self, value: Record) -> Any:
        trace = _find_trace(value.values()) if isinstance(value, Record) else None
        builder = trace.new_builder() if trace is not None else Builder()
        self.store(builder, value)
        return builder.end_cell()

    def parse(self, source: Any) -> Record:
        if is_symbolic(source):
            return self.load(source.as_slice())
        return self.load(as_slice(source))

    def __repr__(self) -> str:
        inner = ", ".join(f"{n}: {t!r}" for n, t in self.fields)
        return f"Schema {self.name}({inner})"


# =============================================================================
# SIGNED PAYLOADS
# =============================================================================

class SignedRecord:
    """
    A payload record together with its signature.

    ``region`` is the cursor positioned at the start of the signed region
    when the record was parsed; freshly signed records hash the payload cell.
    Field access falls through to the payload.
    """

    def __init__(self, wrapper: "SignedPayload", signature: Any, payload: Record, region: Any = None):
        self.wrapper = wrapper
        self.signature = signature
        self.payload = payload
        self.region = region

    def __getattr__(self, name: str) -> Any:
        if name in ("wrapper", "signature", "payload", "region"):
            raise AttributeError(name)
        return getattr(self.payload, name)

    def signed_hash(self) -> Any:
        if self.region is None:
            return self.wrapper.schema.as_cell(self.payload).repr_hash
        if is_symbolic(self.region):
            return self.region.hash()
        return self.region.to_cell().repr_hash

    def verify_signature(self, public_key: Any) -> Any:
        """
        Check the signature over the signed region's hash.

        Returns ``bool`` for concrete records and a symbolic boolean while
        tracing. Never accepts or rejects the message by itself.
        """
        if is_symbolic(self.region) or is_symbolic(public_key) or is_symbolic(self.signature):
            trace = _find_trace([self.region, public_key, self.signature])
            return trace.check_signature(self.signed_hash(), self.signature, public_key)
        signature = self.signature
        if isinstance(signature, str):
            signature = int(signature, 2).to_bytes(len(signature) // 8, "big")
        return verify_digest(self.signed_hash(), signature, public_key)

    def as_cell(self) -> Any:
        return self.wrapper.as_cell(self)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignedRecord):
            return NotImplemented
        return self.signature == other.signature and self.payload == other.payload

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Signed({self.payload!r})"


class SignedPayload(FieldType):
    """
    Signature-wrapped schema: a 512-bit Ed25519 signature followed by the
    payload fields inline. The signed region is the remainder of the cell.
    """

    def __init__(self, schema: Schema):
        self.schema = schema
        self.name = f"Signed[{schema.name}]"
        self.signature_type = Bits(SIGNATURE_BITS)
        self.bits = SIGNATURE_BITS + schema.bits
        self.refs = schema.refs

    def new(self, signature: Any, payload: Record) -> SignedRecord:
        self.signature_type.check(signature, f"{self.name}.signature")
        self.schema.check(payload, f"{self.name}.payload")
        return SignedRecord(self, signature, payload)

    def sign(self, payload: Record, private_key: bytes) -> SignedRecord:
        digest = self.schema.as_cell(payload).repr_hash
        return SignedRecord(self, sign_digest(digest, private_key), payload)

    def sign_cell(self, payload: Record, private_key: bytes, tail: Optional[Cell] = None) -> Cell:
        """
        Sign ``payload`` followed by the bits and refs of ``tail``.

        The signed region runs to the end of the cell, so anything appended
        after the payload (send modes, message refs) is covered too.
        """
        region = Builder()
        self.schema.store(region, payload)
        if tail is not None:
            region.store_cell(tail)
        region_cell = region.end_cell()
        signature = sign_digest(region_cell.repr_hash, private_key)
        out = Builder()
        self.signature_type.store(out, signature)
        return out.store_cell(region_cell).end_cell()

    def check(self, value: Any, field_name: str) -> None:
        if not isinstance(value, SignedRecord) or value.wrapper is not self:
            raise FieldRangeError(field_name, f"expected {self.name} record", value)

    def load(self, cursor: Any) -> SignedRecord:
        signature = self.signature_type.load(cursor)
        region = cursor.copy()
        payload = self.schema.load(cursor)
        return SignedRecord(self, signature, payload, region)

    def store(self, builder: Any, value: Any) -> None:
        self.check(value, self.name)
        self.signature_type.store(builder, value.signature)
        self.schema.store(builder, value.payload)

    def as_cell(self, value: SignedRecord) -> Any:
        trace = _find_trace([value])
        builder = trace.new_builder() if trace is not None else Builder()
        self.store(builder, value)
        return builder.end_cell()

    def parse(self, source: Any) -> SignedRecord:
        if is_symbolic(source):
            return self.load(source.as_slice())
        return self.load(as_slice(source))
