"""
Rift Binary Tree Cell Model

Cells are the universal serialization unit: an immutable node holding at most
1023 data bits and at most four ordered references to child cells. Builders
accumulate data and finalize into cells; slices are read cursors that decode
typed values and fail loudly on underrun.

    ┌──────────────┐  store_*   ┌──────────────┐  end_cell  ┌──────────┐
    │   Builder    │ ─────────▶ │   Builder    │ ─────────▶ │   Cell   │
    └──────────────┘            └──────────────┘            └────┬─────┘
                                                                 │ begin_parse
                                ┌──────────────┐  read_*         ▼
                                │    values    │ ◀───────── ┌──────────┐
                                └──────────────┘            │  Slice   │
                                                            └──────────┘

Also provides standard TON addresses (``addr_std``) and the bag-of-cells
(BOC) binary codec used to persist code and data.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, List, Optional, Sequence, Tuple, Union

from rift.errors import BocError, CellOverflow, CellUnderflow, FieldRangeError


MAX_BITS = 1023
MAX_REFS = 4
MAX_DEPTH = 1024

# addr_std$10 anycast:(Maybe Anycast) workchain_id:int8 address:bits256
ADDRESS_BITS = 2 + 1 + 8 + 256

BOC_MAGIC = bytes.fromhex("b5ee9c72")

_BIT_CHARS = frozenset("01")


def crc16(data: bytes) -> int:
    """CRC-16/XMODEM, as used by friendly addresses and get-method ids."""
    return binascii.crc_hqx(data, 0)


def _uint_bits(value: int, width: int) -> str:
    if width == 0:
        return ""
    return format(value, f"0{width}b")


# =============================================================================
# ADDRESS
# =============================================================================

@dataclass(frozen=True)
class Address:
    """
    Standard internal address (``addr_std`` without anycast).

    Raw form is ``<workchain>:<64 hex chars>``; the user-friendly form is the
    36-byte tag/workchain/account/crc16 layout encoded as base64url.
    """
    workchain: int
    account: bytes

    def __post_init__(self):
        if not -128 <= self.workchain <= 127:
            raise ValueError(f"Workchain must fit int8, got {self.workchain}")
        if len(self.account) != 32:
            raise ValueError(f"Account id must be 32 bytes, got {len(self.account)}")

    @classmethod
    def parse(cls, text: str) -> "Address":
        """Parse a raw (``0:abcd...``) or user-friendly address."""
        text = text.strip()
        if ":" in text:
            wc, _, account = text.partition(":")
            try:
                return cls(int(wc), bytes.fromhex(account.zfill(64)))
            except ValueError as e:
                raise ValueError(f"Invalid raw address: {text}") from e
        return cls._parse_friendly(text)

    @classmethod
    def _parse_friendly(cls, text: str) -> "Address":
        normalized = text.replace("+", "-").replace("/", "_")
        try:
            raw = base64.urlsafe_b64decode(normalized + "=" * (-len(normalized) % 4))
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid friendly address: {text}") from e
        if len(raw) != 36:
            raise ValueError(f"Friendly address must decode to 36 bytes, got {len(raw)}")
        if crc16(raw[:34]) != int.from_bytes(raw[34:], "big"):
            raise ValueError(f"Friendly address checksum mismatch: {text}")
        tag = raw[0] & 0x7F
        if tag not in (0x11, 0x51):
            raise ValueError(f"Unknown friendly address tag: 0x{raw[0]:02x}")
        workchain = int.from_bytes(raw[1:2], "big", signed=True)
        return cls(workchain, raw[2:34])

    @classmethod
    def from_int(cls, account: int, workchain: int = 0) -> "Address":
        return cls(workchain, account.to_bytes(32, "big"))

    def to_raw(self) -> str:
        return f"{self.workchain}:{self.account.hex()}"

    def to_friendly(self, bounceable: bool = True, testnet: bool = False) -> str:
        tag = 0x11 if bounceable else 0x51
        if testnet:
            tag |= 0x80
        body = bytes([tag]) + self.workchain.to_bytes(1, "big", signed=True) + self.account
        return base64.urlsafe_b64encode(body + crc16(body).to_bytes(2, "big")).decode("ascii")

    def to_bits(self) -> str:
        return "100" + _uint_bits(self.workchain & 0xFF, 8) + _uint_bits(
            int.from_bytes(self.account, "big"), 256
        )

    def __str__(self) -> str:
        return self.to_raw()


# =============================================================================
# CELL
# =============================================================================

@dataclass(frozen=True)
class Cell:
    """
    Immutable tree node: a bit string plus up to four child references.
    """
    bits: str = ""
    refs: Tuple["Cell", ...] = field(default_factory=tuple)

    def __post_init__(self):
        if len(self.bits) > MAX_BITS:
            raise CellOverflow(f"Cell holds at most {MAX_BITS} bits, got {len(self.bits)}")
        if len(self.refs) > MAX_REFS:
            raise CellOverflow(f"Cell holds at most {MAX_REFS} refs, got {len(self.refs)}")
        if not set(self.bits) <= _BIT_CHARS:
            raise ValueError("Cell bits must be a string of '0'/'1'")
        if not isinstance(self.refs, tuple):
            object.__setattr__(self, "refs", tuple(self.refs))
        for ref in self.refs:
            if not isinstance(ref, Cell):
                raise TypeError(f"Cell refs must be Cell, got {type(ref).__name__}")

    @classmethod
    def empty(cls) -> "Cell":
        return cls()

    @property
    def bit_length(self) -> int:
        return len(self.bits)

    @cached_property
    def depth(self) -> int:
        if not self.refs:
            return 0
        depth = 1 + max(ref.depth for ref in self.refs)
        if depth > MAX_DEPTH:
            raise CellOverflow(f"Cell tree deeper than {MAX_DEPTH}")
        return depth

    def descriptors(self) -> bytes:
        """Standard d1/d2 descriptor bytes (ordinary cell, level 0)."""
        n = len(self.bits)
        return bytes([len(self.refs), (n // 8) + ((n + 7) // 8)])

    def padded_data(self) -> bytes:
        """Data bytes with the completion tag applied to a partial last byte."""
        bits = self.bits
        if len(bits) % 8:
            bits += "1" + "0" * (7 - len(bits) % 8)
        if not bits:
            return b""
        return int(bits, 2).to_bytes(len(bits) // 8, "big")

    @cached_property
    def repr_hash(self) -> bytes:
        """SHA-256 representation hash."""
        h = hashlib.sha256()
        h.update(self.descriptors())
        h.update(self.padded_data())
        for ref in self.refs:
            h.update(ref.depth.to_bytes(2, "big"))
        for ref in self.refs:
            h.update(ref.repr_hash)
        return h.digest()

    @property
    def hash_int(self) -> int:
        return int.from_bytes(self.repr_hash, "big")

    def begin_parse(self) -> "Slice":
        return Slice(self)

    def to_boc(self) -> bytes:
        return serialize_boc([self])

    def to_boc_b64(self) -> str:
        return base64.b64encode(self.to_boc()).decode("ascii")

    @classmethod
    def from_boc(cls, data: bytes) -> "Cell":
        roots = deserialize_boc(data)
        if len(roots) != 1:
            raise BocError(f"Expected a single root, got {len(roots)}")
        return roots[0]

    @classmethod
    def from_boc_b64(cls, text: str) -> "Cell":
        try:
            data = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as e:
            raise BocError("Invalid base64 BOC") from e
        return cls.from_boc(data)

    def __mod__(self, schema):
        """Parse-as operator: ``cell % Schema``."""
        return schema.parse(self)

    def __repr__(self) -> str:
        return f"Cell(bits={len(self.bits)}, refs={len(self.refs)}, hash={self.repr_hash.hex()[:16]})"


# =============================================================================
# BUILDER
# =============================================================================

class Builder:
    """
    Accumulates bits and references for a new cell.

    Every store checks capacity before mutating, so a failed store leaves the
    builder unchanged.
    """

    def __init__(self, bits: str = "", refs: Sequence[Cell] = ()):
        self._bits = bits
        self._refs: List[Cell] = list(refs)

    @property
    def bits_used(self) -> int:
        return len(self._bits)

    @property
    def refs_used(self) -> int:
        return len(self._refs)

    def remaining_bits(self) -> int:
        return MAX_BITS - len(self._bits)

    def remaining_refs(self) -> int:
        return MAX_REFS - len(self._refs)

    def copy(self) -> "Builder":
        return Builder(self._bits, self._refs)

    def store_bits(self, bits: str) -> "Builder":
        if not set(bits) <= _BIT_CHARS:
            raise ValueError("Bits must be a string of '0'/'1'")
        if len(self._bits) + len(bits) > MAX_BITS:
            raise CellOverflow(
                f"Cannot store {len(bits)} bits: only {self.remaining_bits()} left"
            )
        self._bits += bits
        return self

    def store_uint(self, value: int, width: int) -> "Builder":
        if not 0 <= width <= 256:
            raise ValueError(f"uint width must be 0..256, got {width}")
        value = int(value)
        if not 0 <= value < (1 << width):
            raise FieldRangeError(f"uint{width}", "value out of range", value)
        return self.store_bits(_uint_bits(value, width))

    def store_int(self, value: int, width: int) -> "Builder":
        if not 1 <= width <= 257:
            raise ValueError(f"int width must be 1..257, got {width}")
        value = int(value)
        bound = 1 << (width - 1)
        if not -bound <= value < bound:
            raise FieldRangeError(f"int{width}", "value out of range", value)
        return self.store_bits(_uint_bits(value & ((1 << width) - 1), width))

    def store_bool(self, value: bool) -> "Builder":
        return self.store_bits("1" if value else "0")

    def store_coins(self, value: int) -> "Builder":
        """VarUInteger 16: 4-bit byte length followed by the value."""
        value = int(value)
        if not 0 <= value < (1 << 120):
            raise FieldRangeError("coins", "value out of range", value)
        length = (value.bit_length() + 7) // 8
        return self.store_bits(_uint_bits(length, 4) + _uint_bits(value, length * 8))

    def store_address(self, address: Optional[Address]) -> "Builder":
        if address is None:
            return self.store_bits("00")
        return self.store_bits(address.to_bits())

    def store_ref(self, cell: Cell) -> "Builder":
        if not isinstance(cell, Cell):
            raise TypeError(f"Expected Cell, got {type(cell).__name__}")
        if len(self._refs) >= MAX_REFS:
            raise CellOverflow(f"Cannot store ref: cell already holds {MAX_REFS}")
        self._refs.append(cell)
        return self

    def store_maybe_ref(self, cell: Optional[Cell]) -> "Builder":
        if cell is None:
            return self.store_bits("0")
        if len(self._refs) >= MAX_REFS:
            raise CellOverflow(f"Cannot store ref: cell already holds {MAX_REFS}")
        self.store_bits("1")
        return self.store_ref(cell)

    def store_slice(self, source: "Slice") -> "Builder":
        bits, refs = source.peek_remaining()
        if len(self._refs) + len(refs) > MAX_REFS:
            raise CellOverflow("Cannot store slice: too many refs")
        self.store_bits(bits)
        self._refs.extend(refs)
        return self

    def store_cell(self, cell: Cell) -> "Builder":
        """Inline a cell's bits and refs."""
        return self.store_slice(cell.begin_parse())

    def end_cell(self) -> Cell:
        return Cell(self._bits, tuple(self._refs))

    def __repr__(self) -> str:
        return f"Builder(bits={len(self._bits)}, refs={len(self._refs)})"


def begin_cell() -> Builder:
    return Builder()


# =============================================================================
# SLICE
# =============================================================================

class Slice:
    """
    Read cursor over a borrowed cell.
    """

    def __init__(self, cell: Cell, bit_pos: int = 0, ref_pos: int = 0):
        self.cell = cell
        self.bit_pos = bit_pos
        self.ref_pos = ref_pos

    def copy(self) -> "Slice":
        return Slice(self.cell, self.bit_pos, self.ref_pos)

    def remaining_bits(self) -> int:
        return len(self.cell.bits) - self.bit_pos

    def remaining_refs(self) -> int:
        return len(self.cell.refs) - self.ref_pos

    def is_empty(self) -> bool:
        return self.remaining_bits() == 0 and self.remaining_refs() == 0

    def peek_remaining(self) -> Tuple[str, Tuple[Cell, ...]]:
        return self.cell.bits[self.bit_pos:], self.cell.refs[self.ref_pos:]

    def preload(self, width: int) -> str:
        if width < 0:
            raise ValueError(f"Width must be non-negative, got {width}")
        if width > self.remaining_bits():
            raise CellUnderflow(
                f"Cannot read {width} bits: only {self.remaining_bits()} left"
            )
        return self.cell.bits[self.bit_pos:self.bit_pos + width]

    def read(self, width: int) -> str:
        bits = self.preload(width)
        self.bit_pos += width
        return bits

    def skip(self, width: int) -> "Slice":
        self.read(width)
        return self

    def preload_uint(self, width: int) -> int:
        bits = self.preload(width)
        return int(bits, 2) if bits else 0

    def read_uint(self, width: int) -> int:
        bits = self.read(width)
        return int(bits, 2) if bits else 0

    def read_int(self, width: int) -> int:
        value = self.read_uint(width)
        if width and value >= (1 << (width - 1)):
            value -= 1 << width
        return value

    def read_bool(self) -> bool:
        return self.read(1) == "1"

    def read_coins(self) -> int:
        length = self.read_uint(4)
        return self.read_uint(length * 8)

    def read_address(self) -> Optional[Address]:
        tag = self.read(2)
        if tag == "00":
            return None
        if tag != "10":
            raise CellUnderflow(f"Unsupported address tag {tag}")
        if self.read(1) != "0":
            raise CellUnderflow("Anycast addresses are not supported")
        workchain = self.read_int(8)
        account = self.read_uint(256).to_bytes(32, "big")
        return Address(workchain, account)

    def read_slice(self, width: int) -> "Slice":
        return Slice(Cell(self.read(width)))

    def read_ref(self) -> Cell:
        if self.remaining_refs() <= 0:
            raise CellUnderflow("No references left to read")
        cell = self.cell.refs[self.ref_pos]
        self.ref_pos += 1
        return cell

    def read_maybe_ref(self) -> Optional[Cell]:
        if self.read_bool():
            return self.read_ref()
        return None

    def end_parse(self) -> None:
        if not self.is_empty():
            raise CellUnderflow(
                f"Slice not fully consumed: {self.remaining_bits()} bits, "
                f"{self.remaining_refs()} refs left"
            )

    def to_cell(self) -> Cell:
        bits, refs = self.peek_remaining()
        return Cell(bits, refs)

    def __rshift__(self, field_type):
        """Consume operator: ``slice >> FieldType``."""
        return field_type.load(self)

    def __mod__(self, schema):
        """Parse-as operator: ``slice % Schema``."""
        return schema.parse(self)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Slice):
            return self.peek_remaining() == other.peek_remaining()
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Slice(bits={self.remaining_bits()}, refs={self.remaining_refs()})"


# =============================================================================
# BAG OF CELLS
# =============================================================================

def _byte_width(n: int) -> int:
    return max(1, (n.bit_length() + 7) // 8)


def _topological_order(roots: Sequence[Cell]) -> List[Cell]:
    """Unique cells, parents before children."""
    seen: Dict[bytes, Cell] = {}
    postorder: List[Cell] = []

    def visit(cell: Cell) -> None:
        key = cell.repr_hash
        if key in seen:
            return
        seen[key] = cell
        for ref in cell.refs:
            visit(ref)
        postorder.append(cell)

    for root in roots:
        visit(root)
    postorder.reverse()
    return postorder


def serialize_boc(roots: Sequence[Cell]) -> bytes:
    """
    Serialize cells to a bag-of-cells (no index, no CRC).
    """
    if not roots:
        raise BocError("BOC needs at least one root")
    cells = _topological_order(roots)
    index = {cell.repr_hash: i for i, cell in enumerate(cells)}
    size = _byte_width(len(cells))

    payload = bytearray()
    for cell in cells:
        payload += cell.descriptors()
        payload += cell.padded_data()
        for ref in cell.refs:
            payload += index[ref.repr_hash].to_bytes(size, "big")

    off = _byte_width(len(payload))
    out = bytearray(BOC_MAGIC)
    out.append(size & 0x07)
    out.append(off)
    out += len(cells).to_bytes(size, "big")
    out += len(roots).to_bytes(size, "big")
    out += (0).to_bytes(size, "big")
    out += len(payload).to_bytes(off, "big")
    for root in roots:
        out += index[root.repr_hash].to_bytes(size, "big")
    out += payload
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise BocError("Unexpected end of BOC data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def uint(self, n: int) -> int:
        return int.from_bytes(self.take(n), "big")


def _unpad(data: bytes, d2: int) -> str:
    if not data:
        return ""
    bits = format(int.from_bytes(data, "big"), f"0{len(data) * 8}b")
    if d2 % 2 == 0:
        return bits
    stripped = bits.rstrip("0")
    if not stripped:
        raise BocError("Missing completion tag in partial data")
    return stripped[:-1]


def deserialize_boc(data: bytes) -> List[Cell]:
    """Parse a bag-of-cells produced by :func:`serialize_boc` (or compatible)."""
    reader = _Reader(data)
    if reader.take(4) != BOC_MAGIC:
        raise BocError("Bad BOC magic")
    flags = reader.uint(1)
    has_idx = bool(flags & 0x80)
    size = flags & 0x07
    if not 1 <= size <= 4:
        raise BocError(f"Invalid ref size {size}")
    off = reader.uint(1)
    if not 1 <= off <= 8:
        raise BocError(f"Invalid offset size {off}")
    count = reader.uint(size)
    root_count = reader.uint(size)
    reader.uint(size)  # absent
    total = reader.uint(off)
    roots = [reader.uint(size) for _ in range(root_count)]
    if has_idx:
        reader.take(count * off)
    start = reader.pos

    raw: List[Tuple[str, List[int]]] = []
    for i in range(count):
        d1, d2 = reader.uint(1), reader.uint(1)
        ref_count = d1 & 0x07
        if d1 & 0x08 or ref_count > MAX_REFS:
            raise BocError(f"Unsupported cell descriptor 0x{d1:02x}")
        bits = _unpad(reader.take((d2 + 1) // 2), d2)
        refs = [reader.uint(size) for _ in range(ref_count)]
        for r in refs:
            if not i < r < count:
                raise BocError(f"Cell {i} has invalid ref index {r}")
        raw.append((bits, refs))
    if reader.pos - start != total:
        raise BocError("BOC cell data size mismatch")

    built: List[Optional[Cell]] = [None] * count
    for i in range(count - 1, -1, -1):
        bits, refs = raw[i]
        built[i] = Cell(bits, tuple(built[r] for r in refs))  # type: ignore[misc]

    for r in roots:
        if not 0 <= r < count:
            raise BocError(f"Invalid root index {r}")
    return [built[r] for r in roots]  # type: ignore[misc]


CellLike = Union[Cell, Slice]


def as_slice(value: CellLike) -> Slice:
    """Accept a cell or slice wherever a read cursor is expected."""
    if isinstance(value, Slice):
        return value
    if isinstance(value, Cell):
        return value.begin_parse()
    raise TypeError(f"Expected Cell or Slice, got {type(value).__name__}")
