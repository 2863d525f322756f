"""rift.messages

Message and StateInit layouts shared by the VM (implicit message headers)
and the harness (deploy messages).

Profile / invariants:
- Internal messages follow ``int_msg_info$0``: ihr_disabled, bounce, bounced,
  src, dest, value (coins, no extra currencies), ihr_fee, fwd_fee,
  created_lt:uint64, created_at:uint32.
- Inbound externals follow ``ext_in_msg_info$10``: src addr_none, dest,
  import_fee.
- ``init`` and ``body`` are always stored as references (``Either ^X``).
- StateInit carries only code and data: bits ``00110`` + refs (code, data).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from rift.cell import Address, Builder, Cell, Slice
from rift.model import Record, SignedRecord


def state_init(code: Cell, data: Cell) -> Cell:
    # split_depth:nothing special:nothing code:just data:just library:nothing
    return Builder().store_bits("00110").store_ref(code).store_ref(data).end_cell()


def contract_address(code: Cell, data: Cell, workchain: int = 0) -> Address:
    return Address(workchain, state_init(code, data).repr_hash)


def to_cell(value: Any) -> Cell:
    """Body/data conversion: records, cells, slices, builders and ``None``."""
    if value is None:
        return Cell()
    if isinstance(value, (Record, SignedRecord)):
        return value.as_cell()
    if isinstance(value, Cell):
        return value
    if isinstance(value, Slice):
        return value.to_cell()
    if isinstance(value, Builder):
        return value.end_cell()
    raise TypeError(f"Cannot convert {type(value).__name__} to a cell")


def _store_tail(b: Builder, init: Optional[Cell], body: Optional[Cell]) -> Cell:
    if init is None:
        b.store_bits("0")
    else:
        b.store_bits("11").store_ref(init)
    if body is None:
        b.store_bits("0")
    else:
        b.store_bits("1").store_ref(body)
    return b.end_cell()


def internal_message(
    dest: Address,
    value: int,
    body: Any = None,
    src: Optional[Address] = None,
    bounce: bool = True,
    bounced: bool = False,
    init: Optional[Cell] = None,
    created_lt: int = 0,
    created_at: int = 0,
) -> Cell:
    b = Builder()
    b.store_bits("0")
    b.store_bool(True)
    b.store_bool(bounce)
    b.store_bool(bounced)
    b.store_address(src)
    b.store_address(dest)
    b.store_coins(value)
    b.store_bits("0")
    b.store_coins(0)
    b.store_coins(0)
    b.store_uint(created_lt, 64)
    b.store_uint(created_at, 32)
    return _store_tail(b, init, None if body is None else to_cell(body))


def external_message(dest: Address, body: Any = None, init: Optional[Cell] = None) -> Cell:
    b = Builder()
    b.store_bits("10")
    b.store_address(None)
    b.store_address(dest)
    b.store_coins(0)
    return _store_tail(b, init, None if body is None else to_cell(body))


@dataclass(frozen=True)
class MessageHeader:
    kind: str
    dest: Optional[Address]
    body: Cell
    src: Optional[Address] = None
    value: int = 0
    bounce: bool = False
    bounced: bool = False
    init: Optional[Cell] = None
    created_lt: int = 0
    created_at: int = 0


def parse_message_header(cell: Cell) -> MessageHeader:
    """Decode an internal or inbound external message."""
    s = cell.begin_parse()
    if s.read(1) == "0":
        s.read_bool()
        bounce = s.read_bool()
        bounced = s.read_bool()
        src = s.read_address()
        dest = s.read_address()
        value = s.read_coins()
        if s.read_bool():
            s.read_ref()
        s.read_coins()
        s.read_coins()
        created_lt = s.read_uint(64)
        created_at = s.read_uint(32)
        init, body = _read_tail(s)
        return MessageHeader(
            kind="internal",
            dest=dest,
            body=body,
            src=src,
            value=value,
            bounce=bounce,
            bounced=bounced,
            init=init,
            created_lt=created_lt,
            created_at=created_at,
        )

    if s.read(1) != "0":
        raise ValueError("Outbound external messages are not inbound messages")
    tag = s.read(2)
    if tag == "01":
        s.read(s.read_uint(9))
    elif tag != "00":
        raise ValueError(f"Invalid external source address tag {tag}")
    dest = s.read_address()
    s.read_coins()
    init, body = _read_tail(s)
    return MessageHeader(kind="external_in", dest=dest, body=body, init=init)


def _read_tail(s: Slice):
    init = None
    if s.read_bool():
        if not s.read_bool():
            raise ValueError("Inline StateInit is not supported")
        init = s.read_ref()
    if s.read_bool():
        body = s.read_ref()
    else:
        body = s.to_cell()
    return init, body
