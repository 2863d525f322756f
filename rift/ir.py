"""
Rift Intermediate Instruction Model

The stack-oriented instruction set emitted by the lowering engine and
executed by the Rift VM.

Instruction Categories:

    0x00-0x0F: Stack (NOP, PUSH, ROLL, DROP, SWAP, XCHG, BLKDROP, BLKDROP2, DUP)
    0x10-0x1F: Constants (PUSHINT, PUSHNULL, PUSHREF, PUSHSLICE)
    0x20-0x2F: Arithmetic (ADD, SUB, MUL, DIV, MOD, NEGATE, LSHIFT, RSHIFT, ...)
    0x30-0x3F: Comparison / logic (EQUAL, LESS, ..., AND, OR, NOT, SDEQ)
    0x40-0x4F: Builders (NEWC, ENDC, STU, STI, STREF, STSLICE, STGRAMS, STOPTREF)
    0x50-0x5F: Slices (CTOS, ENDS, LDU, LDI, LDREF, LDSLICE, ..., HASHSU)
    0x60-0x6F: Control (IFELSE, THROW, THROWIF, THROWIFNOT, RET)
    0x70-0x7F: Context / stdlib (GETDATA, SETDATA, NOW, ACCEPT, SENDRAWMSG, ...)
    0x90-0x9F: Crypto (CHKSIGNU)

Entry points use fixed calling conventions:

    recv_internal  (method id  0)   [msg_value, in_msg_cell, in_msg_body] -> []
    recv_external  (method id -1)   [0, in_msg_cell, in_msg_body]         -> []
    get methods    (crc16 | 0x10000) [arg_1 .. arg_n]                     -> [ret_1 .. ret_m]

Programs serialize to bytes and to a snake chain of cells so compiled code
can travel inside a StateInit.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from rift.cell import Cell, crc16, deserialize_boc, serialize_boc
from rift.errors import BocError, CellOverflow


# =============================================================================
# OPCODES
# =============================================================================

class Op(IntEnum):
    """Rift VM opcodes."""

    # Stack (0x00-0x0F)
    NOP = 0x00
    PUSH = 0x01
    ROLL = 0x02
    DROP = 0x03
    SWAP = 0x04
    XCHG = 0x05
    BLKDROP = 0x06
    BLKDROP2 = 0x07
    DUP = 0x08

    # Constants (0x10-0x1F)
    PUSHINT = 0x10
    PUSHNULL = 0x11
    PUSHREF = 0x12
    PUSHSLICE = 0x13

    # Arithmetic (0x20-0x2F)
    ADD = 0x20
    SUB = 0x21
    MUL = 0x22
    DIV = 0x23
    MOD = 0x24
    NEGATE = 0x25
    LSHIFT = 0x26
    RSHIFT = 0x27
    MIN = 0x28
    MAX = 0x29
    ABS = 0x2A

    # Comparison / logic (0x30-0x3F)
    EQUAL = 0x30
    NEQ = 0x31
    LESS = 0x32
    LEQ = 0x33
    GREATER = 0x34
    GEQ = 0x35
    AND = 0x36
    OR = 0x37
    XOR = 0x38
    NOT = 0x39
    ISNULL = 0x3A
    SDEQ = 0x3B

    # Builders (0x40-0x4F)
    NEWC = 0x40
    ENDC = 0x41
    STU = 0x42
    STI = 0x43
    STREF = 0x44
    STSLICE = 0x45
    STGRAMS = 0x46
    STOPTREF = 0x47

    # Slices (0x50-0x5F)
    CTOS = 0x50
    ENDS = 0x51
    LDU = 0x52
    LDI = 0x53
    LDREF = 0x54
    LDSLICE = 0x55
    LDGRAMS = 0x56
    LDMSGADDR = 0x57
    LDOPTREF = 0x58
    SBITS = 0x59
    SREFS = 0x5A
    HASHCU = 0x5B
    HASHSU = 0x5C

    # Control (0x60-0x6F)
    IFELSE = 0x60
    THROW = 0x61
    THROWIF = 0x62
    THROWIFNOT = 0x63
    RET = 0x64

    # Context / stdlib (0x70-0x7F)
    GETDATA = 0x70
    SETDATA = 0x71
    NOW = 0x72
    ACCEPT = 0x73
    SENDRAWMSG = 0x74
    MYADDR = 0x75
    BALANCE = 0x76

    # Crypto (0x90-0x9F)
    CHKSIGNU = 0x90


class Imm(Enum):
    """Immediate operand kinds."""
    INDEX = "index"    # u8 stack depth / count
    WIDTH = "width"    # u16 bit width
    INT = "int"        # length-prefixed two's complement
    CELL = "cell"      # length-prefixed BOC
    BLOCK = "block"    # nested instruction block
    CODE = "code"      # u16 exit code


@dataclass(frozen=True)
class OpSpec:
    immediates: Tuple[Imm, ...] = ()
    pops: int = 0
    pushes: int = 0


# Stack effects for fixed-arity ops. Stack manipulation ops (PUSH, ROLL,
# XCHG, BLKDROP, BLKDROP2, IFELSE) are scheduled explicitly by the lowering.
OP_SPECS: Dict[Op, OpSpec] = {
    Op.NOP: OpSpec(),
    Op.PUSH: OpSpec((Imm.INDEX,), 0, 1),
    Op.ROLL: OpSpec((Imm.INDEX,)),
    Op.DROP: OpSpec((), 1, 0),
    Op.SWAP: OpSpec((), 2, 2),
    Op.XCHG: OpSpec((Imm.INDEX,)),
    Op.BLKDROP: OpSpec((Imm.INDEX,)),
    Op.BLKDROP2: OpSpec((Imm.INDEX, Imm.INDEX)),
    Op.DUP: OpSpec((), 1, 2),

    Op.PUSHINT: OpSpec((Imm.INT,), 0, 1),
    Op.PUSHNULL: OpSpec((), 0, 1),
    Op.PUSHREF: OpSpec((Imm.CELL,), 0, 1),
    Op.PUSHSLICE: OpSpec((Imm.CELL,), 0, 1),

    Op.ADD: OpSpec((), 2, 1),
    Op.SUB: OpSpec((), 2, 1),
    Op.MUL: OpSpec((), 2, 1),
    Op.DIV: OpSpec((), 2, 1),
    Op.MOD: OpSpec((), 2, 1),
    Op.NEGATE: OpSpec((), 1, 1),
    Op.LSHIFT: OpSpec((), 2, 1),
    Op.RSHIFT: OpSpec((), 2, 1),
    Op.MIN: OpSpec((), 2, 1),
    Op.MAX: OpSpec((), 2, 1),
    Op.ABS: OpSpec((), 1, 1),

    Op.EQUAL: OpSpec((), 2, 1),
    Op.NEQ: OpSpec((), 2, 1),
    Op.LESS: OpSpec((), 2, 1),
    Op.LEQ: OpSpec((), 2, 1),
    Op.GREATER: OpSpec((), 2, 1),
    Op.GEQ: OpSpec((), 2, 1),
    Op.AND: OpSpec((), 2, 1),
    Op.OR: OpSpec((), 2, 1),
    Op.XOR: OpSpec((), 2, 1),
    Op.NOT: OpSpec((), 1, 1),
    Op.ISNULL: OpSpec((), 1, 1),
    Op.SDEQ: OpSpec((), 2, 1),

    Op.NEWC: OpSpec((), 0, 1),
    Op.ENDC: OpSpec((), 1, 1),
    Op.STU: OpSpec((Imm.WIDTH,), 2, 1),
    Op.STI: OpSpec((Imm.WIDTH,), 2, 1),
    Op.STREF: OpSpec((), 2, 1),
    Op.STSLICE: OpSpec((), 2, 1),
    Op.STGRAMS: OpSpec((), 2, 1),
    Op.STOPTREF: OpSpec((), 2, 1),

    Op.CTOS: OpSpec((), 1, 1),
    Op.ENDS: OpSpec((), 1, 0),
    Op.LDU: OpSpec((Imm.WIDTH,), 1, 2),
    Op.LDI: OpSpec((Imm.WIDTH,), 1, 2),
    Op.LDREF: OpSpec((), 1, 2),
    Op.LDSLICE: OpSpec((Imm.WIDTH,), 1, 2),
    Op.LDGRAMS: OpSpec((), 1, 2),
    Op.LDMSGADDR: OpSpec((), 1, 2),
    Op.LDOPTREF: OpSpec((), 1, 2),
    Op.SBITS: OpSpec((), 1, 1),
    Op.SREFS: OpSpec((), 1, 1),
    Op.HASHCU: OpSpec((), 1, 1),
    Op.HASHSU: OpSpec((), 1, 1),

    Op.IFELSE: OpSpec((Imm.BLOCK, Imm.BLOCK), 1, 0),
    Op.THROW: OpSpec((Imm.CODE,), 0, 0),
    Op.THROWIF: OpSpec((Imm.CODE,), 1, 0),
    Op.THROWIFNOT: OpSpec((Imm.CODE,), 1, 0),
    Op.RET: OpSpec(),

    Op.GETDATA: OpSpec((), 0, 1),
    Op.SETDATA: OpSpec((), 1, 0),
    Op.NOW: OpSpec((), 0, 1),
    Op.ACCEPT: OpSpec(),
    Op.SENDRAWMSG: OpSpec((), 2, 0),
    Op.MYADDR: OpSpec((), 0, 1),
    Op.BALANCE: OpSpec((), 0, 1),

    Op.CHKSIGNU: OpSpec((), 3, 1),
}

# Ops with observable side effects or that may abort; never pruned or reordered.
EFFECT_OPS = frozenset({
    Op.THROW, Op.THROWIF, Op.THROWIFNOT, Op.SETDATA, Op.ACCEPT, Op.SENDRAWMSG, Op.ENDS,
})

# Ops that cannot fault and have no effects; dropped when their results are unused.
# Arithmetic that can overflow 257 bits (ADD, SUB, MUL, NEGATE, ABS) is excluded.
PURE_OPS = frozenset({
    Op.PUSHINT, Op.PUSHNULL, Op.PUSHREF, Op.PUSHSLICE,
    Op.MIN, Op.MAX,
    Op.EQUAL, Op.NEQ, Op.LESS, Op.LEQ, Op.GREATER, Op.GEQ,
    Op.AND, Op.OR, Op.XOR, Op.NOT, Op.ISNULL, Op.SDEQ,
    Op.NEWC, Op.SBITS, Op.SREFS, Op.HASHCU, Op.HASHSU,
    Op.GETDATA, Op.NOW, Op.MYADDR, Op.BALANCE,
})


# =============================================================================
# GAS COSTS
# =============================================================================

class GasCosts:
    """Gas costs for VM operations."""

    ZERO = 0
    STACK = 1
    BASE = 2
    VERY_LOW = 3
    LOW = 5
    MID = 8

    CELL_CREATE = 500
    CELL_LOAD = 100
    HASH = 26
    SIG_VERIFY = 26
    SEND_MSG = 526

    @classmethod
    def for_op(cls, op: Op) -> int:
        """Get gas cost for an opcode."""
        costs = {
            Op.NOP: cls.ZERO,
            Op.PUSH: cls.STACK,
            Op.ROLL: cls.STACK,
            Op.DROP: cls.STACK,
            Op.SWAP: cls.STACK,
            Op.XCHG: cls.STACK,
            Op.DUP: cls.STACK,
            Op.BLKDROP: cls.STACK,
            Op.BLKDROP2: cls.STACK,
            Op.ADD: cls.VERY_LOW,
            Op.SUB: cls.VERY_LOW,
            Op.MUL: cls.LOW,
            Op.DIV: cls.LOW,
            Op.MOD: cls.LOW,
            Op.ENDC: cls.CELL_CREATE,
            Op.CTOS: cls.CELL_LOAD,
            Op.GETDATA: cls.BASE,
            Op.SETDATA: cls.BASE,
            Op.HASHCU: cls.HASH,
            Op.HASHSU: cls.HASH + cls.CELL_CREATE,
            Op.CHKSIGNU: cls.SIG_VERIFY,
            Op.SENDRAWMSG: cls.SEND_MSG,
            Op.IFELSE: cls.MID,
        }
        return costs.get(op, cls.BASE)


# =============================================================================
# INSTRUCTIONS, BLOCKS, PROGRAMS
# =============================================================================

@dataclass(frozen=True)
class Instr:
    """A single instruction: opcode plus immediate operands."""
    op: Op
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        spec = OP_SPECS[self.op]
        if len(self.args) != len(spec.immediates):
            raise ValueError(
                f"{self.op.name} takes {len(spec.immediates)} immediates, got {len(self.args)}"
            )

    def __str__(self) -> str:
        if not self.args or self.op == Op.IFELSE:
            return self.op.name
        return f"{self.op.name} {' '.join(_format_imm(a) for a in self.args)}"


Block = Tuple[Instr, ...]


def instr(op: Op, *args: Any) -> Instr:
    return Instr(op, tuple(args))


def _format_imm(value: Any) -> str:
    if isinstance(value, Cell):
        return f"x{{{value.repr_hash.hex()[:16]}}}"
    return str(value)


class EntryKind(Enum):
    INTERNAL = 0
    EXTERNAL = 1
    GET = 2


RECV_INTERNAL_ID = 0
RECV_EXTERNAL_ID = -1


def method_id(name: str) -> int:
    """Get-method id: ``(crc16(name) & 0xffff) | 0x10000``."""
    return (crc16(name.encode("utf-8")) & 0xFFFF) | 0x10000


@dataclass(frozen=True)
class Entry:
    """A lowered entry point."""
    name: str
    method_id: int
    kind: EntryKind
    block: Block
    params: int = 0
    returns: int = 0

    def instruction_count(self) -> int:
        return sum(1 for _ in iter_instructions(self.block))


@dataclass(frozen=True)
class Program:
    """A compiled contract: entry points keyed by method id."""
    entries: Tuple[Entry, ...] = field(default_factory=tuple)

    def __post_init__(self):
        ids = [e.method_id for e in self.entries]
        if len(ids) != len(set(ids)):
            raise ValueError("Duplicate method ids in program")

    def entry(self, key: Any) -> Optional[Entry]:
        """Look up an entry by method id or name."""
        for e in self.entries:
            if e.method_id == key or e.name == key:
                return e
        if isinstance(key, str):
            mid = method_id(key)
            for e in self.entries:
                if e.method_id == mid:
                    return e
        return None

    def get_methods(self) -> List[Entry]:
        return [e for e in self.entries if e.kind == EntryKind.GET]

    def encode(self) -> bytes:
        return ProgramCodec.encode(self)

    @classmethod
    def decode(cls, data: bytes) -> "Program":
        return ProgramCodec.decode(data)

    def to_cell(self) -> Cell:
        return ProgramCodec.to_cell(self)

    @classmethod
    def from_cell(cls, cell: Cell) -> "Program":
        return ProgramCodec.from_cell(cell)


def iter_instructions(block: Block) -> Iterator[Instr]:
    """Depth-first walk over a block and its nested continuations."""
    for ins in block:
        yield ins
        if ins.op == Op.IFELSE:
            for nested in ins.args:
                yield from iter_instructions(nested)


# =============================================================================
# CODEC
# =============================================================================

class ProgramCodec:
    """
    Binary program format.

        "RIFT" version:u8 entries:u16
        entry := kind:u8 method_id:i32 name_len:u8 name params:u8 returns:u8 block
        block := count:u16 instr*
        instr := op:u8 immediates
    """

    MAGIC = b"RIFT"
    VERSION = 1
    CHUNK_BYTES = 127

    @classmethod
    def encode(cls, program: Program) -> bytes:
        out = bytearray(cls.MAGIC)
        out.append(cls.VERSION)
        out += len(program.entries).to_bytes(2, "big")
        for entry in program.entries:
            name = entry.name.encode("utf-8")
            if len(name) > 255:
                raise ValueError(f"Entry name too long: {entry.name}")
            out.append(entry.kind.value)
            out += entry.method_id.to_bytes(4, "big", signed=True)
            out.append(len(name))
            out += name
            out.append(entry.params)
            out.append(entry.returns)
            cls._encode_block(out, entry.block)
        return bytes(out)

    @classmethod
    def _encode_block(cls, out: bytearray, block: Block) -> None:
        if len(block) > 0xFFFF:
            raise ValueError("Block too long")
        out += len(block).to_bytes(2, "big")
        for ins in block:
            out.append(ins.op.value)
            for kind, value in zip(OP_SPECS[ins.op].immediates, ins.args):
                if kind == Imm.INDEX:
                    if not 0 <= value <= 0xFF:
                        raise ValueError(f"{ins.op.name} index out of range: {value}")
                    out.append(value)
                elif kind == Imm.WIDTH:
                    out += value.to_bytes(2, "big")
                elif kind == Imm.CODE:
                    out += value.to_bytes(2, "big")
                elif kind == Imm.INT:
                    length = (value.bit_length() + 8) // 8
                    out.append(length)
                    out += value.to_bytes(length, "big", signed=True)
                elif kind == Imm.CELL:
                    boc = serialize_boc([value])
                    out += len(boc).to_bytes(4, "big")
                    out += boc
                elif kind == Imm.BLOCK:
                    cls._encode_block(out, value)

    @classmethod
    def decode(cls, data: bytes) -> Program:
        reader = _ByteReader(data)
        if reader.take(4) != cls.MAGIC:
            raise BocError("Not a Rift program")
        version = reader.u(1)
        if version != cls.VERSION:
            raise BocError(f"Unsupported program version {version}")
        entries = []
        for _ in range(reader.u(2)):
            try:
                kind = EntryKind(reader.u(1))
            except ValueError as e:
                raise BocError("Invalid entry kind") from e
            mid = int.from_bytes(reader.take(4), "big", signed=True)
            name = reader.take(reader.u(1)).decode("utf-8")
            params = reader.u(1)
            returns = reader.u(1)
            block = cls._decode_block(reader)
            entries.append(Entry(name, mid, kind, block, params, returns))
        if not reader.done():
            raise BocError("Trailing bytes after program")
        return Program(tuple(entries))

    @classmethod
    def _decode_block(cls, reader: "_ByteReader") -> Block:
        out = []
        for _ in range(reader.u(2)):
            byte = reader.u(1)
            try:
                op = Op(byte)
            except ValueError as e:
                raise BocError(f"Unknown opcode 0x{byte:02x}") from e
            args: List[Any] = []
            for kind in OP_SPECS[op].immediates:
                if kind == Imm.INDEX:
                    args.append(reader.u(1))
                elif kind in (Imm.WIDTH, Imm.CODE):
                    args.append(reader.u(2))
                elif kind == Imm.INT:
                    args.append(int.from_bytes(reader.take(reader.u(1)), "big", signed=True))
                elif kind == Imm.CELL:
                    roots = deserialize_boc(reader.take(reader.u(4)))
                    args.append(roots[0])
                elif kind == Imm.BLOCK:
                    args.append(cls._decode_block(reader))
            out.append(Instr(op, tuple(args)))
        return tuple(out)

    @classmethod
    def to_cell(cls, program: Program) -> Cell:
        """Pack the encoded program into a snake chain of cells."""
        data = cls.encode(program)
        chunks = [data[i:i + cls.CHUNK_BYTES] for i in range(0, len(data), cls.CHUNK_BYTES)]
        if len(chunks) > 1000:
            raise CellOverflow(f"Program too large for a cell chain ({len(data)} bytes)")
        cell: Optional[Cell] = None
        for chunk in reversed(chunks):
            bits = format(int.from_bytes(chunk, "big"), f"0{len(chunk) * 8}b")
            cell = Cell(bits, (cell,) if cell is not None else ())
        return cell if cell is not None else Cell()

    @classmethod
    def from_cell(cls, cell: Cell) -> Program:
        data = bytearray()
        current: Optional[Cell] = cell
        while current is not None:
            if len(current.bits) % 8:
                raise BocError("Code chunk is not byte aligned")
            if current.bits:
                data += int(current.bits, 2).to_bytes(len(current.bits) // 8, "big")
            if len(current.refs) > 1:
                raise BocError("Code chunk has more than one continuation")
            current = current.refs[0] if current.refs else None
        return cls.decode(bytes(data))


class _ByteReader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def take(self, n: int) -> bytes:
        if self.pos + n > len(self.data):
            raise BocError("Unexpected end of program data")
        chunk = self.data[self.pos:self.pos + n]
        self.pos += n
        return chunk

    def u(self, n: int) -> int:
        return int.from_bytes(self.take(n), "big")

    def done(self) -> bool:
        return self.pos == len(self.data)


# =============================================================================
# DISASSEMBLY
# =============================================================================

def disassemble(program: Program) -> str:
    """Human readable listing of every entry point."""
    lines: List[str] = []
    for entry in program.entries:
        lines.append(
            f"{entry.name} (id={entry.method_id}, {entry.kind.name.lower()}, "
            f"params={entry.params}, returns={entry.returns}):"
        )
        _disassemble_block(entry.block, 1, lines)
    return "\n".join(lines)


def _disassemble_block(block: Block, depth: int, lines: List[str]) -> None:
    pad = "  " * depth
    for ins in block:
        if ins.op == Op.IFELSE:
            then_block, else_block = ins.args
            lines.append(f"{pad}IFELSE {{")
            _disassemble_block(then_block, depth + 1, lines)
            lines.append(f"{pad}}} ELSE {{")
            _disassemble_block(else_block, depth + 1, lines)
            lines.append(f"{pad}}}")
        else:
            lines.append(f"{pad}{ins}")
