"""
Rift Tracer

Runs a contract entry point against symbolic stand-ins and records every
operation on them into a trace tree.

Symbolic values (``SymInt``, ``SymBool``, ``SymCell``, ``SymSlice``,
``SymAddress``, ``SymBuilder``) expose a closed capability set: arithmetic,
comparison, field access, slice consumption (``>>``) and schema casts (``%``).
Each operation appends a node to the active path instead of computing a
result.

Control flow:

    if cond:          cond is symbolic -> fork. The body is re-run once per
                      decision prefix; every branch becomes an IFELSE whose
                      two continuations each run to the end of the method.

    assert_(c, e)     THROWIFNOT e; tracing continues on the true branch.

    while s.remaining_refs():
                      unrolls until the slice has statically consumed the
                      four-reference maximum, after which the condition is
                      concretely 0.

A branch site repeated more than ``tracer.loop_unroll_limit`` times on one
path is an unbounded loop; more than ``tracer.max_paths`` paths is a
lowering error too.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import contextvars
import os
import sys
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple, Union

from rift.cell import MAX_BITS, MAX_REFS, ADDRESS_BITS, Address, Builder, Cell, Slice
from rift.config import get_config
from rift.errors import (
    BuilderOverflowError,
    LoweringError,
    SchemaMismatchError,
    UnboundedLoopError,
    UntraceableError,
)
from rift.ir import OP_SPECS, EntryKind, Op
from rift.model import (
    AddressType,
    Bits,
    BoolType,
    CoinsType,
    FieldType,
    Int,
    MaybeRefType,
    Record,
    Ref,
    RefCellType,
    Schema,
    SignedRecord,
    UInt,
    is_symbolic,
)
from rift.observability import RiftLayer, get_logger

logger = get_logger("tracer", RiftLayer.TRACE)

_active_run: contextvars.ContextVar[Optional["TraceRun"]] = contextvars.ContextVar(
    "rift_active_run", default=None
)

_RIFT_DIR = os.path.dirname(os.path.abspath(__file__))

MAX_EXIT_CODE = 0xFFFF


def _user_location() -> str:
    """``file:line`` of the innermost frame outside the rift package."""
    frame = sys._getframe(1)
    while frame is not None:
        filename = frame.f_code.co_filename
        if os.path.dirname(os.path.abspath(filename)) != _RIFT_DIR:
            return f"{filename}:{frame.f_lineno}"
        frame = frame.f_back
    return ""


# =============================================================================
# TRACE TREE
# =============================================================================

@dataclass(frozen=True)
class Node:
    """One traced operation. Inputs and outputs are value ids."""
    op: Op
    args: Tuple[Any, ...]
    inputs: Tuple[int, ...]
    outputs: Tuple[int, ...]
    location: str = field(default="", compare=False)


@dataclass(frozen=True)
class Return:
    values: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Halt:
    """Path ended in an unconditional THROW."""


@dataclass
class Branch:
    cond: int
    then: "TraceBlock"
    orelse: "TraceBlock"
    location: str = ""


@dataclass
class TraceBlock:
    nodes: List[Node] = field(default_factory=list)
    end: Optional[Union[Return, Halt, Branch]] = None

    def path_count(self) -> int:
        if isinstance(self.end, Branch):
            return self.end.then.path_count() + self.end.orelse.path_count()
        return 1

    def walk(self):
        """All nodes in this block and its continuations, depth first."""
        yield from self.nodes
        if isinstance(self.end, Branch):
            yield from self.end.then.walk()
            yield from self.end.orelse.walk()


@dataclass
class TraceResult:
    root: TraceBlock
    inputs: Tuple[int, ...]
    kind: EntryKind
    paths: int


@dataclass(frozen=True)
class _Fork:
    cond: int
    taken: bool
    location: str


class _PathHalted(Exception):
    pass


def _merge(root: TraceBlock, events: Sequence[Any], end: Union[Return, Halt]) -> None:
    """Insert one traced path into the tree, checking shared prefixes agree."""
    block = root
    pos = 0
    while True:
        start = pos
        while pos < len(events) and isinstance(events[pos], Node):
            pos += 1
        nodes = list(events[start:pos])
        fresh = block.end is None
        if fresh:
            block.nodes = nodes
        elif block.nodes != nodes:
            raise _nondeterministic(nodes, block.nodes)

        if pos == len(events):
            if fresh:
                block.end = end
            elif block.end != end:
                raise LoweringError("Entry point is non-deterministic: paths end differently")
            return

        fork = events[pos]
        if fresh:
            block.end = Branch(fork.cond, TraceBlock(), TraceBlock(), fork.location)
        elif not isinstance(block.end, Branch) or block.end.cond != fork.cond:
            raise LoweringError(
                "Entry point is non-deterministic: branch structure changed between runs",
                location=fork.location,
            )
        block = block.end.then if fork.taken else block.end.orelse
        pos += 1


def _nondeterministic(new: List[Node], old: List[Node]) -> LoweringError:
    location = ""
    for a, b in zip(new, old):
        if a != b:
            location = a.location
            break
    return LoweringError(
        "Entry point is non-deterministic: re-running it recorded different operations",
        location=location,
    )


# =============================================================================
# SYMBOLIC VALUES
# =============================================================================

class Symbolic:
    """Base for values that exist only as nodes in a trace."""

    __rift_symbolic__ = True
    kind = "value"

    def __init__(self, trace: "TraceRun", vid: int):
        self.trace = trace
        self.vid = vid

    def _untraceable(self, what: str) -> UntraceableError:
        return UntraceableError(
            f"{what} is not traceable on a symbolic {self.kind}",
            location=_user_location(),
        )

    def __bool__(self) -> bool:
        raise self._untraceable("Truth value")

    def __hash__(self) -> int:
        raise self._untraceable("Hashing")

    def __eq__(self, other: object) -> Any:
        raise self._untraceable("Identity comparison")

    def __ne__(self, other: object) -> Any:
        raise self._untraceable("Identity comparison")

    def __iter__(self):
        raise self._untraceable("Iteration")

    def __len__(self) -> int:
        raise self._untraceable("len()")

    def __int__(self) -> int:
        raise self._untraceable("int()")

    def __index__(self) -> int:
        raise self._untraceable("Integer conversion")

    def __float__(self) -> float:
        raise self._untraceable("float()")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} %{self.vid}>"


class SymInt(Symbolic):
    """
    A traced 257-bit integer.

    ``width``/``signed`` are known for values loaded from fixed-width fields
    and are checked when the value is stored into another field.
    """

    kind = "integer"

    def __init__(self, trace: "TraceRun", vid: int, width: Optional[int] = None, signed: bool = False):
        super().__init__(trace, vid)
        self.width = width
        self.signed = signed

    def _binary(self, op: Op, other: Any, reverse: bool = False, result: type = None) -> Any:
        if not isinstance(other, (int, SymInt)):
            return NotImplemented
        if isinstance(other, bool):
            other = int(other)
        a = self.trace.value_of(self)
        b = self.trace.value_of(other)
        if reverse:
            a, b = b, a
        (out,) = self.trace.emit(op, (), (a, b))
        return (result or SymInt)(self.trace, out)

    def _unary(self, op: Op, result: type = None) -> Any:
        (out,) = self.trace.emit(op, (), (self.trace.value_of(self),))
        return (result or SymInt)(self.trace, out)

    def _compare(self, op: Op, other: Any) -> "SymBool":
        if not isinstance(other, (int, SymInt)):
            raise self._untraceable(f"Comparison with {type(other).__name__}")
        return self._binary(op, other, result=SymBool)

    def __add__(self, other): return self._binary(Op.ADD, other)
    def __radd__(self, other): return self._binary(Op.ADD, other, reverse=True)
    def __sub__(self, other): return self._binary(Op.SUB, other)
    def __rsub__(self, other): return self._binary(Op.SUB, other, reverse=True)
    def __mul__(self, other): return self._binary(Op.MUL, other)
    def __rmul__(self, other): return self._binary(Op.MUL, other, reverse=True)
    def __floordiv__(self, other): return self._binary(Op.DIV, other)
    def __rfloordiv__(self, other): return self._binary(Op.DIV, other, reverse=True)
    def __mod__(self, other): return self._binary(Op.MOD, other)
    def __rmod__(self, other): return self._binary(Op.MOD, other, reverse=True)
    def __lshift__(self, other): return self._binary(Op.LSHIFT, other)
    def __rlshift__(self, other): return self._binary(Op.LSHIFT, other, reverse=True)
    def __rshift__(self, other): return self._binary(Op.RSHIFT, other)
    def __rrshift__(self, other): return self._binary(Op.RSHIFT, other, reverse=True)
    def __and__(self, other): return self._binary(Op.AND, other)
    def __rand__(self, other): return self._binary(Op.AND, other, reverse=True)
    def __or__(self, other): return self._binary(Op.OR, other)
    def __ror__(self, other): return self._binary(Op.OR, other, reverse=True)
    def __xor__(self, other): return self._binary(Op.XOR, other)
    def __rxor__(self, other): return self._binary(Op.XOR, other, reverse=True)

    def __neg__(self): return self._unary(Op.NEGATE)
    def __abs__(self): return self._unary(Op.ABS)
    def __invert__(self): return self._unary(Op.NOT)

    def __pos__(self):
        return self

    def __truediv__(self, other):
        raise self._untraceable("True division (use //)")

    __rtruediv__ = __truediv__

    def __eq__(self, other): return self._compare(Op.EQUAL, other)
    def __ne__(self, other): return self._compare(Op.NEQ, other)
    def __lt__(self, other): return self._compare(Op.LESS, other)
    def __le__(self, other): return self._compare(Op.LEQ, other)
    def __gt__(self, other): return self._compare(Op.GREATER, other)
    def __ge__(self, other): return self._compare(Op.GEQ, other)

    __hash__ = Symbolic.__hash__

    def __bool__(self) -> bool:
        return self.trace.fork(self)


class SymBool(SymInt):
    """A traced boolean: -1 for true, 0 for false."""

    kind = "boolean"

    def __init__(self, trace: "TraceRun", vid: int):
        super().__init__(trace, vid, width=1, signed=True)

    def _logic(self, op: Op, other: Any) -> Any:
        if isinstance(other, bool) or isinstance(other, SymBool):
            a = self.trace.value_of(self)
            b = self.trace.value_of(other)
            (out,) = self.trace.emit(op, (), (a, b))
            return SymBool(self.trace, out)
        return self._binary(op, other)

    def __and__(self, other): return self._logic(Op.AND, other)
    def __rand__(self, other): return self._logic(Op.AND, other)
    def __or__(self, other): return self._logic(Op.OR, other)
    def __ror__(self, other): return self._logic(Op.OR, other)
    def __xor__(self, other): return self._logic(Op.XOR, other)
    def __rxor__(self, other): return self._logic(Op.XOR, other)

    def __invert__(self):
        return self._unary(Op.NOT, result=SymBool)


class SymCell(Symbolic):
    """A traced cell, or ``Maybe ^Cell`` when ``nullable``."""

    kind = "cell"

    def __init__(self, trace: "TraceRun", vid: int, nullable: bool = False):
        super().__init__(trace, vid)
        self.nullable = nullable

    def begin_parse(self) -> "SymSlice":
        (out,) = self.trace.emit(Op.CTOS, (), (self.trace.value_of(self),))
        return SymSlice(self.trace, out)

    as_slice = begin_parse

    def hash(self) -> SymInt:
        (out,) = self.trace.emit(Op.HASHCU, (), (self.trace.value_of(self),))
        return SymInt(self.trace, out, width=256)

    def is_null(self) -> SymBool:
        (out,) = self.trace.emit(Op.ISNULL, (), (self.trace.value_of(self),))
        return SymBool(self.trace, out)

    def __mod__(self, schema: Any) -> Any:
        return schema.parse(self)


def _const_slice(value: Any) -> Optional[Cell]:
    if value is None:
        return Cell("00")
    if isinstance(value, Address):
        return Cell(value.to_bits())
    if isinstance(value, Slice):
        return value.to_cell()
    return None


class SymSlice(Symbolic):
    """
    A traced read cursor.

    Slices are values in the VM, so every load rebinds ``vid`` to the
    remainder. ``refs_left`` is a static upper bound on unread references;
    ``exact_bits`` is the remaining bit length when it is statically known.
    """

    kind = "slice"

    def __init__(
        self,
        trace: "TraceRun",
        vid: int,
        refs_left: int = MAX_REFS,
        exact_bits: Optional[int] = None,
    ):
        super().__init__(trace, vid)
        self.refs_left = refs_left
        self.exact_bits = exact_bits

    def copy(self) -> "SymSlice":
        return type(self)(self.trace, self.vid, self.refs_left, self.exact_bits)

    def as_slice(self) -> "SymSlice":
        return self

    def _consume_bits(self, width: int) -> None:
        if self.exact_bits is None:
            return
        if width > self.exact_bits:
            raise LoweringError(
                f"Reading {width} bits from a slice with only {self.exact_bits} left",
                location=_user_location(),
            )
        self.exact_bits -= width

    def _load(self, op: Op, args: Tuple[Any, ...] = ()) -> int:
        value, rest = self.trace.emit(op, args, (self.trace.value_of(self),))
        self.vid = rest
        return value

    def read_uint(self, width: int) -> SymInt:
        self._consume_bits(width)
        return SymInt(self.trace, self._load(Op.LDU, (width,)), width=width)

    def read_int(self, width: int) -> SymInt:
        self._consume_bits(width)
        return SymInt(self.trace, self._load(Op.LDI, (width,)), width=width, signed=True)

    def read_bool(self) -> SymBool:
        self._consume_bits(1)
        return SymBool(self.trace, self._load(Op.LDI, (1,)))

    def read_coins(self) -> SymInt:
        return SymInt(self.trace, self._load(Op.LDGRAMS), width=120)

    def read_address(self) -> "SymAddress":
        return SymAddress(self.trace, self._load(Op.LDMSGADDR))

    def read_slice(self, width: int) -> "SymSlice":
        self._consume_bits(width)
        return SymSlice(self.trace, self._load(Op.LDSLICE, (width,)), refs_left=0, exact_bits=width)

    def skip(self, width: int) -> "SymSlice":
        self.read_slice(width)
        return self

    def preload_uint(self, width: int) -> SymInt:
        return self.copy().read_uint(width)

    def read_ref(self) -> SymCell:
        if self.refs_left <= 0:
            raise LoweringError(
                "Reading a reference from a slice that has none left",
                location=_user_location(),
            )
        self.refs_left -= 1
        return SymCell(self.trace, self._load(Op.LDREF))

    def read_maybe_ref(self) -> SymCell:
        return SymCell(self.trace, self._load(Op.LDOPTREF), nullable=True)

    def remaining_refs(self) -> Union[int, SymInt]:
        if self.refs_left <= 0:
            return 0
        (out,) = self.trace.emit(Op.SREFS, (), (self.trace.value_of(self),))
        return SymInt(self.trace, out, width=3)

    def remaining_bits(self) -> Union[int, SymInt]:
        if self.exact_bits is not None:
            return self.exact_bits
        (out,) = self.trace.emit(Op.SBITS, (), (self.trace.value_of(self),))
        return SymInt(self.trace, out, width=10)

    def end_parse(self) -> None:
        self.trace.emit(Op.ENDS, (), (self.trace.value_of(self),))

    def hash(self) -> SymInt:
        (out,) = self.trace.emit(Op.HASHSU, (), (self.trace.value_of(self),))
        return SymInt(self.trace, out, width=256)

    def to_cell(self) -> SymCell:
        return self.trace.new_builder().store_slice(self).end_cell()

    def __rshift__(self, field_type: FieldType) -> Any:
        return field_type.load(self)

    def __mod__(self, schema: Any) -> Any:
        return schema.parse(self)

    def _equals(self, other: Any) -> SymBool:
        const = _const_slice(other)
        if const is not None:
            (b,) = self.trace.emit(Op.PUSHSLICE, (const,))
        elif isinstance(other, SymSlice):
            b = self.trace.value_of(other)
        else:
            raise self._untraceable(f"Comparison with {type(other).__name__}")
        a = self.trace.value_of(self)
        (out,) = self.trace.emit(Op.SDEQ, (), (a, b))
        return SymBool(self.trace, out)

    def __eq__(self, other):
        return self._equals(other)

    def __ne__(self, other):
        return ~self._equals(other)

    __hash__ = Symbolic.__hash__


class SymAddress(SymSlice):
    """A traced ``MsgAddress`` slice; compares against ``Address`` or ``None``."""

    kind = "address"

    def __init__(self, trace: "TraceRun", vid: int, refs_left: int = 0, exact_bits: Optional[int] = None):
        super().__init__(trace, vid, 0, exact_bits)


class SymBuilder(Symbolic):
    """
    A traced builder.

    Tracks the minimum number of bits and refs it is guaranteed to hold so
    an overflow that would always happen is reported at trace time.
    """

    kind = "builder"

    def __init__(self, trace: "TraceRun", vid: int, min_bits: int = 0, min_refs: int = 0):
        super().__init__(trace, vid)
        self.min_bits = min_bits
        self.min_refs = min_refs

    def copy(self) -> "SymBuilder":
        return SymBuilder(self.trace, self.vid, self.min_bits, self.min_refs)

    def _reserve(self, bits: int, refs: int) -> None:
        if self.min_bits + bits > MAX_BITS:
            raise BuilderOverflowError(
                f"Builder needs at least {self.min_bits + bits} bits; a cell holds {MAX_BITS}",
                location=_user_location(),
            )
        if self.min_refs + refs > MAX_REFS:
            raise BuilderOverflowError(
                f"Builder needs at least {self.min_refs + refs} refs; a cell holds {MAX_REFS}",
                location=_user_location(),
            )
        self.min_bits += bits
        self.min_refs += refs

    def _store(self, op: Op, value_vid: int, args: Tuple[Any, ...] = ()) -> "SymBuilder":
        (self.vid,) = self.trace.emit(op, args, (value_vid, self.trace.value_of(self)))
        return self

    def _mismatch(self, value: Any, target: str) -> SchemaMismatchError:
        what = f"symbolic {value.kind}" if is_symbolic(value) else repr(value)
        return SchemaMismatchError(f"Cannot store {what} as {target}", location=_user_location())

    def _int_operand(self, value: Any, target: str, width: int, signed: bool) -> int:
        if is_symbolic(value):
            if not isinstance(value, SymInt):
                raise self._mismatch(value, target)
            if value.width is not None:
                if signed:
                    fits = value.width <= width if value.signed else value.width < width
                else:
                    fits = not value.signed and value.width <= width
                if not fits:
                    source = f"{'int' if value.signed else 'uint'}{value.width}"
                    raise SchemaMismatchError(
                        f"Cannot store {source} value as {target}",
                        location=_user_location(),
                    )
            return self.trace.value_of(value)
        if isinstance(value, bool) or not isinstance(value, int):
            raise self._mismatch(value, target)
        low, high = (-(1 << (width - 1)), 1 << (width - 1)) if signed else (0, 1 << width)
        if not low <= value < high:
            raise SchemaMismatchError(f"Constant {value} does not fit {target}", location=_user_location())
        return self.trace.value_of(value)

    def store_uint(self, value: Any, width: int) -> "SymBuilder":
        vid = self._int_operand(value, f"uint{width}", width, signed=False)
        self._reserve(width, 0)
        return self._store(Op.STU, vid, (width,))

    def store_int(self, value: Any, width: int) -> "SymBuilder":
        vid = self._int_operand(value, f"int{width}", width, signed=True)
        self._reserve(width, 0)
        return self._store(Op.STI, vid, (width,))

    def store_bool(self, value: Any) -> "SymBuilder":
        if is_symbolic(value) and not isinstance(value, SymBool):
            raise self._mismatch(value, "bool")
        if not is_symbolic(value) and not isinstance(value, bool):
            raise self._mismatch(value, "bool")
        self._reserve(1, 0)
        return self._store(Op.STI, self.trace.value_of(value), (1,))

    def store_coins(self, value: Any) -> "SymBuilder":
        vid = self._int_operand(value, "coins", 120, signed=False)
        self._reserve(4, 0)
        return self._store(Op.STGRAMS, vid)

    def store_address(self, value: Any) -> "SymBuilder":
        if isinstance(value, SymAddress):
            self._reserve(2, 0)
            return self._store(Op.STSLICE, self.trace.value_of(value))
        const = _const_slice(value) if value is None or isinstance(value, Address) else None
        if const is None:
            raise self._mismatch(value, "address")
        return self.store_bits(const.bits)

    def store_ref(self, value: Any) -> "SymBuilder":
        if isinstance(value, (Record, SignedRecord)):
            value = value.as_cell()
        if isinstance(value, SymCell) and not value.nullable:
            vid = self.trace.value_of(value)
        elif isinstance(value, Cell):
            vid = self.trace.value_of(value)
        else:
            raise self._mismatch(value, "cell reference")
        self._reserve(0, 1)
        return self._store(Op.STREF, vid)

    def store_maybe_ref(self, value: Any) -> "SymBuilder":
        if isinstance(value, SymCell):
            self._reserve(1, 0 if value.nullable else 1)
        elif isinstance(value, Cell):
            self._reserve(1, 1)
        elif value is None:
            self._reserve(1, 0)
        else:
            raise self._mismatch(value, "maybe cell reference")
        return self._store(Op.STOPTREF, self.trace.value_of(value))

    def store_slice(self, value: Any) -> "SymBuilder":
        if isinstance(value, SymSlice):
            self._reserve(value.exact_bits or 0, 0)
            return self._store(Op.STSLICE, self.trace.value_of(value))
        if isinstance(value, Slice):
            bits, refs = value.peek_remaining()
            self._reserve(len(bits), len(refs))
            return self._store(Op.STSLICE, self.trace.value_of(value))
        raise self._mismatch(value, "slice")

    def store_bits(self, bits: str) -> "SymBuilder":
        if not bits:
            return self
        self._reserve(len(bits), 0)
        (vid,) = self.trace.emit(Op.PUSHSLICE, (Cell(bits),))
        return self._store(Op.STSLICE, vid)

    def end_cell(self) -> SymCell:
        (out,) = self.trace.emit(Op.ENDC, (), (self.trace.value_of(self),))
        return SymCell(self.trace, out)


# =============================================================================
# TRACE RUN
# =============================================================================

class TraceRun:
    """
    One execution of an entry point along a fixed decision plan.

    Decisions beyond the plan take the true branch and queue the false
    alternative for a later run.
    """

    def __init__(self, tracer: "Tracer", plan: Sequence[bool]):
        self.tracer = tracer
        self.plan = list(plan)
        self.decisions: List[bool] = []
        self.alternatives: List[List[bool]] = []
        self.events: List[Any] = []
        self.sites: Counter = Counter()
        self.end: Optional[Union[Return, Halt]] = None
        self._next_id = 0
        self.inputs: Tuple[int, ...] = ()

    def new_id(self) -> int:
        vid = self._next_id
        self._next_id += 1
        return vid

    def emit(self, op: Op, args: Tuple[Any, ...] = (), inputs: Tuple[int, ...] = ()) -> Tuple[int, ...]:
        if _active_run.get() is not self:
            raise UntraceableError(
                "Symbolic value used outside the trace that produced it",
                location=_user_location(),
            )
        outputs = tuple(self.new_id() for _ in range(OP_SPECS[op].pushes))
        self.events.append(Node(op, tuple(args), tuple(inputs), outputs, _user_location()))
        return outputs

    def value_of(self, value: Any) -> int:
        """Value id for a symbolic value, emitting a constant for concrete ones."""
        if is_symbolic(value):
            if value.trace is not self:
                raise UntraceableError(
                    "Symbolic value used outside the trace that produced it",
                    location=_user_location(),
                )
            return value.vid
        if isinstance(value, bool):
            return self.emit(Op.PUSHINT, (-1 if value else 0,))[0]
        if isinstance(value, int):
            if not -(1 << 256) <= value < (1 << 256):
                raise LoweringError(
                    f"Integer constant {value} does not fit 257 bits",
                    location=_user_location(),
                )
            return self.emit(Op.PUSHINT, (value,))[0]
        if value is None:
            return self.emit(Op.PUSHNULL)[0]
        if isinstance(value, Cell):
            return self.emit(Op.PUSHREF, (value,))[0]
        if isinstance(value, (Slice, Address)):
            return self.emit(Op.PUSHSLICE, (_const_slice(value),))[0]
        if isinstance(value, (Record, SignedRecord)):
            return self.value_of(value.as_cell())
        if isinstance(value, Builder):
            raise UntraceableError(
                "Concrete builders cannot be passed to traced operations; call end_cell() first",
                location=_user_location(),
            )
        raise UntraceableError(
            f"{type(value).__name__} values cannot be used in traced operations",
            location=_user_location(),
        )

    def fork(self, cond: SymInt) -> bool:
        location = _user_location()
        self.sites[location] += 1
        if self.sites[location] > self.tracer.loop_unroll_limit:
            raise UnboundedLoopError(
                f"Symbolic condition evaluated more than {self.tracer.loop_unroll_limit} "
                "times on one path; loops over symbolic data must be bounded by cell structure",
                location=location,
            )
        index = len(self.decisions)
        if index < len(self.plan):
            taken = self.plan[index]
        else:
            taken = True
            self.alternatives.append(self.decisions + [False])
        self.decisions.append(taken)
        self.events.append(_Fork(self.value_of(cond), taken, location))
        return taken

    def halt(self, code: int) -> None:
        self.emit(Op.THROW, (code,))
        raise _PathHalted()

    def new_builder(self) -> SymBuilder:
        (out,) = self.emit(Op.NEWC)
        return SymBuilder(self, out)

    def check_signature(self, digest: Any, signature: Any, public_key: Any) -> SymBool:
        inputs = (self.value_of(digest), self.value_of(signature), self.value_of(public_key))
        (out,) = self.emit(Op.CHKSIGNU, (), inputs)
        return SymBool(self, out)

    # -- entry execution ----------------------------------------------------

    def execute(self) -> None:
        tracer = self.tracer
        token = _active_run.set(self)
        try:
            if tracer.kind == EntryKind.GET:
                args = [_placeholder(self, t) for t in tracer.params]
                self.inputs = tuple(a.vid for a in args)
            else:
                args = []
                self.inputs = (self.new_id(), self.new_id(), self.new_id())
            ctx = TraceContext(self)
            try:
                result = tracer.fn(ctx, *args)
            except _PathHalted:
                self.end = Halt()
            else:
                self.end = Return(self._returns(result))
        finally:
            _active_run.reset(token)

    def _returns(self, result: Any) -> Tuple[int, ...]:
        tracer = self.tracer
        if tracer.kind != EntryKind.GET:
            if result is not None:
                raise LoweringError("Receive entry points must not return a value")
            return ()
        if result is None:
            values: Tuple[Any, ...] = ()
        elif isinstance(result, (tuple, list)):
            values = tuple(result)
        else:
            values = (result,)
        if len(values) != len(tracer.returns):
            raise LoweringError(
                f"Get method returned {len(values)} values but declares {len(tracer.returns)}"
            )
        for value, field_type in zip(values, tracer.returns):
            _check_return(value, field_type)
        return tuple(self.value_of(v) for v in values)


def _placeholder(run: TraceRun, field_type: FieldType) -> Symbolic:
    vid = run.new_id()
    if isinstance(field_type, BoolType):
        return SymBool(run, vid)
    if isinstance(field_type, UInt):
        return SymInt(run, vid, width=field_type.width)
    if isinstance(field_type, Int):
        return SymInt(run, vid, width=field_type.width, signed=True)
    if isinstance(field_type, CoinsType):
        return SymInt(run, vid, width=120)
    if isinstance(field_type, AddressType):
        return SymAddress(run, vid)
    if isinstance(field_type, Bits):
        return SymSlice(run, vid, refs_left=0, exact_bits=field_type.width)
    if isinstance(field_type, (RefCellType, Ref)):
        return SymCell(run, vid)
    if isinstance(field_type, MaybeRefType):
        return SymCell(run, vid, nullable=True)
    raise LoweringError(f"Unsupported get method parameter type {field_type!r}")


def _check_return(value: Any, field_type: FieldType) -> None:
    if isinstance(field_type, (UInt, Int, BoolType, CoinsType)):
        ok = isinstance(value, (int, SymInt))
    elif isinstance(field_type, AddressType):
        ok = value is None or isinstance(value, (Address, SymSlice))
    elif isinstance(field_type, Bits):
        ok = isinstance(value, (Slice, SymSlice))
    elif isinstance(field_type, (RefCellType, Ref, Schema)):
        ok = isinstance(value, (Cell, SymCell, Record, SignedRecord))
    elif isinstance(field_type, MaybeRefType):
        ok = value is None or isinstance(value, (Cell, SymCell))
    else:
        ok = True
    if not ok:
        what = f"symbolic {value.kind}" if is_symbolic(value) else type(value).__name__
        raise SchemaMismatchError(
            f"Get method returns {what} where {field_type!r} is declared",
            location=_user_location(),
        )


# =============================================================================
# CONTEXT
# =============================================================================

class DataProxy:
    """
    Persistent storage as seen by a traced entry point.

    Parsed from ``GETDATA`` on first access; ``save()`` records ``SETDATA``
    with the current field values.
    """

    def __init__(self, run: TraceRun, schema: Schema):
        object.__setattr__(self, "_run", run)
        object.__setattr__(self, "_schema", schema)
        object.__setattr__(self, "_record", None)

    def _load(self) -> Record:
        if self._record is None:
            (cell,) = self._run.emit(Op.GETDATA)
            object.__setattr__(self, "_record", self._schema.parse(SymCell(self._run, cell)))
        return self._record

    def __getattr__(self, name: str) -> Any:
        return getattr(self._load(), name)

    def __setattr__(self, name: str, value: Any) -> None:
        setattr(self._load(), name, value)

    def record(self) -> Record:
        return self._load()

    def save(self) -> None:
        cell = self._schema.as_cell(self._load())
        self._run.emit(Op.SETDATA, (), (self._run.value_of(cell),))


def _exit_code(code: Any) -> int:
    if isinstance(code, bool) or not isinstance(code, int):
        raise LoweringError(f"Exit code must be a constant int, got {code!r}", location=_user_location())
    if not 2 <= code <= MAX_EXIT_CODE:
        raise LoweringError(f"Exit code must be in 2..{MAX_EXIT_CODE}, got {code}", location=_user_location())
    return code


class TraceContext:
    """
    The ``self`` passed to contract entry points while tracing.

    Inputs:  data, message, body, value, sender
    Stdlib:  now(), accept_message(), send_raw_message(), assert_(),
             throw(), throw_if(), begin_cell(), my_address(), balance(),
             min(), max(), check_signature()
    """

    def __init__(self, run: TraceRun):
        self._run = run
        self._kind = run.tracer.kind
        self._data = DataProxy(run, run.tracer.data_schema)
        self._body: Optional[SymSlice] = None
        self._sender: Optional[SymAddress] = None

    def _require_receive(self, name: str) -> None:
        if self._kind == EntryKind.GET:
            raise LoweringError(
                f"'{name}' is only available in receive entry points",
                location=_user_location(),
            )

    @property
    def data(self) -> DataProxy:
        return self._data

    @property
    def value(self) -> SymInt:
        self._require_receive("value")
        return SymInt(self._run, self._run.inputs[0])

    @property
    def message(self) -> SymCell:
        self._require_receive("message")
        return SymCell(self._run, self._run.inputs[1])

    @property
    def body(self) -> SymSlice:
        self._require_receive("body")
        if self._body is None:
            self._body = SymSlice(self._run, self._run.inputs[2])
        return self._body

    @property
    def sender(self) -> SymAddress:
        if self._kind != EntryKind.INTERNAL:
            raise LoweringError(
                "'sender' is only available in internal receive",
                location=_user_location(),
            )
        if self._sender is None:
            header = self.message.begin_parse()
            header.read_uint(4)
            self._sender = header.read_address()
        return self._sender

    def now(self) -> SymInt:
        (out,) = self._run.emit(Op.NOW)
        return SymInt(self._run, out, width=32)

    def balance(self) -> SymInt:
        (out,) = self._run.emit(Op.BALANCE)
        return SymInt(self._run, out)

    def my_address(self) -> SymAddress:
        (out,) = self._run.emit(Op.MYADDR)
        return SymAddress(self._run, out)

    def accept_message(self) -> None:
        self._run.emit(Op.ACCEPT)

    def send_raw_message(self, message: Any, mode: Any = 0) -> None:
        if isinstance(message, SymCell) and message.nullable:
            raise SchemaMismatchError("Cannot send a maybe-null cell", location=_user_location())
        if not isinstance(message, (Cell, SymCell, Record, SignedRecord)):
            raise SchemaMismatchError(
                f"send_raw_message expects a cell, got {type(message).__name__}",
                location=_user_location(),
            )
        if not is_symbolic(mode) and (isinstance(mode, bool) or not isinstance(mode, int) or not 0 <= mode <= 255):
            raise LoweringError(f"Send mode must be 0..255, got {mode!r}", location=_user_location())
        cell = self._run.value_of(message)
        self._run.emit(Op.SENDRAWMSG, (), (cell, self._run.value_of(mode)))

    def begin_cell(self) -> SymBuilder:
        return self._run.new_builder()

    def check_signature(self, digest: Any, signature: Any, public_key: Any) -> SymBool:
        return self._run.check_signature(digest, signature, public_key)

    def min(self, a: Any, b: Any) -> SymInt:
        return self._minmax(Op.MIN, a, b)

    def max(self, a: Any, b: Any) -> SymInt:
        return self._minmax(Op.MAX, a, b)

    def _minmax(self, op: Op, a: Any, b: Any) -> SymInt:
        (out,) = self._run.emit(op, (), (self._run.value_of(a), self._run.value_of(b)))
        return SymInt(self._run, out)

    def assert_(self, cond: Any, code: int) -> None:
        """Abort with ``code`` unless ``cond`` holds."""
        code = _exit_code(code)
        if is_symbolic(cond):
            if not isinstance(cond, SymInt):
                raise UntraceableError(
                    f"Cannot assert on a symbolic {cond.kind}",
                    location=_user_location(),
                )
            self._run.emit(Op.THROWIFNOT, (code,), (self._run.value_of(cond),))
        elif not cond:
            self._run.halt(code)

    def throw_if(self, cond: Any, code: int) -> None:
        """Abort with ``code`` when ``cond`` holds."""
        code = _exit_code(code)
        if is_symbolic(cond):
            if not isinstance(cond, SymInt):
                raise UntraceableError(
                    f"Cannot test a symbolic {cond.kind}",
                    location=_user_location(),
                )
            self._run.emit(Op.THROWIF, (code,), (self._run.value_of(cond),))
        elif cond:
            self._run.halt(code)

    def throw(self, code: int) -> None:
        self._run.halt(_exit_code(code))


# =============================================================================
# TRACER
# =============================================================================

class Tracer:
    """
    Explores every path of one entry point and merges them into a tree.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        kind: EntryKind,
        data_schema: Schema,
        contract: str = "",
        method: str = "",
        params: Sequence[FieldType] = (),
        returns: Sequence[FieldType] = (),
    ):
        cfg = get_config().tracer
        self.fn = fn
        self.kind = kind
        self.data_schema = data_schema
        self.contract = contract
        self.method = method or getattr(fn, "__name__", "")
        self.params = tuple(params)
        self.returns = tuple(returns)
        self.max_paths = cfg.max_paths.get()
        self.loop_unroll_limit = cfg.loop_unroll_limit.get()

    def trace(self) -> TraceResult:
        root = TraceBlock()
        queue: Deque[List[bool]] = deque([[]])
        inputs: Tuple[int, ...] = ()
        paths = 0
        try:
            while queue:
                plan = queue.popleft()
                paths += 1
                if paths > self.max_paths:
                    raise LoweringError(
                        f"Entry point has more than {self.max_paths} execution paths"
                    )
                run = TraceRun(self, plan)
                run.execute()
                _merge(root, run.events, run.end)
                queue.extend(run.alternatives)
                inputs = run.inputs
        except LoweringError as e:
            raise e.with_context(self.contract, self.method)

        logger.debug(
            "Traced entry point",
            contract=self.contract,
            method=self.method,
            paths=paths,
        )
        return TraceResult(root, inputs, self.kind, paths)
