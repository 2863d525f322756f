"""
Rift Virtual Machine

A deterministic, gas-metered stack machine that runs lowered contract code
against concrete cells.

Architecture:

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                              RIFT VM                                     │
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐    │
    │  │    STACK    │  │   FRAMES    │  │  DATA (c4)  │  │   ACTIONS   │    │
    │  │ int / Cell  │  │ block + pc  │  │ pending new │  │  (c5 list)  │    │
    │  │ Slice / ... │  │ per IFELSE  │  │  data cell  │  │ send order  │    │
    │  └─────────────┘  └─────────────┘  └─────────────┘  └─────────────┘    │
    │                                                                          │
    │  ┌─────────────────────────────────────────────────────────────────┐   │
    │  │                    INSTRUCTION DISPATCH                           │   │
    │  │  Stack | Const | Arith | Compare | Builder | Slice | Control     │   │
    │  │  Context | Crypto                                                 │   │
    │  └─────────────────────────────────────────────────────────────────┘   │
    └─────────────────────────────────────────────────────────────────────────┘

Outcomes are values, never exceptions:

    OK        exit code 0; final stack; new data if SETDATA fired
    ABORTED   THROW* fired; exit code chosen by the contract; empty stack
    FAULT     structural violation; TVM-style fault code (see FaultCode)

Only OK results are committed to a ContractInstance. External messages run
on ``vm.gas_credit`` until ACCEPT and are not committed unless accepted.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from functools import cached_property
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from rift.cell import Address, Builder, Cell, Slice
from rift.config import get_config
from rift.crypto import SIGNATURE_BITS, verify_digest
from rift.errors import (
    CellOverflow,
    CellUnderflow,
    ExpectationFailed,
    FieldRangeError,
    VMAbort,
    VMFault,
)
from rift.ir import Block, Entry, EntryKind, GasCosts, Op, Program
from rift.messages import contract_address, external_message, internal_message, parse_message_header, to_cell
from rift.model import Record, Schema, SignedRecord
from rift.observability import RiftLayer, get_logger, operation_scope

logger = get_logger("vm", RiftLayer.VM)

INT_MIN = -(1 << 256)
INT_MAX = (1 << 256) - 1

StackValue = Union[int, Cell, Slice, Builder, None]


class ExitStatus(Enum):
    OK = "ok"
    ABORTED = "aborted"
    FAULT = "fault"


class FaultCode(IntEnum):
    """VM fault exit codes."""
    STACK_UNDERFLOW = 2
    STACK_OVERFLOW = 3
    INTEGER_OVERFLOW = 4
    RANGE_CHECK = 5
    INVALID_OPCODE = 6
    TYPE_CHECK = 7
    CELL_OVERFLOW = 8
    CELL_UNDERFLOW = 9
    METHOD_NOT_FOUND = 11
    OUT_OF_GAS = 13


# =============================================================================
# RESULTS
# =============================================================================

@dataclass(frozen=True)
class OutAction:
    """A message queued by SENDRAWMSG."""
    message: Cell
    mode: int


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one VM invocation."""
    status: ExitStatus
    exit_code: int
    stack: Tuple[StackValue, ...] = ()
    data: Optional[Cell] = None
    actions: Tuple[OutAction, ...] = ()
    gas_used: int = 0
    accepted: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ExitStatus.OK

    def expect_ok(self) -> "ExecutionResult":
        if self.status != ExitStatus.OK:
            raise ExpectationFailed(f"Expected success, got {self._describe()}", self)
        return self

    def expect_error(self) -> "ExecutionResult":
        if self.status == ExitStatus.OK:
            raise ExpectationFailed("Expected an error, got success", self)
        return self

    def expect_exit(self, code: int) -> "ExecutionResult":
        if self.exit_code != code:
            raise ExpectationFailed(f"Expected exit code {code}, got {self._describe()}", self)
        return self

    def _describe(self) -> str:
        text = f"{self.status.value} (exit code {self.exit_code})"
        if self.error:
            text += f": {self.error}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "exit_code": self.exit_code,
            "stack": [_describe_value(v) for v in self.stack],
            "data": self.data.to_boc_b64() if self.data is not None else None,
            "actions": [
                {"mode": a.mode, "message": a.message.to_boc_b64()} for a in self.actions
            ],
            "gas_used": self.gas_used,
            "accepted": self.accepted,
            "error": self.error,
        }


def _describe_value(value: StackValue) -> Any:
    if value is None or isinstance(value, int):
        return value
    if isinstance(value, Cell):
        return {"cell": value.to_boc_b64()}
    if isinstance(value, Slice):
        return {"slice": value.to_cell().to_boc_b64()}
    return {"builder": value.end_cell().to_boc_b64()}


# =============================================================================
# VM STATE
# =============================================================================

@dataclass
class ExecutionContext:
    """Environment of one invocation."""
    data: Cell
    address: Address
    now: int
    balance: int = 0
    gas_limit: int = 1_000_000
    gas_credit: Optional[int] = None


@dataclass
class VMState:
    """
    Mutable state of one invocation.
    """
    stack: List[StackValue] = field(default_factory=list)
    max_depth: int = 255
    data: Optional[Cell] = None
    data_changed: bool = False
    actions: List[OutAction] = field(default_factory=list)
    gas_used: int = 0
    gas_limit: int = 0
    accepted: bool = False

    def push(self, value: StackValue) -> None:
        """Push value onto stack."""
        if len(self.stack) >= self.max_depth:
            raise VMFault(FaultCode.STACK_OVERFLOW, "Stack overflow")
        self.stack.append(value)

    def pop(self) -> StackValue:
        """Pop value from stack."""
        if not self.stack:
            raise VMFault(FaultCode.STACK_UNDERFLOW, "Stack underflow")
        return self.stack.pop()

    def peek(self, depth: int = 0) -> StackValue:
        """Peek at stack without popping."""
        if depth >= len(self.stack):
            raise VMFault(FaultCode.STACK_UNDERFLOW, f"Stack underflow at depth {depth}")
        return self.stack[-(depth + 1)]

    def roll(self, depth: int) -> None:
        """Move the value at depth to the top."""
        self.peek(depth)
        self.stack.append(self.stack.pop(-(depth + 1)))

    def swap(self, depth: int) -> None:
        """Swap top of stack with item at depth."""
        self.peek(depth)
        self.stack[-1], self.stack[-(depth + 1)] = self.stack[-(depth + 1)], self.stack[-1]

    def pop_int(self) -> int:
        value = self.pop()
        if isinstance(value, bool) or not isinstance(value, int):
            raise VMFault(FaultCode.TYPE_CHECK, f"Expected integer, got {_type_name(value)}")
        return value

    def pop_cell(self) -> Cell:
        value = self.pop()
        if not isinstance(value, Cell):
            raise VMFault(FaultCode.TYPE_CHECK, f"Expected cell, got {_type_name(value)}")
        return value

    def pop_maybe_cell(self) -> Optional[Cell]:
        value = self.pop()
        if value is not None and not isinstance(value, Cell):
            raise VMFault(FaultCode.TYPE_CHECK, f"Expected cell or null, got {_type_name(value)}")
        return value

    def pop_slice(self) -> Slice:
        value = self.pop()
        if not isinstance(value, Slice):
            raise VMFault(FaultCode.TYPE_CHECK, f"Expected slice, got {_type_name(value)}")
        return value.copy()

    def pop_builder(self) -> Builder:
        value = self.pop()
        if not isinstance(value, Builder):
            raise VMFault(FaultCode.TYPE_CHECK, f"Expected builder, got {_type_name(value)}")
        return value.copy()

    def push_int(self, value: int) -> None:
        if not INT_MIN <= value <= INT_MAX:
            raise VMFault(FaultCode.INTEGER_OVERFLOW, "Integer overflow")
        self.push(value)

    def push_bool(self, value: bool) -> None:
        self.push(-1 if value else 0)

    def charge(self, amount: int) -> None:
        if self.gas_used + amount > self.gas_limit:
            self.gas_used = self.gas_limit
            raise VMFault(FaultCode.OUT_OF_GAS, "Out of gas")
        self.gas_used += amount


def _type_name(value: Any) -> str:
    return "null" if value is None else type(value).__name__.lower()


def _check_width(width: int, low: int, high: int) -> None:
    if not low <= width <= high:
        raise VMFault(FaultCode.INVALID_OPCODE, f"Invalid width immediate {width}")


def _load_msg_address(s: Slice) -> Slice:
    """LDMSGADDR: split off a MsgAddress as its own slice."""
    start = s.bit_pos
    tag = s.read(2)
    if tag == "01":
        s.read(s.read_uint(9))
    elif tag == "10":
        if s.read(1) != "0":
            raise VMFault(FaultCode.CELL_UNDERFLOW, "Anycast addresses are not supported")
        s.read(8 + 256)
    elif tag == "11":
        raise VMFault(FaultCode.CELL_UNDERFLOW, "addr_var is not supported")
    return Slice(Cell(s.cell.bits[start:s.bit_pos]))


# =============================================================================
# EXECUTOR
# =============================================================================

_ARITH = {
    Op.ADD: lambda a, b: a + b,
    Op.SUB: lambda a, b: a - b,
    Op.MUL: lambda a, b: a * b,
    Op.MIN: min,
    Op.MAX: max,
    Op.AND: lambda a, b: a & b,
    Op.OR: lambda a, b: a | b,
    Op.XOR: lambda a, b: a ^ b,
}

_COMPARE = {
    Op.EQUAL: lambda a, b: a == b,
    Op.NEQ: lambda a, b: a != b,
    Op.LESS: lambda a, b: a < b,
    Op.LEQ: lambda a, b: a <= b,
    Op.GREATER: lambda a, b: a > b,
    Op.GEQ: lambda a, b: a >= b,
}


class RiftVM:
    """
    Executes one entry point of a lowered program.

    Example:
        vm = RiftVM()
        result = vm.execute(entry, [value, message, body], context)
    """

    def __init__(self, max_stack_depth: Optional[int] = None):
        self.max_stack_depth = max_stack_depth or get_config().vm.max_stack_depth.get()

    def execute(
        self,
        entry: Entry,
        stack: Sequence[StackValue],
        context: ExecutionContext,
    ) -> ExecutionResult:
        """Run ``entry`` with ``stack`` as its initial stack (last item on top)."""
        external = context.gas_credit is not None
        state = VMState(
            max_depth=self.max_stack_depth,
            data=context.data,
            gas_limit=context.gas_credit if external else context.gas_limit,
            accepted=entry.kind == EntryKind.INTERNAL,
        )
        for value in stack:
            state.push(value)

        try:
            self._run(entry.block, state, context)
        except VMAbort as e:
            return ExecutionResult(
                status=ExitStatus.ABORTED,
                exit_code=e.exit_code,
                gas_used=state.gas_used,
                accepted=state.accepted,
            )
        except VMFault as e:
            return self._fault(state, e.exit_code, e.message)
        except CellOverflow as e:
            return self._fault(state, FaultCode.CELL_OVERFLOW, str(e))
        except CellUnderflow as e:
            return self._fault(state, FaultCode.CELL_UNDERFLOW, str(e))
        except FieldRangeError as e:
            return self._fault(state, FaultCode.RANGE_CHECK, str(e))

        if external and not state.accepted:
            return ExecutionResult(
                status=ExitStatus.OK,
                exit_code=0,
                stack=tuple(state.stack),
                gas_used=state.gas_used,
                accepted=False,
            )
        return ExecutionResult(
            status=ExitStatus.OK,
            exit_code=0,
            stack=tuple(state.stack),
            data=state.data if state.data_changed else None,
            actions=tuple(state.actions),
            gas_used=state.gas_used,
            accepted=state.accepted,
        )

    @staticmethod
    def _fault(state: VMState, code: int, message: str) -> ExecutionResult:
        return ExecutionResult(
            status=ExitStatus.FAULT,
            exit_code=int(code),
            gas_used=state.gas_used,
            accepted=state.accepted,
            error=message,
        )

    def _run(self, block: Block, state: VMState, context: ExecutionContext) -> None:
        frames: List[List[Any]] = [[block, 0]]
        while frames:
            frame = frames[-1]
            code, pc = frame
            if pc >= len(code):
                frames.pop()
                continue
            ins = code[pc]
            frame[1] = pc + 1
            state.charge(GasCosts.for_op(ins.op))

            if ins.op == Op.IFELSE:
                then_block, else_block = ins.args
                frames.append([then_block if state.pop_int() else else_block, 0])
            elif ins.op == Op.RET:
                frames.clear()
            else:
                self._execute_instruction(ins.op, ins.args, state, context)

    def _execute_instruction(
        self,
        op: Op,
        args: Tuple[Any, ...],
        state: VMState,
        context: ExecutionContext,
    ) -> None:
        """Execute a single instruction."""

        # Stack
        if op == Op.NOP:
            pass
        elif op == Op.PUSH:
            state.push(state.peek(args[0]))
        elif op == Op.DUP:
            state.push(state.peek(0))
        elif op == Op.ROLL:
            state.roll(args[0])
        elif op == Op.DROP:
            state.pop()
        elif op == Op.SWAP:
            state.swap(1)
        elif op == Op.XCHG:
            state.swap(args[0])
        elif op == Op.BLKDROP:
            for _ in range(args[0]):
                state.pop()
        elif op == Op.BLKDROP2:
            count, keep = args
            if count + keep:
                state.peek(count + keep - 1)
            kept = [state.pop() for _ in range(keep)]
            for _ in range(count):
                state.pop()
            for value in reversed(kept):
                state.push(value)

        # Constants
        elif op == Op.PUSHINT:
            state.push_int(args[0])
        elif op == Op.PUSHNULL:
            state.push(None)
        elif op == Op.PUSHREF:
            state.push(args[0])
        elif op == Op.PUSHSLICE:
            state.push(args[0].begin_parse())

        # Arithmetic
        elif op in _ARITH:
            b, a = state.pop_int(), state.pop_int()
            state.push_int(_ARITH[op](a, b))
        elif op in (Op.DIV, Op.MOD):
            b, a = state.pop_int(), state.pop_int()
            if b == 0:
                raise VMFault(FaultCode.INTEGER_OVERFLOW, "Division by zero")
            state.push_int(a // b if op == Op.DIV else a % b)
        elif op in (Op.LSHIFT, Op.RSHIFT):
            shift, a = state.pop_int(), state.pop_int()
            if not 0 <= shift <= 1023:
                raise VMFault(FaultCode.RANGE_CHECK, f"Shift out of range: {shift}")
            state.push_int(a << shift if op == Op.LSHIFT else a >> shift)
        elif op == Op.NEGATE:
            state.push_int(-state.pop_int())
        elif op == Op.ABS:
            state.push_int(abs(state.pop_int()))

        # Comparison / logic
        elif op in _COMPARE:
            b, a = state.pop_int(), state.pop_int()
            state.push_bool(_COMPARE[op](a, b))
        elif op == Op.NOT:
            state.push_int(~state.pop_int())
        elif op == Op.ISNULL:
            state.push_bool(state.pop() is None)
        elif op == Op.SDEQ:
            b, a = state.pop_slice(), state.pop_slice()
            state.push_bool(a.peek_remaining() == b.peek_remaining())

        # Builders
        elif op == Op.NEWC:
            state.push(Builder())
        elif op == Op.ENDC:
            state.push(state.pop_builder().end_cell())
        elif op == Op.STU:
            _check_width(args[0], 1, 256)
            b = state.pop_builder()
            state.push(b.store_uint(state.pop_int(), args[0]))
        elif op == Op.STI:
            _check_width(args[0], 1, 257)
            b = state.pop_builder()
            state.push(b.store_int(state.pop_int(), args[0]))
        elif op == Op.STREF:
            b = state.pop_builder()
            state.push(b.store_ref(state.pop_cell()))
        elif op == Op.STSLICE:
            b = state.pop_builder()
            state.push(b.store_slice(state.pop_slice()))
        elif op == Op.STGRAMS:
            b = state.pop_builder()
            state.push(b.store_coins(state.pop_int()))
        elif op == Op.STOPTREF:
            b = state.pop_builder()
            state.push(b.store_maybe_ref(state.pop_maybe_cell()))

        # Slices
        elif op == Op.CTOS:
            state.push(state.pop_cell().begin_parse())
        elif op == Op.ENDS:
            s = state.pop_slice()
            if not s.is_empty():
                raise VMFault(FaultCode.CELL_UNDERFLOW, "Slice not fully consumed")
        elif op == Op.LDU:
            _check_width(args[0], 1, 256)
            s = state.pop_slice()
            state.push(s.read_uint(args[0]))
            state.push(s)
        elif op == Op.LDI:
            _check_width(args[0], 1, 257)
            s = state.pop_slice()
            state.push(s.read_int(args[0]))
            state.push(s)
        elif op == Op.LDREF:
            s = state.pop_slice()
            state.push(s.read_ref())
            state.push(s)
        elif op == Op.LDOPTREF:
            s = state.pop_slice()
            state.push(s.read_maybe_ref())
            state.push(s)
        elif op == Op.LDSLICE:
            _check_width(args[0], 0, 1023)
            s = state.pop_slice()
            state.push(s.read_slice(args[0]))
            state.push(s)
        elif op == Op.LDGRAMS:
            s = state.pop_slice()
            state.push(s.read_coins())
            state.push(s)
        elif op == Op.LDMSGADDR:
            s = state.pop_slice()
            state.push(_load_msg_address(s))
            state.push(s)
        elif op == Op.SBITS:
            state.push(state.pop_slice().remaining_bits())
        elif op == Op.SREFS:
            state.push(state.pop_slice().remaining_refs())
        elif op == Op.HASHCU:
            state.push(state.pop_cell().hash_int)
        elif op == Op.HASHSU:
            state.push(state.pop_slice().to_cell().hash_int)

        # Control
        elif op == Op.THROW:
            raise VMAbort(args[0])
        elif op == Op.THROWIF:
            if state.pop_int():
                raise VMAbort(args[0])
        elif op == Op.THROWIFNOT:
            if not state.pop_int():
                raise VMAbort(args[0])

        # Context
        elif op == Op.GETDATA:
            state.push(state.data)
        elif op == Op.SETDATA:
            state.data = state.pop_cell()
            state.data_changed = True
        elif op == Op.NOW:
            state.push_int(context.now)
        elif op == Op.ACCEPT:
            state.accepted = True
            state.gas_limit = max(state.gas_limit, context.gas_limit)
        elif op == Op.SENDRAWMSG:
            mode = state.pop_int()
            if not 0 <= mode <= 255:
                raise VMFault(FaultCode.RANGE_CHECK, f"Send mode out of range: {mode}")
            state.actions.append(OutAction(state.pop_cell(), mode))
        elif op == Op.MYADDR:
            state.push(Slice(Cell(context.address.to_bits())))
        elif op == Op.BALANCE:
            state.push_int(context.balance)

        # Crypto
        elif op == Op.CHKSIGNU:
            key = state.pop_int()
            signature = state.pop_slice()
            digest = state.pop_int()
            if not 0 <= key < (1 << 256) or not 0 <= digest < (1 << 256):
                raise VMFault(FaultCode.RANGE_CHECK, "Hash and key must be 256-bit unsigned")
            if signature.remaining_bits() < SIGNATURE_BITS:
                raise VMFault(FaultCode.CELL_UNDERFLOW, "Signature slice shorter than 512 bits")
            sig = int(signature.preload(SIGNATURE_BITS), 2).to_bytes(SIGNATURE_BITS // 8, "big")
            state.push_bool(verify_digest(digest.to_bytes(32, "big"), sig, key))

        else:
            raise VMFault(FaultCode.INVALID_OPCODE, f"Invalid opcode {op!r}")


# =============================================================================
# CONTRACTS
# =============================================================================

def _stack_value(value: Any) -> StackValue:
    """Convert a harness argument into a VM stack value."""
    if isinstance(value, bool):
        return -1 if value else 0
    if isinstance(value, int):
        if not INT_MIN <= value <= INT_MAX:
            raise ValueError(f"Integer argument does not fit 257 bits: {value}")
        return value
    if value is None or isinstance(value, Cell):
        return value
    if isinstance(value, Slice):
        return value.copy()
    if isinstance(value, Builder):
        return value.copy()
    if isinstance(value, Address):
        return Slice(Cell(value.to_bits()))
    if isinstance(value, (Record, SignedRecord)):
        return value.as_cell()
    raise TypeError(f"Cannot pass {type(value).__name__} on the VM stack")


def _body_slice(body: Any) -> Slice:
    if isinstance(body, Slice):
        return body.copy()
    return to_cell(body).begin_parse()


@dataclass(frozen=True)
class CompiledContract:
    """A lowered contract: program plus the storage schema it was built with."""
    name: str
    program: Program
    data_schema: Optional[Schema] = None

    @cached_property
    def code_cell(self) -> Cell:
        return self.program.to_cell()

    def data_cell(self, data: Any) -> Cell:
        if isinstance(data, Record):
            if self.data_schema is not None and data.schema is not self.data_schema:
                raise TypeError(f"{self.name} data must be a {self.data_schema.name} record")
            return data.as_cell()
        return to_cell(data)

    def address(self, data: Any, workchain: Optional[int] = None) -> Address:
        if workchain is None:
            workchain = get_config().vm.workchain.get()
        return contract_address(self.code_cell, self.data_cell(data), workchain)

    def instantiate(
        self,
        data: Any,
        address: Optional[Address] = None,
        balance: int = 0,
        now: Optional[int] = None,
    ) -> "ContractInstance":
        return ContractInstance(self, self.data_cell(data), address, balance, now)

    def to_boc(self) -> bytes:
        return self.code_cell.to_boc()

    @classmethod
    def from_boc(cls, data: bytes, name: str = "", data_schema: Optional[Schema] = None) -> "CompiledContract":
        return cls(name, Program.from_cell(Cell.from_boc(data)), data_schema)


class ContractInstance:
    """
    Compiled code bound to a current data cell.

    Successful state-changing invocations replace ``data`` with the new cell;
    aborts, faults and unaccepted externals leave it untouched.
    """

    def __init__(
        self,
        compiled: CompiledContract,
        data: Cell,
        address: Optional[Address] = None,
        balance: int = 0,
        now: Optional[int] = None,
    ):
        self.compiled = compiled
        self.data = data
        self.address = address or compiled.address(data)
        self.balance = balance
        self.now = now if now is not None else get_config().vm.default_now.get()
        self._vm = RiftVM()

    def state(self) -> Record:
        """Current data parsed with the contract's storage schema."""
        if self.compiled.data_schema is None:
            raise ValueError(f"{self.compiled.name} has no data schema")
        return self.compiled.data_schema.parse(self.data)

    def _context(self, now: Optional[int], external: bool = False) -> ExecutionContext:
        cfg = get_config().vm
        return ExecutionContext(
            data=self.data,
            address=self.address,
            now=self.now if now is None else now,
            balance=self.balance,
            gas_limit=cfg.gas_limit.get(),
            gas_credit=cfg.gas_credit.get() if external else None,
        )

    def _run(self, key: Any, kind: EntryKind, stack: List[StackValue], context: ExecutionContext) -> ExecutionResult:
        entry = self.compiled.program.entry(key)
        if entry is None or entry.kind != kind:
            return ExecutionResult(
                status=ExitStatus.FAULT,
                exit_code=int(FaultCode.METHOD_NOT_FOUND),
                error=f"{self.compiled.name} has no {kind.name.lower()} entry point {key!r}",
            )
        with operation_scope("exec"):
            result = self._vm.execute(entry, stack, context)
            logger.debug(
                "Executed entry point",
                contract=self.compiled.name,
                method=entry.name,
                status=result.status.value,
                exit_code=result.exit_code,
                gas_used=result.gas_used,
            )
        return result

    def _commit(self, result: ExecutionResult) -> None:
        if result.ok and result.accepted and result.data is not None:
            self.data = result.data

    def run_get_method(
        self,
        method: Union[str, int],
        args: Sequence[Any] = (),
        now: Optional[int] = None,
    ) -> ExecutionResult:
        """Run a get method; never commits data."""
        stack = [_stack_value(a) for a in args]
        return self._run(method, EntryKind.GET, stack, self._context(now))

    def recv_internal(
        self,
        value: int,
        sender: Optional[Address],
        message_cell: Optional[Cell] = None,
        body: Any = None,
        now: Optional[int] = None,
        bounce: bool = True,
    ) -> ExecutionResult:
        """
        Deliver an internal message carrying ``value`` nanotons.

        A prebuilt ``message_cell`` must agree with ``value`` and ``sender``;
        its body is used unless ``body`` is given.
        """
        if message_cell is None:
            message_cell = internal_message(
                dest=self.address,
                value=value,
                body=to_cell(body),
                src=sender,
                bounce=bounce,
            )
            body_slice = _body_slice(body)
        else:
            header = parse_message_header(message_cell)
            if header.kind != "internal":
                raise ValueError("message_cell is not an internal message")
            if header.src != sender:
                raise ValueError(f"sender {sender} does not match message source {header.src}")
            if header.value != value:
                raise ValueError(f"value {value} does not match message value {header.value}")
            body_slice = header.body.begin_parse() if body is None else _body_slice(body)
        result = self._run(
            0, EntryKind.INTERNAL, [value, message_cell, body_slice], self._context(now)
        )
        self._commit(result)
        return result

    def recv_external(
        self,
        body: Any,
        message_cell: Optional[Cell] = None,
        now: Optional[int] = None,
    ) -> ExecutionResult:
        """Deliver an inbound external message."""
        if message_cell is None:
            message_cell = external_message(dest=self.address, body=to_cell(body))
        result = self._run(
            -1,
            EntryKind.EXTERNAL,
            [0, message_cell, _body_slice(body)],
            self._context(now, external=True),
        )
        self._commit(result)
        return result
