"""
Rift Lowering

Turns a trace tree into a linear stack-machine block.

Nodes are emitted in trace order, so effects (SETDATA, ACCEPT, SENDRAWMSG,
THROW*) keep exactly the order in which the entry point performed them.
The stack is scheduled with a liveness pass over the tree:

    operand used again later    PUSH i   (copy)
    operand's last use          ROLL i   (move; SWAP for i = 1)
    value dead after a node     DROP / BLKDROP n / XCHG i + DROP
    pure node, outputs unused   pruned (tracer.prune_dead_code)

Each branch lowers to ``IFELSE {then} {else}``; both continuations start
from a copy of the parent stack and run to the end of the entry point.
Get methods finish with exactly their return values on the stack, bottom
to top in declaration order. Receive entry points finish with an empty
stack.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import time
from typing import Any, Callable, Dict, FrozenSet, List, Sequence, Tuple

from rift.config import get_config
from rift.errors import LoweringError
from rift.ir import PURE_OPS, Block, Entry, EntryKind, Instr, Op
from rift.model import FieldType, Schema
from rift.observability import RiftLayer, get_logger
from rift.trace import Branch, Return, TraceBlock, TraceResult, Tracer

logger = get_logger("lowering", RiftLayer.LOWERING)

MAX_STACK_INDEX = 255


class _Lowerer:
    def __init__(self, prune: bool = True):
        self.prune = prune
        self._live_in: Dict[int, FrozenSet[int]] = {}
        self._keep: Dict[int, List[bool]] = {}
        self._live_after: Dict[int, List[FrozenSet[int]]] = {}

    # -- liveness -------------------------------------------------------------

    def analyze(self, block: TraceBlock) -> FrozenSet[int]:
        """Backward liveness; also decides which pure nodes are dead."""
        end = block.end
        if isinstance(end, Branch):
            live = set(self.analyze(end.then) | self.analyze(end.orelse))
            live.add(end.cond)
        elif isinstance(end, Return):
            live = set(end.values)
        else:
            live = set()

        count = len(block.nodes)
        keep = [True] * count
        after: List[FrozenSet[int]] = [frozenset()] * count
        for i in range(count - 1, -1, -1):
            node = block.nodes[i]
            after[i] = frozenset(live)
            if self.prune and node.op in PURE_OPS and not live.intersection(node.outputs):
                keep[i] = False
                continue
            live.difference_update(node.outputs)
            live.update(node.inputs)

        key = id(block)
        self._keep[key] = keep
        self._live_after[key] = after
        self._live_in[key] = frozenset(live)
        return self._live_in[key]

    # -- emission -------------------------------------------------------------

    def emit_block(self, block: TraceBlock, stack: List[int]) -> Block:
        out: List[Instr] = []
        key = id(block)
        keep = self._keep[key]
        after = self._live_after[key]

        self._drop_dead(stack, self._live_in[key], out)
        for i, node in enumerate(block.nodes):
            if not keep[i]:
                continue
            self._operands(stack, node.inputs, after[i], out)
            out.append(Instr(node.op, node.args))
            if node.inputs:
                del stack[len(stack) - len(node.inputs):]
            stack.extend(node.outputs)
            self._check_depth(stack, node.location)
            if node.op == Op.THROW:
                return tuple(out)
            self._drop_dead(stack, after[i], out)

        end = block.end
        if isinstance(end, Branch):
            wanted = self._live_in[id(end.then)] | self._live_in[id(end.orelse)]
            self._operands(stack, (end.cond,), wanted, out)
            stack.pop()
            then_code = self.emit_block(end.then, list(stack))
            else_code = self.emit_block(end.orelse, list(stack))
            out.append(Instr(Op.IFELSE, (then_code, else_code)))
        elif isinstance(end, Return):
            self._operands(stack, end.values, frozenset(), out)
            if len(stack) != len(end.values):
                raise LoweringError("Internal error: values left on the stack at return")
        return tuple(out)

    def _operands(
        self,
        stack: List[int],
        inputs: Sequence[int],
        live_after: FrozenSet[int],
        out: List[Instr],
    ) -> None:
        """Bring ``inputs`` to the top of the stack in order."""
        count = len(inputs)
        moves = [
            not (v in live_after or v in inputs[j + 1:])
            for j, v in enumerate(inputs)
        ]
        if all(moves) and len(stack) >= count and stack[len(stack) - count:] == list(inputs):
            return

        for j, vid in enumerate(inputs):
            depth = self._find(stack, vid, len(stack) - j)
            if moves[j]:
                if depth == 1:
                    out.append(Instr(Op.SWAP))
                elif depth > 1:
                    out.append(Instr(Op.ROLL, (depth,)))
                stack.append(stack.pop(len(stack) - 1 - depth))
            else:
                out.append(Instr(Op.DUP) if depth == 0 else Instr(Op.PUSH, (depth,)))
                stack.append(vid)
                self._check_depth(stack)

    @staticmethod
    def _find(stack: List[int], vid: int, region: int) -> int:
        """Depth from the top of ``vid``, searching only the lowest ``region`` items."""
        for idx in range(region - 1, -1, -1):
            if stack[idx] == vid:
                depth = len(stack) - 1 - idx
                if depth > MAX_STACK_INDEX:
                    raise LoweringError(f"Value is {depth} slots deep; stack access is limited to {MAX_STACK_INDEX}")
                return depth
        raise LoweringError(f"Internal error: value %{vid} is not on the stack")

    @staticmethod
    def _drop_dead(stack: List[int], live: FrozenSet[int], out: List[Instr]) -> None:
        top = 0
        while top < len(stack) and stack[-1 - top] not in live:
            top += 1
        if top == 1:
            out.append(Instr(Op.DROP))
        elif top > 1:
            out.append(Instr(Op.BLKDROP, (top,)))
        if top:
            del stack[-top:]

        while True:
            depth = next(
                (d for d, vid in enumerate(reversed(stack)) if vid not in live),
                None,
            )
            if depth is None:
                return
            out.append(Instr(Op.SWAP) if depth == 1 else Instr(Op.XCHG, (depth,)))
            out.append(Instr(Op.DROP))
            stack[-1], stack[-1 - depth] = stack[-1 - depth], stack[-1]
            stack.pop()

    @staticmethod
    def _check_depth(stack: List[int], location: str = "") -> None:
        if len(stack) > MAX_STACK_INDEX:
            raise LoweringError(
                f"Stack grows beyond {MAX_STACK_INDEX} values",
                location=location,
            )


def lower(result: TraceResult, prune: bool = True) -> Block:
    """Lower a traced entry point into an instruction block."""
    lowerer = _Lowerer(prune)
    lowerer.analyze(result.root)
    return lowerer.emit_block(result.root, list(result.inputs))


def lower_entry(
    fn: Callable[..., Any],
    kind: EntryKind,
    name: str,
    method_id: int,
    data_schema: Schema,
    contract: str = "",
    params: Sequence[FieldType] = (),
    returns: Sequence[FieldType] = (),
) -> Entry:
    """Trace and lower one entry point."""
    start = time.monotonic()
    result = Tracer(
        fn,
        kind,
        data_schema,
        contract=contract,
        method=name,
        params=params,
        returns=returns,
    ).trace()
    try:
        block = lower(result, prune=get_config().tracer.prune_dead_code.get())
    except LoweringError as e:
        raise e.with_context(contract, name)

    entry = Entry(name, method_id, kind, block, len(params), len(returns))
    logger.info(
        "Lowered entry point",
        contract=contract,
        method=name,
        kind=kind.name.lower(),
        paths=result.paths,
        instructions=entry.instruction_count(),
        duration_ms=(time.monotonic() - start) * 1000,
    )
    return entry
