"""
Rift Contract Definition

Contracts are assembled by composition: a storage schema, the message body
schemas it accepts, a set of entry-point functions and the get methods it
exposes.

    builder = ContractBuilder("Storage", data=Data, bodies=[ChangeBody])

    @builder.internal_receive
    def on_message(self):
        self.assert_(self.sender == self.data.admin, 1001)
        body = self.body % ChangeBody
        self.data.value = body.new_value
        self.data.save()

    @builder.get_method(returns=[uint64])
    def total(self):
        return self.data.value

    builder.expose_fields("admin")
    compiled = compile_contract(builder.build())

Entry-point functions receive a ``TraceContext`` as ``self``; get methods
receive their declared parameters after it. Exposed fields become get
methods named after the field, returning its stored value.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rift.ir import (
    RECV_EXTERNAL_ID,
    RECV_INTERNAL_ID,
    EntryKind,
    Program,
    method_id as derive_method_id,
)
from rift.lowering import lower_entry
from rift.model import FieldType, Schema
from rift.observability import RiftLayer, get_logger, timed_operation
from rift.vm import CompiledContract

logger = get_logger("contract", RiftLayer.LOWERING)

EntryFn = Callable[..., Any]


@dataclass(frozen=True)
class EntryPoint:
    """An entry-point function plus its calling convention."""
    name: str
    kind: EntryKind
    fn: EntryFn
    method_id: int
    params: Tuple[FieldType, ...] = ()
    returns: Tuple[FieldType, ...] = ()


@dataclass(frozen=True)
class Contract:
    """A contract definition ready for compilation."""
    name: str
    data: Schema
    entries: Tuple[EntryPoint, ...]
    bodies: Tuple[Schema, ...] = ()
    exposed_fields: Tuple[str, ...] = field(default_factory=tuple)

    def entry(self, name: str) -> Optional[EntryPoint]:
        for e in self.entries:
            if e.name == name:
                return e
        return None


class ContractBuilder:
    """Collects entry points and exposure declarations for one contract."""

    def __init__(self, name: str, data: Schema, bodies: Sequence[Schema] = ()):
        if not isinstance(data, Schema):
            raise TypeError(f"Contract data must be a Schema, got {data!r}")
        for schema in bodies:
            if not isinstance(schema, Schema):
                raise TypeError(f"Contract bodies must be Schemas, got {schema!r}")
        self.name = name
        self.data = data
        self.bodies = tuple(bodies)
        self._entries: List[EntryPoint] = []
        self._exposed: List[str] = []

    def internal_receive(self, fn: EntryFn) -> EntryFn:
        """Register the internal message handler."""
        self._entries.append(
            EntryPoint("recv_internal", EntryKind.INTERNAL, fn, RECV_INTERNAL_ID)
        )
        return fn

    def external_receive(self, fn: EntryFn) -> EntryFn:
        """Register the inbound external message handler."""
        self._entries.append(
            EntryPoint("recv_external", EntryKind.EXTERNAL, fn, RECV_EXTERNAL_ID)
        )
        return fn

    def get_method(
        self,
        fn: Optional[EntryFn] = None,
        *,
        name: Optional[str] = None,
        returns: Sequence[FieldType] = (),
        params: Sequence[FieldType] = (),
        method_id: Optional[int] = None,
    ) -> Any:
        """
        Register a get method.

        Usable bare (``@builder.get_method``) or with a declaration
        (``@builder.get_method(returns=[uint64], params=[address])``).
        The method id defaults to the one derived from the name.
        """
        def register(f: EntryFn) -> EntryFn:
            method_name = name or f.__name__
            mid = method_id if method_id is not None else derive_method_id(method_name)
            self._entries.append(
                EntryPoint(
                    method_name,
                    EntryKind.GET,
                    f,
                    mid,
                    tuple(params),
                    tuple(returns),
                )
            )
            return f

        if fn is not None:
            return register(fn)
        return register

    def expose_fields(self, *names: str) -> "ContractBuilder":
        """Expose storage fields as get methods named after them."""
        for field_name in names:
            self.data.field_type(field_name)
            self._exposed.append(field_name)
        return self

    def _field_getter(self, field_name: str) -> EntryPoint:
        def getter(ctx):
            return getattr(ctx.data, field_name)

        getter.__name__ = field_name
        return EntryPoint(
            field_name,
            EntryKind.GET,
            getter,
            derive_method_id(field_name),
            (),
            (self.data.field_type(field_name),),
        )

    def build(self) -> Contract:
        entries = list(self._entries) + [self._field_getter(n) for n in self._exposed]

        names: Dict[str, EntryPoint] = {}
        ids: Dict[int, EntryPoint] = {}
        for e in entries:
            if e.name in names:
                raise ValueError(f"{self.name}: duplicate entry point '{e.name}'")
            if e.method_id in ids:
                raise ValueError(
                    f"{self.name}: method id {e.method_id} of '{e.name}' "
                    f"collides with '{ids[e.method_id].name}'"
                )
            names[e.name] = e
            ids[e.method_id] = e

        return Contract(
            name=self.name,
            data=self.data,
            entries=tuple(entries),
            bodies=self.bodies,
            exposed_fields=tuple(self._exposed),
        )


@timed_operation(logger, "compile_contract", id_prefix="compile")
def compile_contract(contract: Contract) -> CompiledContract:
    """Trace and lower every entry point of ``contract``."""
    lowered = [
        lower_entry(
            e.fn,
            e.kind,
            e.name,
            e.method_id,
            contract.data,
            contract=contract.name,
            params=e.params,
            returns=e.returns,
        )
        for e in contract.entries
    ]
    program = Program(tuple(lowered))
    logger.info(
        "Compiled contract",
        contract=contract.name,
        entries=len(lowered),
        instructions=sum(e.instruction_count() for e in lowered),
    )
    return CompiledContract(contract.name, program, contract.data)
