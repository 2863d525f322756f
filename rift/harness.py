"""
Rift Test/Deploy Harness

Builds concrete messages from schema records, drives compiled contracts on
the VM and packages deploy messages.

    compiled = compile_contract(contract)
    box = Sandbox(compiled, Data.new(admin=owner, value=1))
    box.send(ChangeBody.new(new_value=2), sender=owner).expect_ok()
    assert box.get("value").stack == (2,)

``deploy`` only builds the message; delivering it to a network is left to
the caller.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

from rift.cell import Address, Cell
from rift.config import get_config
from rift.messages import (
    MessageHeader,
    contract_address,
    external_message,
    internal_message,
    parse_message_header,
    state_init,
    to_cell,
)
from rift.model import Record
from rift.observability import RiftLayer, get_logger
from rift.vm import CompiledContract, ContractInstance, ExecutionResult

logger = get_logger("harness", RiftLayer.HARNESS)

__all__ = [
    "MessageHeader",
    "Sandbox",
    "contract_address",
    "deploy",
    "external_message",
    "internal_message",
    "parse_message_header",
    "state_init",
    "to_cell",
]


def deploy(
    compiled: CompiledContract,
    init_data: Any,
    amount: int,
    body: Any = None,
    workchain: Optional[int] = None,
) -> Tuple[Cell, bool]:
    """
    Package code and initial data into a deploy message.

    Returns ``(message, send_independently)``. A positive ``amount`` gives
    an internal message meant to be sent through a wallet carrying that
    value; zero gives an inbound external message the contract pays for
    itself.
    """
    if amount < 0:
        raise ValueError(f"Deploy amount must be non-negative, got {amount}")
    if workchain is None:
        workchain = get_config().vm.workchain.get()

    data = compiled.data_cell(init_data)
    init = state_init(compiled.code_cell, data)
    dest = contract_address(compiled.code_cell, data, workchain)
    body_cell = None if body is None else to_cell(body)

    if amount > 0:
        message = internal_message(dest, amount, body_cell, bounce=False, init=init)
        independent = False
    else:
        message = external_message(dest, body_cell, init=init)
        independent = True

    logger.info(
        "Built deploy message",
        contract=compiled.name,
        address=dest.to_raw(),
        amount=amount,
        independent=independent,
    )
    return message, independent


class Sandbox:
    """
    A single contract instance plus convenience senders.

    Bodies may be records, cells or slices. Every call goes through the
    instance, so successful calls update ``data`` and failed ones do not.
    """

    def __init__(
        self,
        compiled: CompiledContract,
        data: Any,
        balance: int = 0,
        now: Optional[int] = None,
        address: Optional[Address] = None,
    ):
        self.compiled = compiled
        self.instance: ContractInstance = compiled.instantiate(
            data, address=address, balance=balance, now=now
        )

    @property
    def address(self) -> Address:
        return self.instance.address

    @property
    def data(self) -> Cell:
        return self.instance.data

    @property
    def now(self) -> int:
        return self.instance.now

    @now.setter
    def now(self, value: int) -> None:
        self.instance.now = value

    def state(self) -> Record:
        return self.instance.state()

    def send(
        self,
        body: Any = None,
        sender: Optional[Address] = None,
        value: int = 0,
        bounce: bool = True,
        now: Optional[int] = None,
    ) -> ExecutionResult:
        """Deliver an internal message."""
        return self.instance.recv_internal(value, sender, body=body, now=now, bounce=bounce)

    def send_external(self, body: Any = None, now: Optional[int] = None) -> ExecutionResult:
        """Deliver an inbound external message."""
        return self.instance.recv_external(body, now=now)

    def get(
        self,
        method: Union[str, int],
        *args: Any,
        now: Optional[int] = None,
    ) -> ExecutionResult:
        """Run a get method."""
        return self.instance.run_get_method(method, args, now=now)

    def outgoing(self, result: ExecutionResult) -> Sequence[MessageHeader]:
        """Decode the messages a successful run queued, in send order."""
        return [parse_message_header(a.message) for a in result.actions]
