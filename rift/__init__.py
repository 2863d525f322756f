"""
Rift: trace-compiled TON contracts in Python

Contracts are written as plain Python functions over symbolic stand-ins for
storage, message and body fields. Tracing records every operation into a
tree, lowering turns the tree into stack-machine code, and a deterministic
VM runs that code against concrete cells.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                                 RIFT                                     │
    │                                                                          │
    │  DEFINITION                                                             │
    │    cell.py        Cells, builders, slices, addresses, bag-of-cells      │
    │    model.py       Typed schemas: records <-> cells                      │
    │    contract.py    ContractBuilder and compile_contract                  │
    │                                                                          │
    │  COMPILATION                                                            │
    │    trace.py       Symbolic values, path exploration, trace tree         │
    │    lowering.py    Trace tree -> stack scheduled instruction blocks      │
    │    ir.py          Opcodes, programs, binary codec, disassembler         │
    │                                                                          │
    │  EXECUTION                                                              │
    │    vm.py          Gas-metered executor, compiled contracts, instances   │
    │    harness.py     Messages, deploy packaging, sandbox                   │
    │                                                                          │
    │  AMBIENT                                                                │
    │    config.py      YAML + environment configuration                      │
    │    observability.py  Structured logging                                 │
    │    errors.py      Exception hierarchy                                   │
    │    cli.py         rift compile / disasm / get / config                  │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import Rift modules on first access."""

    # Cell exports
    if name in ("Address", "Builder", "Cell", "Slice", "begin_cell"):
        from rift import cell
        return getattr(cell, name)

    # Schema exports
    if name in ("Schema", "Record", "SignedPayload", "SignedRecord", "UInt", "Int",
                "Bits", "Ref", "uint8", "uint16", "uint32", "uint64", "uint256",
                "int8", "int32", "int64", "int257", "boolean", "coins", "address",
                "ref", "maybe_ref"):
        from rift import model
        return getattr(model, name)

    # Contract exports
    if name in ("Contract", "ContractBuilder", "compile_contract"):
        from rift import contract
        return getattr(contract, name)

    # VM exports
    if name in ("CompiledContract", "ContractInstance", "ExecutionResult",
                "ExitStatus", "FaultCode", "RiftVM"):
        from rift import vm
        return getattr(vm, name)

    # Harness exports
    if name in ("Sandbox", "deploy", "internal_message", "external_message"):
        from rift import harness
        return getattr(harness, name)

    # Crypto exports
    if name in ("KeyPair",):
        from rift import crypto
        return getattr(crypto, name)

    # Error exports
    if name in ("RiftError", "LoweringError", "ExpectationFailed"):
        from rift import errors
        return getattr(errors, name)

    raise AttributeError(f"module 'rift' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Cells
    "Address",
    "Builder",
    "Cell",
    "Slice",
    "begin_cell",
    # Schemas
    "Schema",
    "Record",
    "SignedPayload",
    # Contracts
    "ContractBuilder",
    "compile_contract",
    # Execution
    "CompiledContract",
    "ExecutionResult",
    "Sandbox",
    "deploy",
    "KeyPair",
]
