#!/usr/bin/env python3
"""
Rift CLI

Command-line interface over the compiler and the VM.

Usage:
    rift <command> [subcommand] [options]

Commands:
    compile     Lower a contract definition into a code BOC
    disasm      Print the instruction listing of a code BOC
    get         Run a get method against a code BOC and a data BOC
    config      Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import argparse
import importlib
import json
import os
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from rift.errors import RiftError

__version__ = "0.3.0"


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def _read_bytes(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise CLIError(f"Cannot read {path}: {e.strerror}") from e


def _parse_arg(text: str) -> Any:
    """Get-method argument: integer, ``true``/``false`` or raw address."""
    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    try:
        return int(text, 0)
    except ValueError:
        pass
    from rift.cell import Address
    try:
        return Address.parse(text)
    except ValueError:
        raise CLIError(f"Cannot parse argument {text!r}: expected int, bool or address") from None


class RiftCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="rift",
            description="Rift contract compiler and VM",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"rift {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file (YAML)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress non-essential output",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        """Register all command groups."""
        compile_cmd = self.subparsers.add_parser("compile", help="Compile a contract")
        compile_cmd.add_argument("target", help="MODULE:ATTR naming a contract or builder")
        compile_cmd.add_argument("--out", "-o", help="Output BOC file (default: <name>.boc)")

        disasm = self.subparsers.add_parser("disasm", help="Disassemble a code BOC")
        disasm.add_argument("file", help="Code BOC file")

        get = self.subparsers.add_parser("get", help="Run a get method")
        get.add_argument("file", help="Code BOC file")
        get.add_argument("method", help="Get method name or numeric id")
        get.add_argument("args", nargs="*", help="Arguments (int, true/false, raw address)")
        get.add_argument("--data", "-d", required=True, help="Data BOC file")
        get.add_argument("--now", type=int, help="Unix time seen by the contract")

        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        config_sub.add_parser("show", help="Show current configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration JSON schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            fmt = OutputFormat(parsed.format)
            from rift.config import get_config_manager
            get_config_manager().load_defaults()
            if parsed.config:
                get_config_manager().load_from_file(parsed.config)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except RiftError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 2

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Compiler handlers
    def _handle_compile(self, args: argparse.Namespace) -> Any:
        from rift.contract import Contract, ContractBuilder, compile_contract
        from rift.vm import CompiledContract

        module_name, _, attr = args.target.partition(":")
        if not module_name or not attr:
            raise CLIError(f"Expected MODULE:ATTR, got {args.target!r}")
        if os.getcwd() not in sys.path:
            sys.path.insert(0, os.getcwd())
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise CLIError(f"Cannot import {module_name}: {e}") from e
        target = getattr(module, attr, None)
        if target is None:
            raise CLIError(f"{module_name} has no attribute {attr!r}")

        if isinstance(target, ContractBuilder):
            target = target.build()
        bodies: List[Any] = []
        if isinstance(target, Contract):
            compiled = compile_contract(target)
            bodies = [
                {"name": schema.name, "fields": [name for name, _ in schema.fields]}
                for schema in target.bodies
            ]
        elif isinstance(target, CompiledContract):
            compiled = target
        else:
            raise CLIError(f"{args.target} is not a contract ({type(target).__name__})")

        out = Path(args.out or f"{compiled.name or attr}.boc")
        out.write_bytes(compiled.to_boc())
        return {
            "contract": compiled.name,
            "out": str(out),
            "code_hash": compiled.code_cell.repr_hash.hex(),
            "entries": [
                {
                    "name": e.name,
                    "method_id": e.method_id,
                    "kind": e.kind.name.lower(),
                    "instructions": e.instruction_count(),
                }
                for e in compiled.program.entries
            ],
            "bodies": bodies,
        }

    def _handle_disasm(self, args: argparse.Namespace) -> Any:
        from rift.ir import Program, disassemble
        from rift.cell import Cell

        program = Program.from_cell(Cell.from_boc(_read_bytes(args.file)))
        listing = disassemble(program)
        if args.format == OutputFormat.TEXT.value:
            return listing
        return {"listing": listing.splitlines()}

    def _handle_get(self, args: argparse.Namespace) -> Any:
        from rift.cell import Cell
        from rift.vm import CompiledContract

        compiled = CompiledContract.from_boc(_read_bytes(args.file), name=Path(args.file).stem)
        data = Cell.from_boc(_read_bytes(args.data))
        method: Any = args.method
        if method.lstrip("-").isdigit():
            method = int(method)
        instance = compiled.instantiate(data, now=args.now)
        result = instance.run_get_method(method, [_parse_arg(a) for a in args.args])
        return result.to_dict()

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from rift.config import get_config_manager
        mgr = get_config_manager()
        return mgr.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from rift.config import get_config_manager
        mgr = get_config_manager()
        errors = mgr.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from rift.config import get_config_manager
        mgr = get_config_manager()
        return mgr.export_schema()


def main() -> int:
    """CLI entry point."""
    cli = RiftCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
