"""
Tracing and lowering tests: path exploration, effect ordering, bounded
loops and every lowering-time failure.

Run with: pytest tests/test_lowering.py -v
"""

import pytest

from rift.cell import Address, Cell
from rift.config import get_config_manager
from rift.contract import ContractBuilder, compile_contract
from rift.errors import (
    BuilderOverflowError,
    CellOverflow,
    FieldRangeError,
    LoweringError,
    SchemaMismatchError,
    UnboundedLoopError,
    UntraceableError,
)
from rift.ir import EntryKind, Op, iter_instructions
from rift.lowering import lower, lower_entry
from rift.model import Bits, Schema, uint8, uint32, uint64, uint256
from rift.trace import Branch, Return, Tracer
from rift.vm import ExitStatus, FaultCode

from contracts import CounterData, echo, forwarder, storage, wallet


def _ops(entry):
    return [i.op for i in iter_instructions(entry.block)]


def _trace(fn, kind=EntryKind.INTERNAL, data=CounterData, **kwargs):
    return Tracer(fn, kind, data, contract="T", method=fn.__name__, **kwargs).trace()


def _compile_receive(fn, data=CounterData):
    builder = ContractBuilder("T", data=data)
    builder.internal_receive(fn)
    return compile_contract(builder.build())


# =============================================================================
# TRACING
# =============================================================================

class TestTracer:
    """Tests for path exploration."""

    def test_straight_line_has_one_path(self):
        """A method without symbolic branches has a single path."""
        def fn(self):
            self.data.count = self.data.count + 1
            self.data.save()

        result = _trace(fn)
        assert result.paths == 1
        assert isinstance(result.root.end, Return)
        assert [n.op for n in result.root.nodes][-1] == Op.SETDATA

    def test_branch_forks_tree(self):
        """A symbolic if produces a Branch with both continuations."""
        def fn(self):
            if self.value > 10:
                self.accept_message()

        result = _trace(fn)
        assert result.paths == 2
        assert isinstance(result.root.end, Branch)
        then_ops = [n.op for n in result.root.end.then.walk()]
        else_ops = [n.op for n in result.root.end.orelse.walk()]
        assert Op.ACCEPT in then_ops
        assert Op.ACCEPT not in else_ops

    def test_nested_branches(self):
        """Independent conditions multiply paths."""
        def fn(self):
            a = self.body.read_uint(8)
            if a == 1:
                self.accept_message()
            if a == 2:
                self.accept_message()

        assert _trace(fn).paths == 4

    def test_concrete_conditions_do_not_fork(self):
        """Python-level conditions on concrete values are resolved at trace time."""
        def fn(self):
            for i in range(3):
                if i == 1:
                    self.accept_message()

        result = _trace(fn)
        assert result.paths == 1
        assert [n.op for n in result.root.nodes].count(Op.ACCEPT) == 1

    def test_get_method_inputs(self):
        """Get methods receive one placeholder per declared parameter."""
        def fn(self, a, b):
            return a + b

        result = _trace(fn, kind=EntryKind.GET, params=[uint8, uint8], returns=[uint32])
        assert len(result.inputs) == 2

    def test_receive_inputs(self):
        """Receive methods start with value, message and body."""
        result = _trace(lambda self: None)
        assert len(result.inputs) == 3


# =============================================================================
# LOWERING
# =============================================================================

class TestLowering:
    """Tests for stack scheduling."""

    def test_receive_leaves_empty_stack(self):
        """Unused receive inputs are dropped."""
        result = _trace(lambda self: None)
        assert [i.op for i in lower(result)] == [Op.BLKDROP]

    def test_get_method_returns_in_order(self):
        """Return values end on the stack in declaration order."""
        def fn(self, a, b):
            return b, a

        result = _trace(fn, kind=EntryKind.GET, params=[uint8, uint8], returns=[uint8, uint8])
        assert [i.op for i in lower(result)] == [Op.SWAP]

    def test_dead_pure_code_pruned(self):
        """Pure computations whose results are unused are not emitted."""
        def fn(self):
            unused = self.now() > 5
            self.accept_message()

        entry = lower_entry(fn, EntryKind.INTERNAL, "recv_internal", 0, CounterData)
        assert Op.NOW not in _ops(entry)
        assert Op.GREATER not in _ops(entry)
        assert Op.ACCEPT in _ops(entry)

    def test_pruning_can_be_disabled(self):
        """tracer.prune_dead_code=false keeps dead pure nodes."""
        def fn(self):
            unused = self.now() > 5
            self.accept_message()

        get_config_manager().set("tracer.prune_dead_code", False)
        entry = lower_entry(fn, EntryKind.INTERNAL, "recv_internal", 0, CounterData)
        assert Op.NOW in _ops(entry)

    def test_unused_arithmetic_kept(self):
        """Arithmetic that may overflow is emitted even when its result is unused."""
        def fn(self):
            unused = self.now() * 5
            self.accept_message()

        entry = lower_entry(fn, EntryKind.INTERNAL, "recv_internal", 0, CounterData)
        assert Op.MUL in _ops(entry)

    @pytest.mark.parametrize("prune", [True, False])
    def test_unused_overflow_still_faults(self, prune):
        """An overflow in a discarded result faults whether or not pruning is on."""
        get_config_manager().set("tracer.prune_dead_code", prune)
        builder = ContractBuilder("Cube", data=CounterData)

        @builder.get_method(params=[uint256], returns=[uint8])
        def cube(self, a):
            _ = a * a * a
            return 1

        compiled = compile_contract(builder.build())
        box = compiled.instantiate(CounterData.new(count=0))
        result = box.run_get_method("cube", [(1 << 256) - 1])
        assert result.status == ExitStatus.FAULT
        assert result.exit_code == FaultCode.INTEGER_OVERFLOW

    def test_branches_lower_to_ifelse(self):
        """Symbolic conditionals become IFELSE with both blocks."""
        compiled = compile_contract(forwarder.build())
        entry = compiled.program.entry("recv_internal")
        ifelse = [i for i in iter_instructions(entry.block) if i.op == Op.IFELSE]
        assert len(ifelse) == 1
        then_block, else_block = ifelse[0].args
        assert [i.op for i in then_block].count(Op.SENDRAWMSG) == 2
        assert [i.op for i in else_block].count(Op.SENDRAWMSG) == 2

    def test_effect_order_preserved_on_every_path(self):
        """Sends appear in trace order on both branches."""
        compiled = compile_contract(forwarder.build())
        entry = compiled.program.entry("recv_internal")
        ifelse = next(i for i in entry.block if i.op == Op.IFELSE)
        for block, modes in zip(ifelse.args, ([1, 2], [64, 128])):
            effects = [i for i in block if i.op in (Op.PUSHINT, Op.SENDRAWMSG)]
            assert [i.op for i in effects] == [
                Op.PUSHINT, Op.SENDRAWMSG, Op.PUSHINT, Op.SENDRAWMSG,
            ]
            assert [i.args[0] for i in effects if i.op == Op.PUSHINT] == modes

    def test_assert_lowers_to_throwifnot(self):
        """assert_ becomes THROWIFNOT with the declared exit code."""
        compiled = compile_contract(storage.build())
        ops = [
            (i.op, i.args)
            for i in iter_instructions(compiled.program.entry("recv_internal").block)
        ]
        assert (Op.THROWIFNOT, (1001,)) in ops

    def test_exposed_fields_become_get_methods(self):
        """expose_fields generates one getter per field."""
        compiled = compile_contract(storage.build())
        names = sorted(e.name for e in compiled.program.get_methods())
        assert names == ["admin", "value"]


# =============================================================================
# LOOPS
# =============================================================================

class TestLoops:
    """Tests for structurally bounded unrolling."""

    def test_ref_loop_unrolls_to_four(self):
        """A loop over body references unrolls once per possible reference."""
        def fn(self):
            while self.body.remaining_refs():
                self.send_raw_message(self.body.read_ref(), 0)

        result = _trace(fn)
        assert result.paths == 5
        sends = [n for n in result.root.walk() if n.op == Op.SENDRAWMSG]
        assert len(sends) == 4

    def test_wallet_compiles_with_bounded_code(self):
        """The wallet's forwarding loop yields a bounded instruction count."""
        compiled = compile_contract(wallet.build())
        entry = compiled.program.entry("recv_external")
        assert _ops(entry).count(Op.SENDRAWMSG) == 4
        assert entry.instruction_count() < 400

    def test_unbounded_loop_fails(self):
        """A loop whose bound is not structural is a lowering error."""
        def fn(self):
            n = self.body.read_uint(8)
            while n > 0:
                n = n - 1

        with pytest.raises(UnboundedLoopError) as exc:
            _compile_receive(fn)
        assert "recv_internal" in str(exc.value)
        assert "test_lowering.py" in exc.value.location

    def test_unroll_limit_configurable(self):
        """tracer.loop_unroll_limit caps repeated branch sites."""
        def fn(self):
            n = self.body.read_uint(8)
            for _ in range(3):
                if n > 0:
                    n = n - 1

        get_config_manager().set("tracer.loop_unroll_limit", 2)
        with pytest.raises(UnboundedLoopError):
            _trace(fn)

    def test_max_paths(self):
        """Exceeding tracer.max_paths fails instead of exploring forever."""
        get_config_manager().set("tracer.max_paths", 2)
        with pytest.raises(LoweringError, match="more than 2"):
            compile_contract(wallet.build())


# =============================================================================
# LOWERING ERRORS
# =============================================================================

class TestLoweringErrors:
    """Tests for fatal compile-time failures."""

    def test_int_conversion_untraceable(self):
        """Converting a symbolic value to a Python int is untraceable."""
        def fn(self):
            int(self.value)

        with pytest.raises(UntraceableError) as exc:
            _compile_receive(fn)
        assert exc.value.method == "recv_internal"
        assert exc.value.contract == "T"

    def test_cell_truth_untraceable(self):
        """Testing a cell for truth is untraceable."""
        def fn(self):
            if self.body.read_ref():
                self.accept_message()

        with pytest.raises(UntraceableError):
            _compile_receive(fn)

    def test_true_division_untraceable(self):
        """True division has no integer meaning."""
        def fn(self):
            self.data.count = self.data.count / 2

        with pytest.raises(UntraceableError):
            _compile_receive(fn)

    def test_hash_untraceable(self):
        """Symbolic values cannot be dict keys."""
        def fn(self):
            {self.value: 1}

        with pytest.raises(UntraceableError):
            _compile_receive(fn)

    def test_width_mismatch(self):
        """Storing a uint64 into a uint32 field is a schema mismatch."""
        Big = Schema("Big", [("n", uint64)])

        def fn(self):
            body = self.body % Big
            self.data.count = body.n
            self.data.save()

        with pytest.raises(SchemaMismatchError) as exc:
            _compile_receive(fn)
        assert "uint64" in str(exc.value)

    def test_bits_width_mismatch(self):
        """A slice wider than a bits field is refused before it is stored."""
        Tagged = Schema("Tagged", [("tag", Bits(8)), ("n", uint8)])

        def fn(self):
            self.data.tag = self.body.read_slice(16)
            self.data.save()

        with pytest.raises(SchemaMismatchError) as exc:
            _compile_receive(fn, data=Tagged)
        assert "bits8" in str(exc.value)

    def test_bits_exact_width_accepted(self):
        """A slice of exactly the field width stores into a bits field."""
        Tagged = Schema("Tagged", [("tag", Bits(8)), ("n", uint8)])

        def fn(self):
            self.data.tag = self.body.read_slice(8)
            self.data.save()

        compiled = _compile_receive(fn, data=Tagged)
        assert compiled.program.entry("recv_internal") is not None

    def test_bits_rejects_address(self):
        """An address is not a raw bit string."""
        Tagged = Schema("Tagged", [("tag", Bits(8)), ("n", uint8)])

        def fn(self):
            self.data.tag = self.sender
            self.data.save()

        with pytest.raises(SchemaMismatchError):
            _compile_receive(fn, data=Tagged)

    def test_type_mismatch(self):
        """Storing an address into an integer field is a schema mismatch."""
        def fn(self):
            self.data.count = self.sender
            self.data.save()

        with pytest.raises(SchemaMismatchError):
            _compile_receive(fn)

    def test_constant_out_of_range(self):
        """Constants are checked against the field width at trace time."""
        def fn(self):
            self.data.count = 1 << 40
            self.data.save()

        with pytest.raises(FieldRangeError):
            _compile_receive(fn)

    def test_builder_overflow(self):
        """A builder that can never fit its cell fails at trace time."""
        def fn(self):
            b = self.begin_cell()
            for _ in range(5):
                b.store_uint(self.value, 256)
            self.send_raw_message(b.end_cell(), 0)

        with pytest.raises(BuilderOverflowError) as exc:
            _compile_receive(fn)
        assert isinstance(exc.value, CellOverflow)

    def test_receive_must_not_return(self):
        """Receive entry points return nothing."""
        def fn(self):
            return self.value

        with pytest.raises(LoweringError):
            _compile_receive(fn)

    def test_get_method_return_count(self):
        """Get methods must return exactly the declared values."""
        builder = ContractBuilder("T", data=CounterData)

        @builder.get_method(returns=[uint32, uint32])
        def pair(self):
            return self.data.count

        with pytest.raises(LoweringError, match="declares 2"):
            compile_contract(builder.build())

    def test_exit_code_range(self):
        """Exit codes below 2 are reserved."""
        def fn(self):
            self.assert_(self.value > 0, 1)

        with pytest.raises(LoweringError):
            _compile_receive(fn)

    def test_symbolic_exit_code_rejected(self):
        """Exit codes must be constants."""
        def fn(self):
            self.throw(self.value)

        with pytest.raises(LoweringError):
            _compile_receive(fn)

    def test_sender_only_in_internal(self):
        """sender is unavailable to external receive."""
        builder = ContractBuilder("T", data=CounterData)

        @builder.external_receive
        def ext(self):
            self.assert_(self.sender == Address(0, bytes(32)), 40)

        with pytest.raises(LoweringError, match="sender"):
            compile_contract(builder.build())

    def test_duplicate_entry_names(self):
        """Two get methods with the same name are rejected at build time."""
        builder = ContractBuilder("T", data=CounterData)
        builder.get_method(lambda self: self.data.count, name="count", returns=[uint32])
        builder.expose_fields("count")
        with pytest.raises(ValueError):
            builder.build()

    def test_expose_unknown_field(self):
        """Only existing storage fields can be exposed."""
        with pytest.raises(AttributeError):
            ContractBuilder("T", data=CounterData).expose_fields("missing")

    def test_echo_compiles(self):
        """Get methods with parameters and branches compile."""
        compiled = compile_contract(echo.build())
        assert compiled.program.entry("is_small").params == 1
        assert compiled.program.entry("sum_and_diff").returns == 2
