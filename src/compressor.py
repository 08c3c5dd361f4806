import enum
import functools
import heapq
import logging
from dataclasses import dataclass

from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from errors import CompressionError, MultiplierConfigError

logger = logging.getLogger(__name__)


class BitCompressor(wiring.Component):
    """Adds ``width`` bits of the same weight into a sum bit and a carry bit"""

    def __init__(self, width: int):
        self.width = width

        super().__init__(
            {
                "compress_bits": In(width),
                "sum": Out(1),
                "carry": Out(1),
            }
        )


class Compressor2(BitCompressor):
    """2-input column compressor (half adder)"""

    def __init__(self):
        super().__init__(2)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        m.d.comb += self.sum.eq(self.compress_bits.xor())
        m.d.comb += self.carry.eq(self.compress_bits.all())

        return m


class Compressor3(BitCompressor):
    """3-input column compressor (full adder)"""

    def __init__(self):
        super().__init__(3)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        bits = self.compress_bits

        m.d.comb += self.sum.eq(bits.xor())
        m.d.comb += self.carry.eq(Mux(bits[0], bits[1:3].any(), bits[1:3].all()))

        return m


class CompressTermKind(enum.Enum):
    PARTIAL_PRODUCT = "pp"
    SUM = "s"
    CARRY = "c"


# Estimated logic depth added by the cell producing each kind of term
TERM_LATENCY = {
    CompressTermKind.PARTIAL_PRODUCT: 0.0,
    CompressTermKind.SUM: 1.0,
    CompressTermKind.CARRY: 0.75,
}


@functools.total_ordering
class CompressTerm:
    """One bit waiting in a column: a partial product, or a compressor output

    Terms order by estimated delay, then by creation ``index``, so the
    earliest available signals are compressed first.

    ``col`` is the column the term sits in, so a carry records the column it
    is pushed into (one above its inputs) rather than the column that
    produced it.  A carry dropped out of the top column has
    ``col == max_width()``, which is also its weight.
    """

    def __init__(self, kind: CompressTermKind, value, inputs=(), row: int = 0, col: int = 0, index: int = 0, bit=None):
        self.kind = kind
        self.value = value
        self.inputs = tuple(inputs)
        self.row = row
        self.col = col
        self.index = index
        self.bit = bit
        self.delay = max((term.delay + TERM_LATENCY[kind] for term in self.inputs), default=0.0)

    def _key(self) -> tuple[float, int]:
        return self.delay, self.index

    def __lt__(self, other) -> bool:
        if not isinstance(other, CompressTerm):
            raise TypeError(f"CompressTerm cannot be ordered against {type(other).__name__}")
        return self._key() < other._key()

    def evaluate(self, row_values, memo=None) -> int:
        """Recompute this bit from the original rows, ignoring the circuit"""
        if memo is None:
            memo = {}
        if self in memo:
            return memo[self]

        if self.kind is CompressTermKind.PARTIAL_PRODUCT:
            value = (row_values[self.row] >> self.bit) & 1
        else:
            bits = [term.evaluate(row_values, memo) for term in self.inputs]
            if self.kind is CompressTermKind.SUM:
                value = sum(bits) & 1
            else:
                # majority; only holds for the 2 and 3 input cells built here
                value = int(sum(bits) > len(bits) // 2)

        memo[self] = value
        return value

    def __str__(self) -> str:
        return f"{self.kind.value}{self.row},{self.col}"

    def __repr__(self) -> str:
        return f"CompressTerm({self}, delay={self.delay})"


@dataclass(frozen=True)
class Combinational:
    """Expose ``add0``/``add1`` straight from the compression tree"""


@dataclass(frozen=True)
class Registered:
    """Latch ``add0``/``add1`` in ``domain``, with optional synchronous reset/enable ports"""

    domain: str = "sync"
    reset: bool = False
    enable: bool = False


class ColumnCompressor(wiring.Component):
    """Delay-driven Wallace/Dadda style reduction of a partial product matrix

    Row ``i`` (port ``row_<i>``) starts at column ``row_shift[i]``.  Columns
    are reduced with half and full adders until each holds at most two bits;
    ``add0 + add1`` then equals the matrix sum modulo ``2**max_width()``.

    A carry out of the top column has nowhere to go and is dropped, which is
    exact only when the matrix cannot overflow ``max_width()`` bits (Booth
    matrices rely on this modular wrap).  ``width`` adds guard columns above
    the widest row, and ``guard=True`` checks at build time that no real
    carry can be dropped.
    """

    def __init__(
        self,
        row_widths: list[int],
        row_shift: list[int],
        output_mode=Combinational(),
        width: int = 0,
        guard: bool = False,
        defer_compress: bool = False,
    ):
        if not row_widths:
            raise MultiplierConfigError("ColumnCompressor needs at least one row")
        if len(row_widths) != len(row_shift):
            raise MultiplierConfigError(f"{len(row_widths)} rows but {len(row_shift)} row shifts")
        if any(shift < 0 for shift in row_shift):
            raise MultiplierConfigError(f"row shifts must be non-negative, got {row_shift}")

        self.row_widths = list(row_widths)
        self.row_shift = list(row_shift)
        self.output_mode = output_mode
        self._width = width

        width = self.max_width()
        ports = {f"row_{row}": In(row_width) for row, row_width in enumerate(self.row_widths)}
        if isinstance(output_mode, Registered):
            if output_mode.reset:
                ports["reset"] = In(1)
            if output_mode.enable:
                ports["enable"] = In(1)
        ports["add0"] = Out(width)
        ports["add1"] = Out(width)

        super().__init__(ports)

        self.terms = []
        self.columns = [[] for _ in range(width)]
        self.dropped_carries = []
        self.compressed = False
        self._cells = []

        for row, (row_width, shift) in enumerate(zip(self.row_widths, self.row_shift)):
            port = getattr(self, f"row_{row}")
            for bit in range(row_width):
                term = self._new_term(CompressTermKind.PARTIAL_PRODUCT, port[bit], (), row, shift + bit, bit)
                heapq.heappush(self.columns[shift + bit], term)

        if guard:
            self._check_guard()

        if not defer_compress:
            self.compress()

    def max_width(self) -> int:
        return max([self._width] + [row_width + shift for row_width, shift in zip(self.row_widths, self.row_shift)])

    def longest_column(self) -> int:
        return max((len(queue) for queue in self.columns), default=0)

    @property
    def delay(self) -> float:
        """Worst estimated delay among the terms left in the columns"""
        return max((term.delay for queue in self.columns for term in queue), default=0.0)

    def _check_guard(self):
        peak = sum(((1 << row_width) - 1) << shift for row_width, shift in zip(self.row_widths, self.row_shift))
        if peak >> self.max_width():
            raise MultiplierConfigError(
                f"matrix sum can reach {peak}, which carries out of the top column {self.max_width() - 1}; "
                "pass a larger width to add guard columns"
            )

    def _new_term(self, kind, value, inputs, row, col, bit=None) -> CompressTerm:
        term = CompressTerm(kind, value, inputs, row, col, len(self.terms), bit)
        self.terms.append(term)
        return term

    def _compress_iter(self, threshold: int, stage: int):
        for col, queue in enumerate(self.columns):
            depth = len(queue)
            if depth <= threshold:
                continue

            inputs = [heapq.heappop(queue), heapq.heappop(queue)]
            if depth > 3:
                inputs.append(heapq.heappop(queue))
                compressor = Compressor3()
            else:
                compressor = Compressor2()
            self._cells.append((f"cmp{len(inputs)}_s{stage}_c{col}", compressor, inputs))

            heapq.heappush(queue, self._new_term(CompressTermKind.SUM, compressor.sum, inputs, stage, col))

            carry = self._new_term(CompressTermKind.CARRY, compressor.carry, inputs, stage, col + 1)
            if col + 1 < len(self.columns):
                heapq.heappush(self.columns[col + 1], carry)
            else:
                self.dropped_carries.append(carry)
                logger.debug("dropping carry %s out of the top column", carry)

    def compress(self):
        """Build the compressor tree; may only run once"""
        if self.compressed:
            raise CompressionError("ColumnCompressor.compress() called multiple times")

        iteration = self.longest_column()
        stage = 0
        while self.longest_column() > 2:
            # Columns deeper than the shrinking threshold are reduced first,
            # which staggers the work and keeps the tree depth balanced.
            self._compress_iter(max(iteration, 2), stage)
            iteration -= 1
            stage += 1

        self.compressed = True
        logger.debug(
            "compressed %d rows over %d columns with %d cells in %d stages, delay %.2f",
            len(self.row_widths),
            len(self.columns),
            len(self._cells),
            stage,
            self.delay,
        )

    def _remaining(self, col: int) -> list[CompressTerm]:
        return sorted(self.columns[col])

    def _extract_row(self, row: int) -> Value:
        bits = []
        for col in range(len(self.columns)):
            remaining = self._remaining(col)
            bits.append(remaining[row].value if row < len(remaining) else Const(0, 1))
        return Cat(*bits)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        if not self.compressed:
            self.compress()

        for name, compressor, inputs in self._cells:
            m.submodules[name] = compressor
            m.d.comb += compressor.compress_bits.eq(Cat(*(term.value for term in inputs)))

        add0 = self._extract_row(0)
        add1 = self._extract_row(1)

        mode = self.output_mode
        if isinstance(mode, Registered):
            update = [self.add0.eq(add0), self.add1.eq(add1)]
            clear = [self.add0.eq(0), self.add1.eq(0)]
            if mode.reset and mode.enable:
                with m.If(self.reset):
                    m.d[mode.domain] += clear
                with m.Elif(self.enable):
                    m.d[mode.domain] += update
            elif mode.reset:
                with m.If(self.reset):
                    m.d[mode.domain] += clear
                with m.Else():
                    m.d[mode.domain] += update
            elif mode.enable:
                with m.If(self.enable):
                    m.d[mode.domain] += update
            else:
                m.d[mode.domain] += update
        else:
            m.d.comb += self.add0.eq(add0)
            m.d.comb += self.add1.eq(add1)

        return m

    # ---- Debug helpers ----

    def representation(self) -> str:
        """Term labels per column, most significant column first"""
        lines = []
        for row in range(self.longest_column()):
            cells = []
            for col in reversed(range(len(self.columns))):
                remaining = self._remaining(col)
                cells.append(str(remaining[row]) if row < len(remaining) else "")
            lines.append("\t" + "\t".join(cells))
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.representation()

    def evaluate(
        self, row_values=None, *, ctx=None, signed: bool = False, modulo: bool = False
    ) -> tuple[int, str]:
        """Sum of every term left in the columns, plus a printable trace

        Terms are recomputed from their provenance against ``row_values`` (one
        integer per input row).  Inside a testbench, pass ``ctx`` instead to
        read the live circuit values.

        The sum is exact, so it falls short of the matrix sum by the weight of
        any carry dropped out of the top column.  ``modulo`` wraps it to
        ``max_width()`` bits and ``signed`` also reads it as two's complement.
        """
        if row_values is None and ctx is None:
            raise ValueError("evaluate() needs row_values or a simulator context")

        width = self.max_width()
        memo = {}
        accum = 0
        lines = [" ".join(str(col % 10) for col in reversed(range(width)))]

        for row in range(self.longest_column()):
            row_value = 0
            cells = []
            for col in reversed(range(width)):
                remaining = self._remaining(col)
                if row < len(remaining):
                    term = remaining[row]
                    bit = ctx.get(term.value) if ctx is not None else term.evaluate(row_values, memo)
                    row_value |= bit << col
                    cells.append(str(bit))
                else:
                    cells.append(" ")
            accum += row_value
            lines.append(f"{' '.join(cells)}  ({row_value})")

        total = accum
        if modulo or signed:
            total &= (1 << width) - 1
        if signed and total >> (width - 1):
            total -= 1 << width
        lines.append(f"total={total}")

        return total, "\n".join(lines)
