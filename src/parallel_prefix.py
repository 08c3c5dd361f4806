from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

# Each network takes a list of items and an associative ``op(high, low)`` and
# returns the inclusive prefixes: out[i] = x[i] o x[i-1] o ... o x[0].


def ripple(inputs, op):
    """n-1 levels, n-1 cells"""
    out = list(inputs)
    for i in range(1, len(out)):
        out[i] = op(out[i], out[i - 1])
    return out


def sklansky(inputs, op):
    """log2(n) levels, high fanout at the block midpoints"""
    out = list(inputs)
    span = 1
    while span < len(out):
        for i in range(len(out)):
            if i & span:
                out[i] = op(out[i], out[(i & ~(span - 1)) - 1])
        span <<= 1
    return out


def kogge_stone(inputs, op):
    """log2(n) levels, fanout 2, the most cells and wires"""
    out = list(inputs)
    span = 1
    while span < len(out):
        out = [out[i] if i < span else op(out[i], out[i - span]) for i in range(len(out))]
        span <<= 1
    return out


def brent_kung(inputs, op):
    """2*log2(n) - 1 levels, fewest cells of the log-depth networks"""
    out = list(inputs)
    n = len(out)

    span = 1
    while span < n:
        for i in range(2 * span - 1, n, 2 * span):
            out[i] = op(out[i], out[i - span])
        span <<= 1

    span >>= 2
    while span >= 1:
        for i in range(3 * span - 1, n, 2 * span):
            out[i] = op(out[i], out[i - span])
        span >>= 1
    return out


def _generate_propagate(high, low):
    g_hi, p_hi = high
    g_lo, p_lo = low
    return g_hi | (p_hi & g_lo), p_hi & p_lo


class ParallelPrefixAdder(wiring.Component):
    """Adder with carries computed by a parallel prefix network

    Kogge-Stone gives O(log n) delay vs O(n) ripple-carry; the carry-in is
    folded in as an extra generate bit below position 0.
    """

    def __init__(self, width: int = 8, network=kogge_stone):
        self.width = width
        self.network = network

        super().__init__(
            {
                "a": In(width),
                "b": In(width),
                "carry_in": In(1),
                "sum": Out(width),
                "carry_out": Out(1),
            }
        )

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        generate = Signal(self.width)
        propagate = Signal(self.width)

        m.d.comb += generate.eq(self.a & self.b)
        m.d.comb += propagate.eq(self.a ^ self.b)

        pairs = [(self.carry_in, Const(0, 1))] + [(generate[i], propagate[i]) for i in range(self.width)]
        prefixes = self.network(pairs, _generate_propagate)

        carries = Signal(self.width + 1)
        for i, (g, _) in enumerate(prefixes):
            m.d.comb += carries[i].eq(g)

        m.d.comb += self.sum.eq(propagate ^ carries[: self.width])
        m.d.comb += self.carry_out.eq(carries[self.width])

        return m
