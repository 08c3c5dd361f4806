from amaranth import *
from amaranth.build import Platform
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out

from booth import RadixEncoder
from compressor import ColumnCompressor, Combinational, Registered
from errors import MultiplierConfigError
from parallel_prefix import ParallelPrefixAdder, kogge_stone
from partial_product import PartialProductGenerator, SignExtension


class CompressionTreeMultiplier(wiring.Component):
    """Booth-encoded multiplier: product = a * b

    Booth partial products -> column compression tree -> parallel prefix
    adder.  The product is ``a_width + b_width`` bits, two's complement when
    either operand is signed.  With a :class:`Registered` output mode the
    compression tree outputs are latched, so the product appears one cycle
    after the operands.

    ``sign_extension`` picks how negative partial products are extended; the
    product is the same for every scheme, only the matrix shape changes.
    """

    def __init__(
        self,
        a_width: int = 8,
        b_width: int = 8,
        radix: int = 4,
        signed: bool = False,
        runtime_sign: bool = False,
        output_mode=Combinational(),
        network=kogge_stone,
        sign_extension: SignExtension = SignExtension.BRUTE,
    ):
        if signed and runtime_sign:
            raise MultiplierConfigError("runtime_sign requires signed=False")

        self.a_width = a_width
        self.b_width = b_width
        self.radix = radix
        self.signed = signed
        self.runtime_sign = runtime_sign
        self.output_mode = output_mode
        self.network = network
        self.sign_extension = sign_extension
        self.encoder = RadixEncoder(radix)

        ports = {
            "a": In(a_width),
            "b": In(b_width),
        }
        if runtime_sign:
            ports["select_signed_multiplicand"] = In(1)
            ports["select_signed_multiplier"] = In(1)
        if isinstance(output_mode, Registered):
            if output_mode.reset:
                ports["reset"] = In(1)
            if output_mode.enable:
                ports["enable"] = In(1)
        ports["product"] = Out(a_width + b_width)

        super().__init__(ports)

    def elaborate(self, platform: Platform | None) -> Module:
        m = Module()

        width = self.a_width + self.b_width

        # ---- Booth partial products ----
        if self.runtime_sign:
            pp = PartialProductGenerator(
                self.a,
                self.b,
                self.encoder,
                select_signed_multiplicand=self.select_signed_multiplicand,
                select_signed_multiplier=self.select_signed_multiplier,
                sign_extension=self.sign_extension,
            )
        else:
            pp = PartialProductGenerator(
                self.a,
                self.b,
                self.encoder,
                signed_multiplicand=self.signed,
                signed_multiplier=self.signed,
                sign_extension=self.sign_extension,
            )

        # ---- Compression tree ----
        m.submodules.compressor = compressor = ColumnCompressor(pp.row_widths, pp.row_shift, self.output_mode)

        for row in range(pp.rows):
            m.d.comb += getattr(compressor, f"row_{row}").eq(pp.row(row))

        if isinstance(self.output_mode, Registered):
            if self.output_mode.reset:
                m.d.comb += compressor.reset.eq(self.reset)
            if self.output_mode.enable:
                m.d.comb += compressor.enable.eq(self.enable)

        # ---- Final addition ----
        m.submodules.adder = adder = ParallelPrefixAdder(width, self.network)

        m.d.comb += adder.a.eq(compressor.add0)
        m.d.comb += adder.b.eq(compressor.add1)
        m.d.comb += adder.carry_in.eq(0)

        m.d.comb += self.product.eq(adder.sum)

        return m
