from amaranth import *
from amaranth.lib import data

from errors import MultiplierConfigError


def check_radix(radix: int) -> int:
    if radix < 2 or radix & (radix - 1):
        raise MultiplierConfigError(f"radix {radix} must be a power of 2")
    if radix > 16:
        raise MultiplierConfigError(f"radix {radix} is beyond 16, which is not supported")
    return radix.bit_length() - 1


def _adjacent_xor(value: int) -> int:
    return value ^ (value >> 1)


class RadixEncode(data.StructLayout):
    """Booth digit of one multiplier row

    ``multiples`` is one-hot: bit ``k`` selects ``(k + 1) * multiplicand``.
    ``sign`` set means the selected multiple is subtracted.
    """

    def __init__(self, num_multiples: int):
        super().__init__({"multiples": num_multiples, "sign": 1})


class RadixEncoder:
    """Booth recoder for a power-of-two radix up to 16

    A slice of ``log2(radix) + 1`` multiplier bits (the lowest one overlapping
    the previous slice) is recoded into a signed digit in
    ``-radix/2 .. radix/2``.  Radix 4 is the classic 3-bit window selecting
    one of {-2, -1, 0, 1, 2}.
    """

    def __init__(self, radix: int):
        self.shift = check_radix(radix)
        self.radix = radix
        self.layout = RadixEncode(radix // 2)

    @property
    def slice_width(self) -> int:
        return self.shift + 1

    def encode(self, multiplier_slice, row: int = 0) -> data.View:
        width = self.slice_width
        if len(multiplier_slice) != width:
            raise MultiplierConfigError(
                f"row {row}: multiplier slice width {len(multiplier_slice)} "
                f"must be log2(radix)+1={width}"
            )
        bits = Value.cast(multiplier_slice).as_unsigned()
        input_xor = bits ^ (bits >> 1)

        multiples = []
        for magnitude in range(1, self.radix // 2 + 1):
            # Slices 2k-1 and 2k both recode to magnitude k: positions where
            # their adjacent-bit patterns disagree are don't-cares.
            xor_a = _adjacent_xor(2 * magnitude - 1)
            xor_b = _adjacent_xor(2 * magnitude)
            disagree = xor_a ^ xor_b
            sense = xor_a & xor_b

            terms = [
                input_xor[j] if (sense >> j) & 1 else ~input_xor[j]
                for j in range(width - 1)
                if not (disagree >> j) & 1
            ]
            multiples.append(Cat(*terms).all())

        return self.layout(Cat(Cat(*multiples), bits[width - 1]))


class MultiplierEncoder:
    """Splits the multiplier into overlapping slices and Booth-encodes each row

    ``signed_multiplier`` fixes the sign interpretation at build time while
    ``select_signed_multiplier`` picks it at run time; they are mutually
    exclusive.
    """

    def __init__(
        self,
        multiplier,
        encoder: RadixEncoder,
        select_signed_multiplier=None,
        signed_multiplier: bool = False,
    ):
        if signed_multiplier and select_signed_multiplier is not None:
            raise MultiplierConfigError("sign reconfiguration requires signed_multiplier=False")

        self.multiplier = Value.cast(multiplier).as_unsigned()
        self.encoder = encoder
        self.signed_multiplier = signed_multiplier
        self.select_signed_multiplier = select_signed_multiplier

        shift = encoder.shift
        width = len(self.multiplier)
        # Unsigned encoding needs a zero above the MSB so the top digit is non-negative
        span = width if signed_multiplier else width + 1
        self.rows = -(-span // shift)

        extension = self.rows * shift - width
        msb = self.multiplier[width - 1]
        if select_signed_multiplier is not None:
            fill = Mux(select_signed_multiplier, msb, 0)
        elif signed_multiplier:
            fill = msb
        else:
            fill = Const(0, 1)
        self._extended = Cat(self.multiplier, fill.replicate(extension)) if extension > 0 else self.multiplier

    def get_encoding(self, row: int) -> data.View:
        if not 0 <= row < self.rows:
            raise MultiplierConfigError(f"row {row} is not < number of encoding rows {self.rows}")
        shift = self.encoder.shift
        base = row * shift
        if row > 0:
            multiplier_slice = self._extended[base - 1 : base + shift]
        else:
            multiplier_slice = Cat(Const(0, 1), self._extended[0:shift])
        return self.encoder.encode(multiplier_slice, row)
