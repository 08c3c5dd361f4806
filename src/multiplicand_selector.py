from amaranth import *

from booth import check_radix
from errors import MultiplierConfigError


class MultiplicandSelector:
    """Holds the multiples 1x .. (radix/2)x of the multiplicand

    Each multiple is ``len(multiplicand) + log2(radix)`` bits wide and is built
    from shifts plus at most one adder, e.g. 3x = (x << 2) - x.  ``select``
    picks one bit column of the multiple chosen by a :class:`RadixEncode`.
    """

    def __init__(self, radix: int, multiplicand, signed_multiplicand=False):
        self.shift = check_radix(radix)
        self.radix = radix
        self.multiplicand = Value.cast(multiplicand).as_unsigned()
        self.signed_multiplicand = signed_multiplicand

        full_width = len(self.multiplicand) + self.shift
        msb = self.multiplicand[-1]
        if isinstance(signed_multiplicand, bool):
            fill = msb if signed_multiplicand else Const(0, 1)
        else:
            fill = Mux(signed_multiplicand, msb, 0)
        x = Cat(self.multiplicand, fill.replicate(self.shift))

        self.multiples = [self._multiple(x, ratio)[:full_width] for ratio in range(1, radix // 2 + 1)]

    @staticmethod
    def _multiple(x, ratio: int):
        if ratio == 1:
            return x
        elif ratio == 2:
            return x << 1
        elif ratio == 3:
            return (x << 2) - x
        elif ratio == 4:
            return x << 2
        elif ratio == 5:
            return (x << 2) + x
        elif ratio == 6:
            return (x << 3) - (x << 1)
        elif ratio == 7:
            return (x << 3) - x
        elif ratio == 8:
            return x << 3
        raise MultiplierConfigError(f"multiple {ratio}x needs a radix beyond 16")

    @property
    def width(self) -> int:
        """Number of selectable columns in a partial product row"""
        return len(self.multiplicand) + self.shift - 1

    def get_multiples(self, col: int) -> Value:
        """Bit ``col`` of every multiple; bit ``k`` comes from ``(k + 1) * x``"""
        return Cat(*(multiple[col] for multiple in self.multiples))

    def select(self, col: int, encode) -> Value:
        # encode.multiples must be one-hot (or zero)
        return (encode.multiples & self.get_multiples(col)).any() ^ encode.sign
