import enum
import logging

from amaranth import *

from booth import MultiplierEncoder, RadixEncoder
from errors import MultiplierConfigError
from multiplicand_selector import MultiplicandSelector

logger = logging.getLogger(__name__)


class SignExtension(enum.Enum):
    """How the negative rows of the matrix are extended to the product width

    ``BRUTE`` repeats each row's sign bit up to the product width.
    ``STOP_BITS`` ends every row with an inverted sign and a few constant
    ones, which telescope into a constant beyond the product width.
    ``COMPACT`` adds the stop bits and also folds each row's +1 into the low
    bits of that row, so the last row's +1 lands in the first row's sign
    bits instead of in an extra row.
    """

    BRUTE = "brute"
    STOP_BITS = "stop_bits"
    COMPACT = "compact"


class PartialProductGenerator:
    """Booth partial product matrix for ``multiplicand * multiplier``

    Row ``r`` holds ``digit_r * multiplicand`` in one's complement.  The +1
    completing its two's complement is added at row ``r``'s least
    significant column, either as a separate bit carried in the low bits of
    row ``r + 1`` or folded into the row itself (``SignExtension.COMPACT``).

    Summed modulo ``2**product_width`` the rows give the product.
    """

    def __init__(
        self,
        multiplicand,
        multiplier,
        encoder: RadixEncoder,
        signed_multiplicand: bool = False,
        signed_multiplier: bool = False,
        select_signed_multiplicand=None,
        select_signed_multiplier=None,
        sign_extension: SignExtension = SignExtension.BRUTE,
    ):
        if signed_multiplicand and select_signed_multiplicand is not None:
            raise MultiplierConfigError("sign reconfiguration requires signed_multiplicand=False")

        self.encoder = MultiplierEncoder(
            multiplier,
            encoder,
            select_signed_multiplier=select_signed_multiplier,
            signed_multiplier=signed_multiplier,
        )
        self.selector = MultiplicandSelector(
            encoder.radix,
            multiplicand,
            signed_multiplicand if select_signed_multiplicand is None else select_signed_multiplicand,
        )
        self.signed_multiplicand = signed_multiplicand
        self.select_signed_multiplicand = select_signed_multiplicand
        self.sign_extension = SignExtension(sign_extension)
        self.product_width = len(self.selector.multiplicand) + len(self.encoder.multiplier)

        self.partial_products = []
        self.row_shift = []

        encodings = [self.encoder.get_encoding(row) for row in range(self.encoder.rows)]
        if self.sign_extension is SignExtension.BRUTE:
            self._build_brute(encodings)
        elif self.sign_extension is SignExtension.STOP_BITS:
            self._build_stop_bits(encodings)
        else:
            self._build_compact(encodings)

        logger.debug(
            "radix-%d partial products (%s): %d rows, widths %s, shifts %s",
            self.selector.radix,
            self.sign_extension.value,
            self.rows,
            self.row_widths,
            self.row_shift,
        )

    @property
    def shift(self) -> int:
        return self.selector.shift

    @property
    def rows(self) -> int:
        return len(self.partial_products)

    @property
    def row_widths(self) -> list[int]:
        return [len(row) for row in self.partial_products]

    def row(self, index: int) -> Value:
        return Cat(*self.partial_products[index])

    def _extension(self, top, encode):
        if self.select_signed_multiplicand is not None:
            return Mux(self.select_signed_multiplicand, top, encode.sign)
        if self.signed_multiplicand:
            return top
        # an unsigned multiple is non-negative, so only the negation sets the sign
        return encode.sign

    def _selected(self, encode) -> list:
        return [self.selector.select(col, encode) for col in range(self.selector.width)]

    @property
    def _sign_column(self) -> int:
        """Offset within a row of the bit that carries the row's sign weight"""
        # a statically signed multiple already has its sign as the top selected bit
        return self.selector.width - 1 if self.signed_multiplicand else self.selector.width

    def _add_row(self, start: int, bits: list):
        self.partial_products.append(bits[: self.product_width - start])
        self.row_shift.append(start)

    def _deposit(self, col: int, bits: list):
        """Place ``bits`` from column ``col`` up, in the row that needs the least zero padding"""
        best = None
        for index, (row, start) in enumerate(zip(self.partial_products, self.row_shift)):
            end = start + len(row)
            if end <= col and (best is None or end > best[1]):
                best = index, end
        if best is None:
            self._add_row(col, bits)
            return
        index, end = best
        row = self.partial_products[index] + [Const(0, 1)] * (col - end) + bits
        self.partial_products[index] = row[: self.product_width - self.row_shift[index]]

    def _cancel_stop_bits(self, rows: int):
        # Stop bits sum to 2**top; when that is still inside the product
        # (radix 2 with a signed multiplicand) ones up to the top wrap it to 0.
        top = rows * self.shift + self._sign_column
        if top < self.product_width:
            self._deposit(top, [Const(1, 1)] * (self.product_width - top))

    @property
    def _needs_last_sign(self) -> bool:
        # an unsigned multiplier always ends in a non-negative digit
        return self.encoder.signed_multiplier or self.encoder.select_signed_multiplier is not None

    def _build_brute(self, encodings):
        shift = self.shift
        width = self.product_width

        for row, encode in enumerate(encodings):
            bits = self._selected(encode)
            extension = self._extension(bits[-1], encode)
            start = row * shift
            if row > 0:
                bits = [encodings[row - 1].sign] + [Const(0, 1)] * (shift - 1) + bits
                start -= shift
            bits = bits + [extension] * max(width - start - len(bits), 0)
            self._add_row(start, bits)

        self._add_row((len(encodings) - 1) * shift, [encodings[-1].sign])

    def _build_stop_bits(self, encodings):
        shift = self.shift
        sign_column = self._sign_column

        for row, encode in enumerate(encodings):
            bits = self._selected(encode)
            sign = self._extension(bits[-1], encode)
            low = bits[:sign_column]
            if row == 0:
                self._add_row(0, low + [sign] * shift + [~sign])
            else:
                prefix = [encodings[row - 1].sign] + [Const(0, 1)] * (shift - 1)
                self._add_row((row - 1) * shift, prefix + low + [~sign] + [Const(1, 1)] * (shift - 1))

        if self._needs_last_sign:
            self._deposit((len(encodings) - 1) * shift, [encodings[-1].sign])
        self._cancel_stop_bits(len(encodings))

    @staticmethod
    def _increment(bits: list, carry, length: int):
        """Add ``carry`` to the lowest ``length`` bits; returns the bits and the carry out"""
        out = []
        for bit in bits[:length]:
            out.append(bit ^ carry)
            carry = bit & carry
        return out + bits[length:], carry

    def _build_compact(self, encodings):
        shift = self.shift
        sign_column = self._sign_column
        last = len(encodings) - 1
        # columns between the last row's +1 and the first row's sign bits
        fold = sign_column - last * shift

        rows = []
        for row, encode in enumerate(encodings):
            bits = self._selected(encode)
            length = shift - 1 if row < last else max(fold, 0)
            low, carry = self._increment(bits[:sign_column], encode.sign, length)
            rows.append((low, self._extension(bits[-1], encode), carry))

        low, sign, _ = rows[0]
        if fold >= 0:
            # The last row's carry out lands on the first row's sign column:
            # the sign bits encode 2**shift - sign + carry.
            last_carry = rows[last][2]
            keep = sign & ~last_carry
            self._add_row(0, low + [sign ^ last_carry] + [keep] * (shift - 1) + [~keep])
        else:
            self._add_row(0, low + [sign] * shift + [~sign])

        for row in range(1, last + 1):
            low, sign, _ = rows[row]
            carry_in = rows[row - 1][2]
            self._add_row(row * shift - 1, [carry_in] + low + [~sign] + [Const(1, 1)] * (shift - 1))

        if fold < 0 and self._needs_last_sign:
            self._deposit(last * shift, [rows[last][2]])
        self._cancel_stop_bits(len(encodings))
