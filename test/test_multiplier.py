import random

import pytest
from amaranth.hdl import Period
from amaranth.sim import Simulator

import parallel_prefix
from compressor import Registered
from errors import MultiplierConfigError
from multiplier import CompressionTreeMultiplier
from partial_product import SignExtension


def to_signed(value, width):
    return value - (1 << width) if value >> (width - 1) else value


def test_unsigned_exhaustive():
    for radix in (2, 4, 8, 16):
        dut = CompressionTreeMultiplier(a_width=5, b_width=5, radix=radix)

        async def bench(ctx):
            for a in range(32):
                for b in range(32):
                    ctx.set(dut.a, a)
                    ctx.set(dut.b, b)
                    product = ctx.get(dut.product)
                    assert product == a * b, f"radix {radix}: {a} * {b}: got {product}"

        sim = Simulator(dut)
        sim.add_testbench(bench)
        sim.run()


def test_signed_exhaustive():
    for radix in (2, 4, 8, 16):
        dut = CompressionTreeMultiplier(a_width=5, b_width=5, radix=radix, signed=True)

        async def bench(ctx):
            for a in range(-16, 16):
                for b in range(-16, 16):
                    ctx.set(dut.a, a & 0x1F)
                    ctx.set(dut.b, b & 0x1F)
                    product = to_signed(ctx.get(dut.product), 10)
                    assert product == a * b, f"radix {radix}: {a} * {b}: got {product}"

        sim = Simulator(dut)
        sim.add_testbench(bench)
        sim.run()


def test_rectangular_random():
    """Operands of different widths, every prefix network"""
    a_width, b_width = 13, 7
    networks = (parallel_prefix.ripple, parallel_prefix.sklansky, parallel_prefix.brent_kung)
    for radix, network in zip((4, 8, 16), networks):
        for signed in (False, True):
            dut = CompressionTreeMultiplier(a_width, b_width, radix=radix, signed=signed, network=network)

            async def bench(ctx):
                random.seed(radix)
                for _ in range(100):
                    a = random.randint(0, (1 << a_width) - 1)
                    b = random.randint(0, (1 << b_width) - 1)
                    ctx.set(dut.a, a)
                    ctx.set(dut.b, b)
                    if signed:
                        expected = to_signed(a, a_width) * to_signed(b, b_width)
                    else:
                        expected = a * b
                    expected &= (1 << (a_width + b_width)) - 1
                    assert ctx.get(dut.product) == expected, f"radix {radix} signed={signed}: {a} * {b}"

            sim = Simulator(dut)
            sim.add_testbench(bench)
            sim.run()


def test_runtime_sign():
    dut = CompressionTreeMultiplier(a_width=6, b_width=6, radix=4, runtime_sign=True)

    async def bench(ctx):
        random.seed(3)
        for signed_a in (0, 1):
            for signed_b in (0, 1):
                ctx.set(dut.select_signed_multiplicand, signed_a)
                ctx.set(dut.select_signed_multiplier, signed_b)
                for _ in range(60):
                    a = random.randint(0, 63)
                    b = random.randint(0, 63)
                    ctx.set(dut.a, a)
                    ctx.set(dut.b, b)
                    a_val = to_signed(a, 6) if signed_a else a
                    b_val = to_signed(b, 6) if signed_b else b
                    assert ctx.get(dut.product) == (a_val * b_val) & 0xFFF, f"signs=({signed_a}, {signed_b}): {a_val} * {b_val}"

    sim = Simulator(dut)
    sim.add_testbench(bench)
    sim.run()


def test_conflicting_sign_configuration():
    with pytest.raises(MultiplierConfigError):
        CompressionTreeMultiplier(signed=True, runtime_sign=True)
    with pytest.raises(MultiplierConfigError):
        CompressionTreeMultiplier(radix=32)


def test_registered_product(run_sim):
    mode = Registered(reset=True, enable=True)
    dut = CompressionTreeMultiplier(a_width=8, b_width=8, radix=4, signed=True, output_mode=mode)

    async def bench(ctx):
        ctx.set(dut.reset, 0)
        ctx.set(dut.enable, 1)
        for a, b in ((3, 7), (-128, -128), (127, -128), (-1, -1), (0, 99), (-45, 77)):
            ctx.set(dut.a, a & 0xFF)
            ctx.set(dut.b, b & 0xFF)
            await ctx.tick()
            product = to_signed(ctx.get(dut.product), 16)
            assert product == a * b, f"{a} * {b}: got {product}"

        ctx.set(dut.enable, 0)
        ctx.set(dut.a, 5)
        ctx.set(dut.b, 5)
        await ctx.tick()
        assert to_signed(ctx.get(dut.product), 16) == -45 * 77

        ctx.set(dut.reset, 1)
        await ctx.tick()
        assert ctx.get(dut.product) == 0

    sim = Simulator(dut)
    sim.add_clock(Period(MHz=1))
    sim.add_testbench(bench)
    run_sim(sim)


def test_sign_extension_schemes_exhaustive():
    for scheme in (SignExtension.STOP_BITS, SignExtension.COMPACT):
        for radix in (2, 4, 8, 16):
            for signed in (False, True):
                dut = CompressionTreeMultiplier(a_width=5, b_width=5, radix=radix, signed=signed, sign_extension=scheme)

                async def bench(ctx):
                    for a in range(32):
                        for b in range(32):
                            ctx.set(dut.a, a)
                            ctx.set(dut.b, b)
                            if signed:
                                expected = (to_signed(a, 5) * to_signed(b, 5)) & 0x3FF
                            else:
                                expected = a * b
                            assert ctx.get(dut.product) == expected, f"{scheme} radix {radix} signed={signed}: {a} * {b}"

                sim = Simulator(dut)
                sim.add_testbench(bench)
                sim.run()


def test_compact_runtime_sign():
    dut = CompressionTreeMultiplier(
        a_width=7, b_width=4, radix=8, runtime_sign=True, sign_extension=SignExtension.COMPACT
    )

    async def bench(ctx):
        random.seed(11)
        for signed_a in (0, 1):
            for signed_b in (0, 1):
                ctx.set(dut.select_signed_multiplicand, signed_a)
                ctx.set(dut.select_signed_multiplier, signed_b)
                for _ in range(80):
                    a = random.randint(0, 127)
                    b = random.randint(0, 15)
                    ctx.set(dut.a, a)
                    ctx.set(dut.b, b)
                    a_val = to_signed(a, 7) if signed_a else a
                    b_val = to_signed(b, 4) if signed_b else b
                    assert ctx.get(dut.product) == (a_val * b_val) & 0x7FF, f"signs=({signed_a}, {signed_b}): {a_val} * {b_val}"

    sim = Simulator(dut)
    sim.add_testbench(bench)
    sim.run()
