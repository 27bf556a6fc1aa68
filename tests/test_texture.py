import unittest

from amaranth import *
from amaranth.hdl import Fragment
from amaranth.back import rtlil
from amaranth.lib import wiring
from amaranth.sim import *

from quadcache.texture import BlockCache, TexCache, fragment_layout
from quadcache.test import FakeMemory


def pixel(addr):
    return 0xa5000000 | addr * 7


def line(addr):
    return sum(pixel(addr * 4 + i) << (32 * i) for i in range(4))


FRAG = {
    "tile_addr":         0x5a,
    "r":                 0x101,
    "g":                 0x0ff,
    "b":                 0x1aa,
    "a":                 0x0c3,
    "z":                 0xbeef,
    "depth_test_result": 1,
    "s_fract":           0x11,
    "one_minus_s_fract": 0x0f,
    "t_fract":           0x03,
    "one_minus_t_fract": 0x1d,
}

OTHER_FRAG = {name: 0 for name in FRAG}


class FragmentLayoutTestCase(unittest.TestCase):
    def test_widths(self):
        layout = fragment_layout(tile_pixels_bits=10, filter_fract_bits=6)
        self.assertEqual(layout.size, 10 + 4 * 9 + 16 + 1 + 4 * 7)
        self.assertEqual(layout["s_fract"].width, 7)
        self.assertEqual(layout["tile_addr"].width, 10)


class BlockCacheTestCase(unittest.TestCase):
    def setUp(self):
        self.dut = BlockCache(pixel_addr_width=8, index_width=3)

    def simulate(self, testbench, *, latency=1, platform=None):
        m = Module()
        m.submodules.dut = self.dut
        m.submodules.mem = self.mem = FakeMemory(addr_width=6, data_width=128, latency=latency,
                                                 init=[line(i) for i in range(64)])
        wiring.connect(m, self.dut.mem, self.mem.bus)

        sim = Simulator(Fragment.get(m, platform=platform))
        sim.add_clock(1e-6)
        sim.add_testbench(testbench)
        sim.run()

    async def issue(self, ctx, addr):
        while not ctx.get(self.dut.ready):
            await ctx.tick()
        ctx.set(self.dut.issue, 1)
        ctx.set(self.dut.addr, addr)
        await ctx.tick()
        ctx.set(self.dut.issue, 0)
        cycles = 0
        while not ctx.get(self.dut.valid):
            await ctx.tick()
            cycles += 1
            self.assertLess(cycles, 100)
        return ctx.get(self.dut.data), cycles

    def test_params(self):
        with self.assertRaisesRegex(ValueError,
                r"pixel_addr_width must be an integer greater than 2, not 2"):
            BlockCache(pixel_addr_width=2)

    def test_pixel_select(self):
        async def testbench(ctx):
            self.assertEqual(await self.issue(ctx, 0x21), (pixel(0x21), 2))
            self.assertEqual(await self.issue(ctx, 0x22), (pixel(0x22), 0))
            self.assertEqual(await self.issue(ctx, 0x23), (pixel(0x23), 0))
            self.assertEqual(await self.issue(ctx, 0x20), (pixel(0x20), 0))
            self.assertEqual(ctx.get(self.mem.reads), 1)
            self.assertEqual(ctx.get(self.dut.mem.addr), 0x08)

        self.simulate(testbench, latency=2)

    def test_hold(self):
        async def testbench(ctx):
            self.assertEqual(await self.issue(ctx, 0x9e), (pixel(0x9e), 1))
            for _ in range(5):
                await ctx.tick()
                self.assertTrue(ctx.get(self.dut.valid))
                self.assertEqual(ctx.get(self.dut.data), pixel(0x9e))

            ctx.set(self.dut.issue, 1)
            ctx.set(self.dut.addr, 0x40)
            await ctx.tick()
            ctx.set(self.dut.issue, 0)
            self.assertFalse(ctx.get(self.dut.valid))
            await ctx.tick()
            self.assertTrue(ctx.get(self.dut.valid))
            self.assertEqual(ctx.get(self.dut.data), pixel(0x40))

        self.simulate(testbench)

    def test_formal_elaborate(self):
        rtlil.convert(self.dut, platform="formal")

    def test_formal_reads(self):
        async def testbench(ctx):
            for addr in (0x21, 0x22, 0x61, 0x21, 0x9f):
                data, _ = await self.issue(ctx, addr)
                self.assertEqual(data, pixel(addr))

        self.simulate(testbench, latency=2, platform="formal")

    def test_issue_not_ready(self):
        async def testbench(ctx):
            # Still sweeping out of reset.
            ctx.set(self.dut.issue, 1)
            ctx.set(self.dut.addr, 0x21)
            await ctx.tick()
            ctx.set(self.dut.issue, 0)
            await ctx.tick()

        with self.assertRaises(AssertionError):
            self.simulate(testbench, platform="formal")


class TexCacheTestCase(unittest.TestCase):
    def setUp(self):
        self.dut = TexCache(pixel_addr_width=8, index_width=3)

    def simulate(self, testbench, *, latency=1):
        m = Module()
        m.submodules.dut = self.dut
        m.submodules.mem = self.mem = FakeMemory(addr_width=6, data_width=128, latency=latency,
                                                 init=[line(i) for i in range(64)])
        wiring.connect(m, self.dut.mem, self.mem.bus)

        sim = Simulator(m)
        sim.add_clock(1e-6)
        sim.add_testbench(testbench)
        sim.run()

    async def wait_ready(self, ctx):
        cycles = 0
        while not ctx.get(self.dut.in_ready):
            await ctx.tick()
            cycles += 1
            self.assertLess(cycles, 100)
        return cycles

    async def issue(self, ctx, addrs, frag=FRAG):
        await self.wait_ready(ctx)
        ctx.set(self.dut.in_valid, 1)
        ctx.set(self.dut.in_addr, addrs)
        ctx.set(self.dut.in_frag, frag)
        await ctx.tick()
        ctx.set(self.dut.in_valid, 0)
        ctx.set(self.dut.in_addr, [0, 0, 0, 0])
        ctx.set(self.dut.in_frag, OTHER_FRAG)
        cycles = 0
        while not ctx.get(self.dut.out_valid):
            await ctx.tick()
            cycles += 1
            self.assertLess(cycles, 100)
        return cycles

    def out_data(self, ctx):
        data = ctx.get(self.dut.out_data)
        return [data[i] for i in range(4)]

    def out_frag(self, ctx):
        frag = ctx.get(self.dut.out_frag)
        return {name: getattr(frag, name) for name in FRAG}

    def test_quad(self):
        quad = [0x00, 0x14, 0x28, 0x3c]

        async def testbench(ctx):
            await self.issue(ctx, quad)
            self.assertEqual(self.out_data(ctx), [pixel(addr) for addr in quad])
            self.assertEqual(self.out_frag(ctx), FRAG)
            self.assertEqual(ctx.get(self.mem.reads), 4)

            await ctx.tick()
            self.assertFalse(ctx.get(self.dut.out_valid))
            self.assertTrue(ctx.get(self.dut.in_ready))

            self.assertEqual(await self.issue(ctx, quad), 0)
            self.assertEqual(self.out_data(ctx), [pixel(addr) for addr in quad])
            self.assertEqual(ctx.get(self.mem.reads), 4)

        self.simulate(testbench)

    def test_slow_lane(self):
        async def testbench(ctx):
            await self.issue(ctx, [0x00, 0x14, 0x28, 0x3c])
            self.assertEqual(ctx.get(self.mem.reads), 4)

            quad = [0x80, 0x15, 0x29, 0x3d]
            await self.wait_ready(ctx)
            ctx.set(self.dut.in_valid, 1)
            ctx.set(self.dut.in_addr, quad)
            ctx.set(self.dut.in_frag, FRAG)
            await ctx.tick()
            ctx.set(self.dut.in_valid, 0)
            ctx.set(self.dut.in_frag, OTHER_FRAG)

            # Lanes 1 to 3 hit and hold their samples while lane 0 is refilled.
            for _ in range(3):
                self.assertFalse(ctx.get(self.dut.out_valid))
                self.assertFalse(ctx.get(self.dut.in_ready))
                self.assertFalse(ctx.get(self.dut._blocks[0].valid))
                for block, addr in zip(self.dut._blocks[1:], quad[1:]):
                    self.assertTrue(ctx.get(block.valid))
                    self.assertEqual(ctx.get(block.data), pixel(addr))
                await ctx.tick()

            self.assertTrue(ctx.get(self.dut.out_valid))
            self.assertTrue(ctx.get(self.dut.in_ready))
            self.assertEqual(self.out_data(ctx), [pixel(addr) for addr in quad])
            self.assertEqual(self.out_frag(ctx), FRAG)
            self.assertEqual(ctx.get(self.mem.reads), 5)

        self.simulate(testbench, latency=3)

    def test_back_to_back(self):
        quad = [0x04, 0x05, 0x06, 0x07]

        async def testbench(ctx):
            await self.issue(ctx, quad)
            await ctx.tick()

            ctx.set(self.dut.in_valid, 1)
            ctx.set(self.dut.in_addr, quad)
            for z in range(1, 6):
                ctx.set(self.dut.in_frag, {**FRAG, "z": z})
                self.assertTrue(ctx.get(self.dut.in_ready))
                await ctx.tick()
                self.assertTrue(ctx.get(self.dut.out_valid))
                self.assertEqual(self.out_frag(ctx)["z"], z)
                self.assertEqual(self.out_data(ctx), [pixel(addr) for addr in quad])
            ctx.set(self.dut.in_valid, 0)
            await ctx.tick()
            self.assertFalse(ctx.get(self.dut.out_valid))
            self.assertEqual(ctx.get(self.mem.reads), 4)

        self.simulate(testbench)

    def test_invalidate(self):
        quad = [0x10, 0x20, 0x30, 0x40]

        async def testbench(ctx):
            await self.issue(ctx, quad)
            self.assertEqual(ctx.get(self.mem.reads), 4)
            await ctx.tick()

            ctx.set(self.dut.invalidate, 1)
            self.assertFalse(ctx.get(self.dut.in_ready))
            await ctx.tick()
            ctx.set(self.dut.invalidate, 0)
            self.assertEqual(await self.wait_ready(ctx), 8)

            self.assertGreater(await self.issue(ctx, quad), 0)
            self.assertEqual(self.out_data(ctx), [pixel(addr) for addr in quad])
            self.assertEqual(ctx.get(self.mem.reads), 8)

        self.simulate(testbench)

    def test_formal_elaborate(self):
        rtlil.convert(self.dut, platform="formal")
