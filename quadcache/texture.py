from amaranth import *
from amaranth.hdl import Assert
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out, flipped, connect
from amaranth.lib.data import StructLayout, ArrayLayout

from . import bus
from .cache import ReadCache
from .arbiter import TransactionArbiter


__all__ = ["fragment_layout", "BlockCache", "TexCache"]


# A cache line holds 4 pixels of 32 bits.
PIXEL_WIDTH = 32
LINE_WIDTH  = 128


def fragment_layout(*, tile_pixels_bits=8, filter_fract_bits=4):
    """Shading state travelling alongside a texture request."""
    return StructLayout({
        "tile_addr":         tile_pixels_bits,

        "r":                 9,
        "g":                 9,
        "b":                 9,
        "a":                 9,

        "z":                 16,

        "depth_test_result": 1,

        "s_fract":           filter_fract_bits + 1,
        "one_minus_s_fract": filter_fract_bits + 1,
        "t_fract":           filter_fract_bits + 1,
        "one_minus_t_fract": filter_fract_bits + 1,
    })


class BlockCache(wiring.Component):
    """Pixel cache.

    Wraps a :class:`ReadCache` of 128-bit lines, and selects one 32-bit pixel from each returned
    line. The last pixel produced is held on ``data`` (with ``valid`` high) until the next
    ``issue``.

    Arguments
    ---------
    pixel_addr_width : int
        Width of a pixel address.
    index_width : int
        Number of line address bits used to select a cache line.

    Members
    -------
    invalidate : ``In(1)``
        Invalidate the underlying cache.
    issue : ``In(1)``
        Issue a read at ``addr``. Must only be asserted while ``ready`` is high.
    ready : ``Out(1)``
        High when a read can be issued.
    addr : ``In(pixel_addr_width)``
        Pixel address.
    data : ``Out(32)``
        Pixel read from ``addr``.
    valid : ``Out(1)``
        High when ``data`` holds the pixel of the last read issued.
    mem : ``Out(bus.Signature(addr_width=pixel_addr_width - 2, data_width=128))``
        Backing-store-facing port.
    """
    def __init__(self, *, pixel_addr_width=14, index_width=9):
        if not isinstance(pixel_addr_width, int) or pixel_addr_width <= 2:
            raise ValueError("pixel_addr_width must be an integer greater than 2, not {!r}"
                             .format(pixel_addr_width))

        self.pixel_addr_width = pixel_addr_width
        self.line_addr_width  = pixel_addr_width - 2

        self._cache = ReadCache(
            data_width  = LINE_WIDTH,
            addr_width  = self.line_addr_width,
            index_width = index_width,
        )

        super().__init__({
            "invalidate": In(1),
            "issue":      In(1),
            "ready":      Out(1),
            "addr":       In(pixel_addr_width),
            "data":       Out(PIXEL_WIDTH),
            "valid":      Out(1),
            "mem":        Out(bus.Signature(addr_width=self.line_addr_width,
                                            data_width=LINE_WIDTH)),
        })

    def elaborate(self, platform):
        m = Module()

        m.submodules.cache = self._cache

        connect(m, self._cache.mem, flipped(self.mem))

        m.d.comb += [
            self._cache.invalidate.eq(self.invalidate),
            self._cache.bus.enable.eq(self.issue),
            self._cache.bus.addr  .eq(self.addr[2:]),
            self.ready.eq(self._cache.bus.ready),
        ]

        pixel_sel = Signal(2)
        with m.If(self.issue):
            m.d.sync += pixel_sel.eq(self.addr[:2])

        read_pixel = Signal(PIXEL_WIDTH)
        m.d.comb += read_pixel.eq(self._cache.bus.read_data.word_select(pixel_sel, PIXEL_WIDTH))

        held_valid = Signal()
        held_pixel = Signal(PIXEL_WIDTH)

        with m.If(self.issue):
            m.d.sync += held_valid.eq(0)
        with m.Elif(self._cache.bus.read_data_valid):
            m.d.sync += held_valid.eq(1)

        with m.If(self._cache.bus.read_data_valid):
            m.d.sync += held_pixel.eq(read_pixel)
            m.d.comb += self.data.eq(read_pixel)
        with m.Else():
            m.d.comb += self.data.eq(held_pixel)

        m.d.comb += self.valid.eq(self._cache.bus.read_data_valid | held_valid)

        if platform == "formal":
            m.d.sync += Assert(~self.issue | self.ready, "issue while not ready")

        return m


class TexCache(wiring.Component):
    """Texture cache for 2x2 pixel quads.

    Each sample of a quad is read through its own :class:`BlockCache`. The four caches share a
    single backing-store port through a :class:`TransactionArbiter`. A quad is only issued when
    all four caches can accept it, and its result is only presented once all four samples are
    available. Fragment metadata is latched when the quad is issued and presented with its result.

    Arguments
    ---------
    pixel_addr_width : int
        Width of a pixel address.
    index_width : int
        Number of line address bits used to select a cache line, in each sample cache.
    tile_pixels_bits : int
        Width of the ``tile_addr`` fragment field.
    filter_fract_bits : int
        Fractional precision of the bilinear filter weights.
    max_pending : int
        Maximum number of backing-store reads in flight.

    Members
    -------
    invalidate : ``In(1)``
        Invalidate every sample cache.
    in_valid : ``In(1)``
        High when a quad is presented on ``in_addr`` and ``in_frag``.
    in_ready : ``Out(1)``
        High when a quad can be accepted.
    in_addr : ``In(ArrayLayout(pixel_addr_width, 4))``
        Pixel addresses of the four samples.
    in_frag : ``In(fragment_layout(...))``
        Fragment metadata.
    out_valid : ``Out(1)``
        High when ``out_data`` and ``out_frag`` hold the result of the last quad accepted.
    out_data : ``Out(ArrayLayout(32, 4))``
        Sampled pixels.
    out_frag : ``Out(fragment_layout(...))``
        Fragment metadata latched with the quad.
    mem : ``Out(bus.Signature(addr_width=pixel_addr_width - 2, data_width=128))``
        Backing-store-facing port.
    """
    def __init__(self, *, pixel_addr_width=14, index_width=9, tile_pixels_bits=8,
                 filter_fract_bits=4, max_pending=4):
        self.pixel_addr_width = pixel_addr_width
        self.frag_layout = fragment_layout(tile_pixels_bits=tile_pixels_bits,
                                           filter_fract_bits=filter_fract_bits)

        self._blocks = tuple(BlockCache(pixel_addr_width=pixel_addr_width,
                                        index_width=index_width)
                             for _ in range(4))
        self._arbiter = TransactionArbiter(addr_width=pixel_addr_width - 2,
                                           data_width=LINE_WIDTH,
                                           max_pending=max_pending)
        self._ports = tuple(self._arbiter.port(priority=i) for i in range(4))

        super().__init__({
            "invalidate": In(1),
            "in_valid":   In(1),
            "in_ready":   Out(1),
            "in_addr":    In(ArrayLayout(pixel_addr_width, 4)),
            "in_frag":    In(self.frag_layout),
            "out_valid":  Out(1),
            "out_data":   Out(ArrayLayout(PIXEL_WIDTH, 4)),
            "out_frag":   Out(self.frag_layout),
            "mem":        Out(bus.Signature(addr_width=pixel_addr_width - 2,
                                            data_width=LINE_WIDTH)),
        })

    def elaborate(self, platform):
        m = Module()

        m.submodules.arbiter = self._arbiter
        connect(m, self._arbiter.bus, flipped(self.mem))

        busy = Signal()

        blocks_ready = Signal(4)
        blocks_valid = Signal(4)

        for i, (block, port) in enumerate(zip(self._blocks, self._ports)):
            m.submodules[f"block_{i}"] = block
            connect(m, block.mem, flipped(port))
            m.d.comb += [
                block.invalidate.eq(self.invalidate),
                block.addr.eq(self.in_addr[i]),
                self.out_data[i].eq(block.data),
                blocks_ready[i].eq(block.ready),
                blocks_valid[i].eq(block.valid),
            ]

        # The readiness of a BlockCache does not depend on its backing-store port, so all four
        # can be ready on the same cycle regardless of arbitration.
        accept = Signal()
        m.d.comb += [
            self.out_valid.eq(busy & blocks_valid.all()),
            self.in_ready.eq(blocks_ready.all() & (~busy | blocks_valid.all())),
            accept.eq(self.in_ready & self.in_valid),
        ]

        for block in self._blocks:
            m.d.comb += block.issue.eq(accept)

        with m.If(accept):
            m.d.sync += [
                busy.eq(1),
                self.out_frag.eq(self.in_frag),
            ]
        with m.Elif(self.out_valid):
            m.d.sync += busy.eq(0)

        if platform == "formal":
            with m.If(accept & busy):
                m.d.sync += Assert(blocks_valid.all(), "quad accepted over a pending result")

        return m
