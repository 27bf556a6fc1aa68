from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out
from amaranth.utils import exact_log2

from . import bus


__all__ = ["WidthBridge"]


class WidthBridge(wiring.Component):
    """Narrow-to-wide bus bridge.

    Arguments
    ---------
    addr_width : int
        Word address width of the narrow port.
    data_width : int
        Data width of the narrow port.
    ratio : int
        Number of narrow words in a wide word. Must be a power of 2 greater than 1.

    Members
    -------
    bus : ``In(bus.Signature(addr_width=addr_width, data_width=data_width))``
        Narrow port.
    mem : ``Out(bus.Signature(addr_width=addr_width - log2(ratio), data_width=data_width * ratio))``
        Wide port. Writes only enable the bytes of the selected word.
    """
    def __init__(self, *, addr_width, data_width=32, ratio=4):
        if not isinstance(ratio, int) or ratio <= 1 or ratio & ratio - 1:
            raise ValueError("Ratio must be a power of 2 greater than 1, not {!r}"
                             .format(ratio))
        sel_bits = exact_log2(ratio)
        if not isinstance(addr_width, int) or addr_width < sel_bits:
            raise ValueError("Address width must be an integer greater than or equal to {}, "
                             "not {!r}"
                             .format(sel_bits, addr_width))

        self.ratio = ratio

        super().__init__({
            "bus": In(bus.Signature(addr_width=addr_width, data_width=data_width)),
            "mem": Out(bus.Signature(addr_width=addr_width - sel_bits,
                                     data_width=data_width * ratio)),
        })

    def elaborate(self, platform):
        m = Module()

        sel_bits   = exact_log2(self.ratio)
        data_width = self.bus.data_width
        mask_width = data_width // 8

        bus_sel  = Signal(sel_bits)
        read_sel = Signal(sel_bits)

        m.d.comb += [
            bus_sel.eq(self.bus.addr[:sel_bits]),

            self.mem.enable.eq(self.bus.enable),
            self.mem.addr  .eq(self.bus.addr[sel_bits:]),
            self.mem.write .eq(self.bus.write),
            self.mem.write_data.word_select(bus_sel, data_width).eq(self.bus.write_data),
            self.mem.write_mask.word_select(bus_sel, mask_width).eq(self.bus.write_mask),

            self.bus.ready.eq(self.mem.ready),
            self.bus.read_data.eq(self.mem.read_data.word_select(read_sel, data_width)),
            self.bus.read_data_valid.eq(self.mem.read_data_valid),
        ]

        with m.If(self.bus.enable & self.bus.ready & ~self.bus.write):
            m.d.sync += read_sel.eq(bus_sel)

        return m
