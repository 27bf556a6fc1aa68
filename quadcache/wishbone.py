from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out
from amaranth.utils import exact_log2

from amaranth_soc import wishbone
from amaranth_soc.wishbone import CycleType, BurstTypeExt

from . import bus


__all__ = ["WishboneBridge"]


class WishboneBridge(wiring.Component):
    """Transaction port to Wishbone bridge.

    Every request is performed as an incrementing burst of ``data_width // wb_data_width`` beats,
    starting at the first word of the addressed line. A read is answered once its last beat has
    been acknowledged. Errors terminate a beat like an acknowledgement.

    Arguments
    ---------
    addr_width : int
        Address width of the transaction port.
    data_width : int
        Data width of the transaction port.
    wb_data_width : int
        Data width of the Wishbone bus.

    Members
    -------
    bus : ``In(bus.Signature(addr_width=addr_width, data_width=data_width))``
        Transaction port.
    wb_bus : ``Out(wishbone.Signature(...))``
        Wishbone bus, with byte granularity.
    """
    def __init__(self, *, addr_width, data_width, wb_data_width=32):
        if wb_data_width not in (8, 16, 32, 64):
            raise ValueError("Wishbone data width must be one of 8, 16, 32, 64, not {!r}"
                             .format(wb_data_width))
        if not isinstance(data_width, int) or data_width % wb_data_width:
            raise ValueError("Data width must be a multiple of the Wishbone data width {}, "
                             "not {!r}"
                             .format(wb_data_width, data_width))
        nwords = data_width // wb_data_width
        if nwords & nwords - 1:
            raise ValueError("Data width must be a power of 2 multiple of the Wishbone data "
                             "width {}, not {!r}"
                             .format(wb_data_width, data_width))

        self.nwords = nwords

        super().__init__({
            "bus":    In(bus.Signature(addr_width=addr_width, data_width=data_width)),
            "wb_bus": Out(wishbone.Signature(addr_width=addr_width + exact_log2(nwords),
                                             data_width=wb_data_width, granularity=8,
                                             features=("err", "cti", "bte"))),
        })

    def elaborate(self, platform):
        m = Module()

        wb_data_width = self.wb_bus.data_width
        wb_sel_width  = wb_data_width // 8

        word       = Signal(range(self.nwords))
        last       = Signal()
        line_addr  = Signal.like(self.bus.addr)
        line_data  = Signal.like(self.bus.read_data)
        write      = Signal()
        write_data = Signal.like(self.bus.write_data)
        write_mask = Signal.like(self.bus.write_mask)

        m.d.comb += [
            last.eq(word == self.nwords - 1),

            self.wb_bus.adr  .eq(Cat(word, line_addr)),
            self.wb_bus.we   .eq(write),
            self.wb_bus.dat_w.eq(write_data.word_select(word, wb_data_width)),
            self.wb_bus.sel  .eq(Mux(write, write_mask.word_select(word, wb_sel_width),
                                     2**wb_sel_width - 1)),
            self.wb_bus.bte  .eq(BurstTypeExt.LINEAR),
        ]

        if self.nwords == 1:
            m.d.comb += self.wb_bus.cti.eq(CycleType.CLASSIC)
        else:
            m.d.comb += self.wb_bus.cti.eq(Mux(last, CycleType.END_OF_BURST,
                                                     CycleType.INCR_BURST))

        # The last beat is returned straight from the bus.
        m.d.comb += [
            self.bus.read_data.eq(line_data),
            self.bus.read_data.word_select(word, wb_data_width).eq(self.wb_bus.dat_r),
        ]

        with m.FSM():
            with m.State("IDLE"):
                m.d.comb += self.bus.ready.eq(1)
                with m.If(self.bus.enable):
                    m.d.sync += [
                        word      .eq(0),
                        line_addr .eq(self.bus.addr),
                        write     .eq(self.bus.write),
                        write_data.eq(self.bus.write_data),
                        write_mask.eq(self.bus.write_mask),
                    ]
                    m.next = "BUSY"

            with m.State("BUSY"):
                m.d.comb += [
                    self.wb_bus.cyc.eq(1),
                    self.wb_bus.stb.eq(1),
                ]
                with m.If(self.wb_bus.ack | self.wb_bus.err):
                    m.d.sync += [
                        line_data.word_select(word, wb_data_width).eq(self.wb_bus.dat_r),
                        word.eq(word + 1),
                    ]
                    with m.If(last):
                        m.d.comb += self.bus.read_data_valid.eq(~write)
                        m.next = "IDLE"

        return m
