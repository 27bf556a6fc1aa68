from amaranth import *
from amaranth.hdl import Assert, Assume
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out
from amaranth.lib.data import StructLayout
from amaranth.lib.memory import *

from . import bus


__all__ = ["ReadCache"]


class ReadCache(wiring.Component):
    """Direct-mapped, read-only cache.

    Every line is looked up with a synchronous read of its tag and data; a write to the same line
    in the same cycle is not visible to that read. The only case where this matters is a refill
    completing on the same cycle as a new request for the refilled address is accepted. Such a
    request would otherwise see the stale tag and miss, so the coincidence is recorded for one
    cycle and used to override both hit detection and the returned data.

    Arguments
    ---------
    data_width : int
        Width of a cache line, in bits.
    addr_width : int
        Width of a line address.
    index_width : int
        Number of address bits used to select a line. The cache holds ``2 ** index_width`` lines.

    Members
    -------
    invalidate : ``In(1)``
        Request a sweep clearing every line. If a request is in flight, the sweep begins once it
        has been answered.
    bus : ``In(bus.Signature(addr_width=addr_width, data_width=data_width))``
        Requester-facing port. Write requests are accepted and ignored.
    mem : ``Out(bus.Signature(addr_width=addr_width, data_width=data_width))``
        Backing-store-facing port. Only issues reads.
    """
    def __init__(self, *, data_width, addr_width, index_width):
        if not isinstance(addr_width, int) or addr_width <= 0:
            raise TypeError("addr_width must be a positive integer, not {!r}"
                            .format(addr_width))
        if not isinstance(index_width, int) or index_width <= 0:
            raise TypeError("index_width must be a positive integer, not {!r}"
                            .format(index_width))
        if index_width >= addr_width:
            raise ValueError("index_width must be lesser than addr_width {}, not {}"
                             .format(addr_width, index_width))

        self.data_width  = data_width
        self.addr_width  = addr_width
        self.index_width = index_width
        self.tag_width   = addr_width - index_width
        self.nlines      = 2 ** index_width

        self.addr_layout = StructLayout({
            "line": self.index_width,
            "tag":  self.tag_width,
        })

        self._tag_mem = Memory(shape=StructLayout({"tag": self.tag_width, "valid": 1}),
                               depth=self.nlines,
                               init=[])
        self._dat_mem = Memory(shape=unsigned(data_width),
                               depth=self.nlines,
                               init=[])

        self._tag_rp = self._tag_mem.read_port()
        self._tag_wp = self._tag_mem.write_port()
        self._dat_rp = self._dat_mem.read_port()
        self._dat_wp = self._dat_mem.write_port()

        super().__init__({
            "invalidate": In(1),
            "bus":        In(bus.Signature(addr_width=addr_width, data_width=data_width)),
            "mem":        Out(bus.Signature(addr_width=addr_width, data_width=data_width)),
        })

    def elaborate(self, platform):
        m = Module()

        m.submodules.tag_mem = self._tag_mem
        m.submodules.dat_mem = self._dat_mem

        bus_addr = Signal(self.addr_layout)
        req_addr = Signal(self.addr_layout)
        req_busy = Signal()

        accept = Signal()
        can_accept = Signal()
        refill = Signal()

        bypass      = Signal()
        bypass_data = Signal(self.data_width)

        req_match = Signal()
        hit  = Signal()
        miss = Signal()

        inval_pending = Signal()
        inval_request = Signal()
        inval_start   = Signal()
        sweep_line    = Signal(self.index_width)

        m.d.comb += [
            bus_addr.eq(self.bus.addr),

            inval_request.eq(self.invalidate | inval_pending),
            inval_start.eq(inval_request & ~req_busy),

            self.bus.ready.eq(can_accept & ~inval_request),
            accept.eq(self.bus.ready & self.bus.enable & ~self.bus.write),

            self._tag_rp.addr.eq(bus_addr.line),
            self._tag_rp.en  .eq(accept),
            self._dat_rp.addr.eq(bus_addr.line),
            self._dat_rp.en  .eq(accept),

            req_match.eq(self._tag_rp.data.valid & (self._tag_rp.data.tag == req_addr.tag) |
                         bypass),
            hit .eq(req_busy &  req_match),
            miss.eq(req_busy & ~req_match),
        ]

        with m.FSM(init="INVALIDATE") as fsm:
            with m.State("INVALIDATE"):
                m.d.comb += [
                    self._tag_wp.addr.eq(sweep_line),
                    self._tag_wp.en  .eq(1),
                    self._tag_wp.data.eq(0),
                ]
                with m.If(~inval_start & (sweep_line == self.nlines - 1)):
                    m.next = "ACTIVE"

            with m.State("ACTIVE"):
                m.d.comb += [
                    can_accept.eq(~req_busy | hit),
                    self.mem.enable.eq(miss),
                ]
                with m.If(inval_start):
                    m.next = "INVALIDATE"
                with m.Elif(miss & self.mem.ready):
                    m.next = "MISS_RETURN"

            with m.State("MISS_RETURN"):
                m.d.comb += [
                    refill.eq(self.mem.read_data_valid),
                    can_accept.eq(self.mem.read_data_valid),

                    self._tag_wp.addr      .eq(req_addr.line),
                    self._tag_wp.en        .eq(refill),
                    self._tag_wp.data.tag  .eq(req_addr.tag),
                    self._tag_wp.data.valid.eq(1),
                    self._dat_wp.addr      .eq(req_addr.line),
                    self._dat_wp.en        .eq(refill),
                    self._dat_wp.data      .eq(self.mem.read_data),
                ]
                with m.If(refill):
                    m.next = "ACTIVE"

        with m.If(refill | ~miss):
            m.d.sync += req_busy.eq(accept)
        with m.If(accept):
            m.d.sync += req_addr.eq(bus_addr)

        # The refilled line is the one being looked up: its tag and data will only be readable
        # from the next cycle.
        m.d.sync += bypass.eq(refill & accept & (self.bus.addr == req_addr.as_value()))
        with m.If(refill):
            m.d.sync += bypass_data.eq(self.mem.read_data)

        with m.If(inval_start):
            m.d.sync += sweep_line.eq(0)
        with m.Elif(fsm.ongoing("INVALIDATE")):
            m.d.sync += sweep_line.eq(sweep_line + 1)

        with m.If(inval_start | fsm.ongoing("INVALIDATE")):
            m.d.sync += inval_pending.eq(0)
        with m.Elif(self.invalidate):
            m.d.sync += inval_pending.eq(1)

        with m.If(refill):
            m.d.comb += self.bus.read_data.eq(self.mem.read_data)
        with m.Elif(bypass):
            m.d.comb += self.bus.read_data.eq(bypass_data)
        with m.Else():
            m.d.comb += self.bus.read_data.eq(self._dat_rp.data)

        m.d.comb += [
            self.bus.read_data_valid.eq(refill | hit),
            self.mem.addr.eq(req_addr),
        ]

        if platform == "formal":
            with m.If(~fsm.ongoing("MISS_RETURN")):
                m.d.sync += Assume(~self.mem.read_data_valid, "unexpected response")
            m.d.sync += Assert(~(refill & hit), "refill during hit")
            with m.If(self.bus.ready & req_busy):
                m.d.sync += Assert(self.bus.read_data_valid, "request overtaken")
            with m.If(fsm.ongoing("INVALIDATE")):
                m.d.sync += Assert(~req_busy, "sweep during request")

        return m
