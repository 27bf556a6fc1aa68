from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import Out
from amaranth.lib.fifo import SyncFIFO
from amaranth.utils import ceil_log2

from . import bus


__all__ = ["TransactionArbiter"]


class TransactionArbiter(wiring.Component):
    """Fan-in interconnect.

    Requests from several ports are forwarded to a single downstream port, the lowest priority
    number winning. The port of every read forwarded downstream is remembered, so that responses
    can be routed back in order. The downstream responder must answer reads in order, and no
    earlier than the cycle after accepting them.

    Arguments
    ---------
    addr_width : int
        Address width of every port.
    data_width : int
        Data width of every port.
    max_pending : int
        Maximum number of reads awaiting a response.

    Members
    -------
    bus : ``Out(bus.Signature(addr_width=addr_width, data_width=data_width))``
        Downstream port.
    """
    def __init__(self, *, addr_width, data_width, max_pending=4):
        if not isinstance(max_pending, int) or max_pending <= 0:
            raise ValueError("max_pending must be a positive integer, not {!r}"
                             .format(max_pending))
        self.max_pending = max_pending
        self._port_map = dict()
        super().__init__({
            "bus": Out(bus.Signature(addr_width=addr_width, data_width=data_width)),
        })

    def port(self, priority):
        if not isinstance(priority, int) or priority < 0:
            raise TypeError("Priority must be a non-negative integer, not '{!r}'"
                            .format(priority))
        if priority in self._port_map:
            raise ValueError("Conflicting priority: '{!r}'".format(priority))
        port = bus.Interface(addr_width=self.bus.addr_width, data_width=self.bus.data_width)
        self._port_map[priority] = port
        return port

    def elaborate(self, platform):
        m = Module()

        ports = [port for priority, port in sorted(self._port_map.items())]

        pending = m.submodules.pending = SyncFIFO(width=max(1, ceil_log2(len(ports))),
                                                  depth=self.max_pending)

        req = Signal(len(ports))
        gnt = Signal.like(req)

        for i, port in enumerate(ports):
            m.d.comb += req[i].eq(port.enable)

        m.d.comb += gnt.eq(req & (-req)) # isolate rightmost 1-bit

        bus_enable_mux     = 0
        bus_addr_mux       = 0
        bus_write_mux      = 0
        bus_write_data_mux = 0
        bus_write_mask_mux = 0
        gnt_index_mux      = 0

        for i, port in enumerate(ports):
            bus_enable_mux     |= Mux(gnt[i], port.enable,     0)
            bus_addr_mux       |= Mux(gnt[i], port.addr,       0)
            bus_write_mux      |= Mux(gnt[i], port.write,      0)
            bus_write_data_mux |= Mux(gnt[i], port.write_data, 0)
            bus_write_mask_mux |= Mux(gnt[i], port.write_mask, 0)
            gnt_index_mux      |= Mux(gnt[i], i,               0)

            m.d.comb += [
                port.ready          .eq(self.bus.ready & pending.w_rdy & gnt[i]),
                port.read_data      .eq(self.bus.read_data),
                port.read_data_valid.eq(self.bus.read_data_valid & pending.r_rdy &
                                        (pending.r_data == i)),
            ]

        m.d.comb += [
            self.bus.enable    .eq(bus_enable_mux & pending.w_rdy),
            self.bus.addr      .eq(bus_addr_mux),
            self.bus.write     .eq(bus_write_mux),
            self.bus.write_data.eq(bus_write_data_mux),
            self.bus.write_mask.eq(bus_write_mask_mux),

            pending.w_en  .eq(self.bus.enable & self.bus.ready & ~self.bus.write),
            pending.w_data.eq(gnt_index_mux),
            pending.r_en  .eq(self.bus.read_data_valid),
        ]

        return m
