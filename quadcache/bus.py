from amaranth import *
from amaranth.lib import wiring
from amaranth.lib.wiring import In, Out


__all__ = ["Signature", "Interface"]


class Signature(wiring.Signature):
    """Transaction port signature.

    The members are described from the point of view of the requester. A request is accepted on
    every cycle where both ``enable`` and ``ready`` are high. An accepted read is answered by
    exactly one ``read_data_valid`` pulse, on the same cycle or any later one; writes are never
    answered.

    Arguments
    ---------
    addr_width : int
        Width of the address signal.
    data_width : int
        Width of the data signals. Must be a multiple of 8.

    Members
    -------
    enable : ``Out(1)``
        Request strobe.
    addr : ``Out(addr_width)``
        Request address.
    write : ``Out(1)``
        Write request if high, read request otherwise.
    write_data : ``Out(data_width)``
        Write data.
    write_mask : ``Out(data_width // 8)``
        Per-byte write enable.
    ready : ``In(1)``
        High when the responder can accept a request this cycle.
    read_data : ``In(data_width)``
        Read data. Only meaningful while ``read_data_valid`` is high.
    read_data_valid : ``In(1)``
        Read response strobe.
    """
    def __init__(self, *, addr_width, data_width):
        if not isinstance(addr_width, int) or addr_width < 0:
            raise TypeError("Address width must be a non-negative integer, not {!r}"
                            .format(addr_width))
        if not isinstance(data_width, int) or data_width <= 0 or data_width % 8:
            raise ValueError("Data width must be a positive multiple of 8, not {!r}"
                             .format(data_width))

        self._addr_width = addr_width
        self._data_width = data_width

        super().__init__({
            "enable":          Out(1),
            "addr":            Out(addr_width),
            "write":           Out(1),
            "write_data":      Out(data_width),
            "write_mask":      Out(data_width // 8),
            "ready":           In(1),
            "read_data":       In(data_width),
            "read_data_valid": In(1),
        })

    @property
    def addr_width(self):
        return self._addr_width

    @property
    def data_width(self):
        return self._data_width

    def create(self, *, path=None, src_loc_at=0):
        return Interface(addr_width=self.addr_width, data_width=self.data_width,
                         path=path, src_loc_at=1 + src_loc_at)

    def __eq__(self, other):
        return (isinstance(other, Signature) and
                self.addr_width == other.addr_width and
                self.data_width == other.data_width)

    def __hash__(self):
        return hash((Signature, self.addr_width, self.data_width))

    def __repr__(self):
        return f"bus.Signature({self.members!r})"


class Interface(wiring.PureInterface):
    """Transaction port interface.

    Arguments
    ---------
    addr_width : int
        Width of the address signal.
    data_width : int
        Width of the data signals.
    """
    def __init__(self, *, addr_width, data_width, path=None, src_loc_at=0):
        super().__init__(Signature(addr_width=addr_width, data_width=data_width),
                         path=path, src_loc_at=1 + src_loc_at)

    @property
    def addr_width(self):
        return self.signature.addr_width

    @property
    def data_width(self):
        return self.signature.data_width

    def __repr__(self):
        return f"bus.Interface({self.signature!r})"
