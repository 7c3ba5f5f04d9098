"""VIA data ports and the interrupt flag and enable registers."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Interrupt(enum.IntEnum):
    """Bit numbers of the VIA interrupt sources."""

    CA2 = 0  # one second
    CA1 = 1  # vertical blanking
    SR = 2  # keyboard data ready
    CB2 = 3  # keyboard data
    CB1 = 4  # keyboard clock
    T2 = 5  # timer 2
    T1 = 6  # timer 1


@dataclass
class PortConfig:
    """Wiring of one 8 bit port.

    ``can_in`` and ``can_out`` are masks of the lines wired as inputs and
    outputs, ``float_val`` the value read from unwired or floating lines.
    ``read_bit(bit)`` supplies input line values (otherwise the port's own
    ``lines`` are used) and ``on_change(bit, value)`` is told when an output
    line changes.
    """

    can_in: int = 0
    can_out: int = 0
    float_val: int = 0xFF
    read_bit: Optional[Callable[[int], int]] = None
    on_change: Optional[Callable[[int, int], None]] = None


class ViaPort:
    """One VIA port: its direction register and the levels on its lines."""

    def __init__(self, config: Optional[PortConfig] = None) -> None:
        self.config = config if config is not None else PortConfig()
        self.ddr = 0
        self.lines: List[int] = [0] * 8

    def _input_bit(self, bit: int) -> int:
        if self.config.read_bit is not None:
            return self.config.read_bit(bit) & 1
        return self.lines[bit] & 1

    def _get(self, selection: int) -> int:
        cfg = self.config
        value = ~cfg.can_in & selection & cfg.float_val & 0xFF
        for bit in reversed(range(8)):
            if cfg.can_in & selection & (1 << bit):
                value |= self._input_bit(bit) << bit
        return value

    def _put(self, selection: int, data: int) -> None:
        cfg = self.config
        for bit in reversed(range(8)):
            if not cfg.can_out & selection & (1 << bit):
                continue
            level = (data >> bit) & 1
            if level != self.lines[bit]:
                self.lines[bit] = level
                if cfg.on_change is not None:
                    cfg.on_change(bit, level)

    def read(self, latch: int) -> int:
        """Value read from the port: the latch on outputs, the lines on inputs."""
        return (latch & self.ddr) | self._get(~self.ddr & 0xFF)

    def write(self, latch: int) -> None:
        """Drive the output lines from a new latch value."""
        self._put(self.ddr, latch)

    def set_direction(self, ddr: int, latch: int) -> None:
        """Change the data direction register, floating or driving lines."""
        ddr &= 0xFF
        floating = self.ddr & ~ddr
        driven = ddr & ~self.ddr
        if floating:
            self._put(floating, self.config.float_val)
        self.ddr = ddr
        if driven:
            self._put(driven, latch)
        if ddr & ~self.config.can_out:
            logger.warning("VIA set DDR unexpected direction %#04x", ddr)


class InterruptFlags:
    """The IFR and IER registers and the interrupt request line they drive."""

    def __init__(self, on_change: Optional[Callable[[int], None]] = None) -> None:
        self.on_change = on_change
        self.ifr = 0
        self.ier = 0
        self.request = 0
        # Enable bits that are never expected to be cleared / set.
        self.never0 = 0
        self.never1 = 0

    def _check(self) -> None:
        request = 1 if self.ifr & self.ier else 0
        if request != self.request:
            self.request = request
            if self.on_change is not None:
                self.on_change(request)

    def set(self, interrupt: Interrupt) -> None:
        """Raise the flag of ``interrupt``."""
        self.ifr |= 1 << Interrupt(interrupt)
        self._check()

    def clear(self, interrupt: Interrupt) -> None:
        """Lower the flag of ``interrupt``."""
        self.ifr &= ~(1 << Interrupt(interrupt)) & 0xFF
        self._check()

    def read_ifr(self) -> int:
        """IFR with bit 7 set when any enabled interrupt is pending."""
        value = self.ifr
        if self.ifr & self.ier:
            value |= 0x80
        return value

    def write_ifr(self, data: int) -> None:
        """Clear the flags whose bits are set in ``data``."""
        self.ifr &= ~data & 0x7F
        self._check()

    def read_ier(self) -> int:
        """IER; bit 7 always reads as one."""
        return self.ier | 0x80

    def write_ier(self, data: int) -> None:
        """Set (bit 7 one) or clear (bit 7 zero) the enables given in ``data``."""
        if data & 0x80 == 0:
            self.ier &= ~data & 0x7F
            if data & self.never0:
                logger.warning("VIA IER never0 bit cleared: %#04x", data)
        else:
            self.ier |= data & 0x7F
            if self.ier & self.never1:
                logger.warning("VIA IER never1 bit set: %#04x", self.ier)
        self._check()

    def reset(self) -> None:
        """Clear flags and enables and update the request line."""
        self.ifr = 0
        self.ier = 0
        self._check()