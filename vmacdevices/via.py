"""The Versatile Interface Adapter: two ports, two timers and a shift register."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .scheduler import TaskId, TaskScheduler
from .via_ports import InterruptFlags, Interrupt, ViaPort

logger = logging.getLogger(__name__)

_MASK32 = 0xFFFFFFFF

# Register numbers.
ORB = 0x00
ORA_H = 0x01
DDR_B = 0x02
DDR_A = 0x03
T1C_L = 0x04
T1C_H = 0x05
T1L_L = 0x06
T1L_H = 0x07
T2_L = 0x08
T2_H = 0x09
SR = 0x0A
ACR = 0x0B
PCR = 0x0C
IFR = 0x0D
IER = 0x0E
ORA = 0x0F


class VIA:
    """A 6522 VIA whose timers run against a :class:`TaskScheduler`.

    Timer counters are held as 16.16 fixed point values.  Counts handed out
    by the scheduler are in scaled cycles: ``cycles_per_via_time`` cycles make
    one VIA clock and one cycle is ``1 << ln2_cycle_scale`` scaled units.

    The interrupt request line is ``self.interrupts.request``; set
    ``self.interrupts.on_change`` to be told when it changes.  The CB2 line
    is ``self.cb2`` and ``self.on_cb2_change`` is called when the VIA drives
    it to a new level.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        port_a: Optional[ViaPort] = None,
        port_b: Optional[ViaPort] = None,
        cycles_per_via_time: int = 10,
        ln2_cycle_scale: int = 0,
    ) -> None:
        if cycles_per_via_time < 1:
            raise ValueError("cycles_per_via_time must be at least 1")
        if not 0 <= ln2_cycle_scale <= 16:
            raise ValueError("ln2_cycle_scale must be in 0..16")
        self.scheduler = scheduler
        self.port_a = port_a if port_a is not None else ViaPort()
        self.port_b = port_b if port_b is not None else ViaPort()
        self.cycles_per_via_time = cycles_per_via_time
        self.ln2_cycle_scale = ln2_cycle_scale
        self.cycles_scaled_per_via_time = cycles_per_via_time << ln2_cycle_scale
        self.interrupts = InterruptFlags()
        # Sets of PCR CB2 / CA2 control modes the wiring expects.
        self.cb2_modes_allowed = 0x01
        self.ca2_modes_allowed = 0x01
        self.cb2 = 1
        self.on_cb2_change: Optional[Callable[[int], None]] = None

        self.t1_running = True
        self.t1_last_time = 0
        self.t2_running = True
        self.t2_short_time = False
        self.t2_last_time = 0
        self._clear()

        scheduler.register(TaskId.VIA1_TIMER1_CHECK, self.do_timer1_check)
        scheduler.register(TaskId.VIA1_TIMER2_CHECK, self.do_timer2_check)

    # -- state ---------------------------------------------------------

    def _clear(self) -> None:
        self.ora = 0
        self.orb = 0
        self.port_a.ddr = 0
        self.port_b.ddr = 0
        self.t1l_l = 0
        self.t1l_h = 0
        self.t2l_l = 0
        self.t1c_f = 0
        self.t2c_f = 0
        self.sr = 0
        self.acr = 0
        self.pcr = 0
        self.interrupts.ifr = 0
        self.interrupts.ier = 0
        self.t1_active = 0
        self.t2_active = 0
        self.t1_int_ready = False

    def zap(self) -> None:
        """Power-on state: clear everything and drop the interrupt request."""
        self._clear()
        self.interrupts.request = 0

    def reset(self) -> None:
        """Float both ports, clear the registers and update the request line."""
        self.port_a.set_direction(0, self.ora)
        self.port_b.set_direction(0, self.orb)
        self._clear()
        self.interrupts._check()

    def _set_cb2(self, level: int) -> None:
        self.cb2 = level
        if self.on_cb2_change is not None:
            self.on_cb2_change(level)

    # -- timers --------------------------------------------------------

    def _delta_temp(self, delta_time: int) -> int:
        return ((delta_time // self.cycles_per_via_time) << (16 - self.ln2_cycle_scale)) & _MASK32

    def _expired(self, delta_time: int, temp: int, delta_temp: int) -> bool:
        return delta_time > 0x10000 * self.cycles_scaled_per_via_time or (
            temp <= delta_temp and temp != 0
        )

    def _next_timer(self, counter: int) -> int:
        if counter == 0:
            return 0x10000 * self.cycles_scaled_per_via_time
        return (1 + (counter >> (16 - self.ln2_cycle_scale))) * self.cycles_per_via_time

    def _t1_wants_interrupt(self) -> bool:
        return not self.interrupts.ifr & (1 << Interrupt.T1) and (
            self.acr & 0x40 != 0 or self.t1_active == 1
        )

    def do_timer1_check(self) -> None:
        """Bring timer 1 up to the current count and schedule its next check."""
        if not self.t1_running:
            return
        new_time = self.scheduler.current_count()
        delta_time = (new_time - self.t1_last_time) & _MASK32
        if delta_time != 0:
            temp = self.t1c_f
            delta_temp = self._delta_temp(delta_time)
            new_temp = (temp - delta_temp) & _MASK32
            if self._expired(delta_time, temp, delta_temp):
                if self.acr & 0x40:
                    # free running: reload from the latches
                    v = (self.t1l_h << 8) + self.t1l_l
                    extra = 0 if v == 0 else (((delta_temp - temp) & _MASK32) // v) >> 16
                    ntrans = (1 + extra) & 0xFFFF
                    new_temp = (new_temp + ((v * ntrans) << 16)) & _MASK32
                    if (
                        self.port_b.config.can_out & 0x80
                        and self.acr & 0x80
                        and ntrans & 1
                    ):
                        level = self.port_b.lines[7] ^ 1
                        self.port_b.lines[7] = level
                        if self.port_b.config.on_change is not None:
                            self.port_b.config.on_change(7, level)
                    self.interrupts.set(Interrupt.T1)
                elif self.t1_active == 1:
                    self.t1_active = 0
                    self.interrupts.set(Interrupt.T1)
            self.t1c_f = new_temp
            self.t1_last_time = new_time

        self.t1_int_ready = False
        if self._t1_wants_interrupt():
            self.scheduler.add(TaskId.VIA1_TIMER1_CHECK, self._next_timer(self.t1c_f))
            self.t1_int_ready = True

    def _check_t1_int_ready(self) -> None:
        if not self.t1_running:
            return
        ready = self._t1_wants_interrupt()
        if ready != self.t1_int_ready:
            self.t1_int_ready = ready
            if ready:
                self.do_timer1_check()

    def do_timer2_check(self) -> None:
        """Bring timer 2 up to the current count and schedule its next check."""
        if not self.t2_running:
            return
        new_time = self.scheduler.current_count()
        temp = self.t2c_f
        delta_time = (new_time - self.t2_last_time) & _MASK32
        delta_temp = self._delta_temp(delta_time)
        new_temp = (temp - delta_temp) & _MASK32
        if self.t2_active == 1:
            if self._expired(delta_time, temp, delta_temp):
                self.t2_short_time = False
                self.t2_active = 0
                self.interrupts.set(Interrupt.T2)
            else:
                self.scheduler.add(TaskId.VIA1_TIMER2_CHECK, self._next_timer(new_temp))
        self.t2c_f = new_temp
        self.t2_last_time = new_time

    def t1_invert_time(self) -> int:
        """Timer 1 latch value when it toggles PB7 freely, otherwise 0."""
        if self.acr & 0xC0 == 0xC0:
            return (self.t1l_h << 8) + self.t1l_l
        return 0

    def extra_time_begin(self) -> None:
        """Freeze the timers while running faster than real time."""
        if self.t1_running:
            self.do_timer1_check()
            self.t1_running = False
        if self.t2_running and not self.t2_short_time:
            self.do_timer2_check()
            self.t2_running = False

    def extra_time_end(self) -> None:
        """Resume timers frozen by :meth:`extra_time_begin`."""
        if not self.t1_running:
            self.t1_running = True
            self.t1_last_time = self.scheduler.current_count()
            self.do_timer1_check()
        if not self.t2_running:
            self.t2_running = True
            self.t2_last_time = self.scheduler.current_count()
            self.do_timer2_check()

    # -- interrupts and shift register ---------------------------------

    def pulse(self, interrupt: Interrupt) -> None:
        """An edge on one of the control lines: raise its interrupt flag."""
        self.interrupts.set(interrupt)

    def _shift_mode(self) -> int:
        return (self.acr & 0x1C) >> 2

    def shift_in_data(self, value: int) -> None:
        """External hardware clocks eight bits into the shift register."""
        mode = self._shift_mode()
        if mode != 3:
            if mode != 0:
                logger.warning("VIA not ready to shift in")
            return
        self.sr = value & 0xFF
        self.interrupts.set(Interrupt.SR)
        self.interrupts.set(Interrupt.CB1)

    def shift_out_data(self) -> int:
        """External hardware clocks eight bits out of the shift register."""
        if self._shift_mode() != 7:
            logger.warning("VIA not ready to shift out")
            return 0
        self.interrupts.set(Interrupt.SR)
        self.interrupts.set(Interrupt.CB1)
        self.cb2 = self.sr & 1
        return self.sr

    # -- register access -----------------------------------------------

    def access(self, data: int, write: bool, addr: int) -> int:
        """Read or write register ``addr``; returns the value read, or ``data``."""
        if write:
            data &= 0xFF
        irq = self.interrupts

        if addr == ORB:
            if self.cb2_modes_allowed == 0x01 or self.pcr & 0xE0 == 0:
                irq.clear(Interrupt.CB2)
            irq.clear(Interrupt.CB1)
            if write:
                self.orb = data
                self.port_b.write(self.orb)
            else:
                data = self.port_b.read(self.orb)
        elif addr == DDR_B:
            if write:
                self.port_b.set_direction(data, self.orb)
            else:
                data = self.port_b.ddr
        elif addr == DDR_A:
            if write:
                self.port_a.set_direction(data, self.ora)
            else:
                data = self.port_a.ddr
        elif addr == T1C_L:
            if write:
                self.t1l_l = data
            else:
                irq.clear(Interrupt.T1)
                self.do_timer1_check()
                data = (self.t1c_f & 0x00FF0000) >> 16
        elif addr == T1C_H:
            if write:
                self.t1l_h = data
                irq.clear(Interrupt.T1)
                self.t1c_f = ((data << 24) + (self.t1l_l << 16)) & _MASK32
                if self.acr & 0x40 == 0:
                    self.t1_active = 1
                self.t1_last_time = self.scheduler.current_count()
                self.do_timer1_check()
            else:
                self.do_timer1_check()
                data = (self.t1c_f & 0xFF000000) >> 24
        elif addr == T1L_L:
            if write:
                self.t1l_l = data
            else:
                data = self.t1l_l
        elif addr == T1L_H:
            if write:
                self.t1l_h = data
            else:
                data = self.t1l_h
        elif addr == T2_L:
            if write:
                self.t2l_l = data
            else:
                irq.clear(Interrupt.T2)
                self.do_timer2_check()
                data = (self.t2c_f & 0x00FF0000) >> 16
        elif addr == T2_H:
            if write:
                self.t2c_f = ((data << 24) + (self.t2l_l << 16)) & _MASK32
                irq.clear(Interrupt.T2)
                self.t2_active = 1
                if 0 < self.t2c_f < (128 << 16):
                    # A short interval must not be paused during extra time.
                    self.t2_short_time = True
                    self.t2_running = True
                self.t2_last_time = self.scheduler.current_count()
                self.do_timer2_check()
            else:
                self.do_timer2_check()
                data = (self.t2c_f & 0xFF000000) >> 24
        elif addr == SR:
            if write:
                self.sr = data
            irq.clear(Interrupt.SR)
            if self._shift_mode() == 6:
                if not write or self.sr != 0:
                    logger.warning("VIA shift mode 6, non zero")
                elif self.cb2 != 0:
                    self._set_cb2(0)
            if not write:
                data = self.sr
        elif addr == ACR:
            if write:
                self._write_acr(data)
            else:
                data = self.acr
        elif addr == PCR:
            if write:
                self._write_pcr(data)
            else:
                data = self.pcr
        elif addr == IFR:
            if write:
                irq.write_ifr(data)
                self._check_t1_int_ready()
            else:
                data = irq.read_ifr()
        elif addr == IER:
            if write:
                irq.write_ier(data)
            else:
                data = irq.read_ier()
        elif addr in (ORA, ORA_H):
            if self.pcr & 0x0E == 0:
                irq.clear(Interrupt.CA2)
            irq.clear(Interrupt.CA1)
            if write:
                self.ora = data
                self.port_a.write(self.ora)
            else:
                data = self.port_a.read(self.ora)
        return data

    def _write_acr(self, data: int) -> None:
        if (self.acr & 0x10) != (data & 0x10) and data & 0x10 == 0:
            # no longer shifting out: CB2 floats high
            if self.cb2 == 0:
                self._set_cb2(1)
        self.acr = data
        if self.acr & 0x20:
            logger.warning("VIA ACR T2 timer pulse counting")
        if (self.acr & 0xC0) >> 6 == 2:
            logger.warning("VIA ACR T1 timer mode 2")
        self._check_t1_int_ready()
        mode = self._shift_mode()
        if mode == 0:
            self.interrupts.clear(Interrupt.SR)
        elif mode in (1, 2, 4, 5):
            logger.warning("VIA ACR shift mode %d", mode)
        if self.acr & 0x03:
            logger.warning("VIA ACR T2 timer latching enabled")

    def _write_pcr(self, data: int) -> None:
        self.pcr = data
        if not self.cb2_modes_allowed & (1 << ((data >> 5) & 0x07)):
            logger.warning("VIA PCR CB2 control mode %#04x", data)
        if data & 0x10:
            logger.warning("VIA PCR CB1 interrupt control %#04x", data)
        if not self.ca2_modes_allowed & (1 << ((data >> 1) & 0x07)):
            logger.warning("VIA PCR CA2 interrupt control %#04x", data)
        if data & 0x01:
            logger.warning("VIA PCR CA1 interrupt control %#04x", data)