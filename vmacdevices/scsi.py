"""A minimal NCR 5380 SCSI controller with nothing attached to the bus."""

from __future__ import annotations

import struct

# Each register has a read side at an even index and a write side just after.
_RD = 0
_WR = 1

_CDR = 0x00  # current SCSI data (read)
_ODR = 0x00  # output data (write)
_ICR = 0x02  # initiator command
_MR = 0x04  # mode
_TCR = 0x06  # target command
_CSR = 0x08  # current bus status (read)
_SER = 0x08  # select enable (write)
_BSR = 0x0A  # bus and status (read)
_DMATX = 0x0A  # start DMA send (write)
_IDR = 0x0C  # input data (read)
_TDMARX = 0x0C  # start DMA target receive (write)
_RESET = 0x0E  # reset parity/interrupt (read)
_IDMARX = 0x0E  # start DMA initiator receive (write)

_NUM_REGS = 0x10
_NUM_ADDRS = _NUM_REGS // 2

# Low memory word the ROM polls to learn that a bus reset happened.
_SCSI_FLAGS_ADDR = 0xB22


class SCSIController:
    """Register file of the SCSI chip, addressed by register number 0..7."""

    def __init__(self, ram) -> None:
        if len(ram) < _SCSI_FLAGS_ADDR + 2:
            raise ValueError("RAM too small for the SCSI flags word")
        self.ram = ram
        self._regs = bytearray(_NUM_REGS)

    def reset(self) -> None:
        """Clear every register."""
        self._regs[:] = bytes(_NUM_REGS)

    def _bus_reset(self) -> None:
        r = self._regs
        r[_RD + _CDR] = 0
        r[_WR + _ODR] = 0
        r[_RD + _ICR] = 0x80
        r[_WR + _ICR] &= 0x80
        r[_RD + _MR] &= 0x40
        r[_WR + _MR] &= 0x40
        r[_RD + _TCR] = 0
        r[_WR + _TCR] = 0
        r[_RD + _CSR] = 0x80
        r[_WR + _SER] = 0
        r[_RD + _BSR] = 0x10
        r[_WR + _DMATX] = 0
        r[_RD + _IDR] = 0
        r[_WR + _TDMARX] = 0
        r[_RD + _RESET] = 0
        r[_WR + _IDMARX] = 0

        (flags,) = struct.unpack_from(">H", self.ram, _SCSI_FLAGS_ADDR)
        struct.pack_into(">H", self.ram, _SCSI_FLAGS_ADDR, flags | 0x8000)

    def _check(self) -> None:
        r = self._regs
        # Arbitration stub: report arbitration in progress, not lost, and no
        # higher priority id; selection then times out since no device answers.
        if (r[_WR + _ODR] >> 7) == 1 and (r[_WR + _MR] & 1) == 1:
            r[_RD + _ICR] |= 0x40
            r[_RD + _ICR] &= ~0x20 & 0xFF
            r[_RD + _CDR] = 0x00

        if (r[_WR + _ICR] >> 7) == 1:
            # assert RST
            self._bus_reset()
        else:
            r[_RD + _ICR] &= ~0x80 & 0xFF
            r[_RD + _CSR] &= ~0x80 & 0xFF

        if (r[_WR + _ICR] >> 2) == 1:
            # assert SEL
            r[_RD + _CSR] |= 0x02
            r[_RD + _BSR] = 0x10
        else:
            r[_RD + _CSR] &= ~0x02 & 0xFF

    def access(self, data: int, write: bool, addr: int) -> int:
        """Read or write register ``addr``; returns the value read, or ``data``."""
        if 0 <= addr < _NUM_ADDRS:
            index = addr * 2
            if write:
                self._regs[index + _WR] = data & 0xFF
                self._check()
            else:
                data = self._regs[index + _RD]
        return data