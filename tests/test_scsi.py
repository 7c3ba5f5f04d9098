import struct

import pytest

from vmacdevices.scsi import SCSIController

ICR = 1
MR = 2
CSR = 4
BSR = 5
ODR = 0


def make_controller(flags=0):
    ram = bytearray(0x1000)
    struct.pack_into(">H", ram, 0xB22, flags)
    scsi = SCSIController(ram)
    scsi.reset()
    return scsi, ram


def read(scsi, addr):
    return scsi.access(0, False, addr)


def test_reset_clears_all_registers():
    scsi, _ = make_controller()
    scsi.access(0x84, True, ICR)
    scsi.reset()
    assert [read(scsi, a) for a in range(8)] == [0] * 8


def test_assert_rst_performs_bus_reset():
    scsi, _ = make_controller()
    scsi.access(0x80, True, ICR)
    assert read(scsi, ICR) == 0x80
    assert read(scsi, CSR) == 0x80
    assert read(scsi, BSR) == 0x10


def test_bus_reset_sets_flag_in_low_memory():
    scsi, ram = make_controller(flags=0x0123)
    scsi.access(0x80, True, ICR)
    (flags,) = struct.unpack_from(">H", ram, 0xB22)
    assert flags == 0x0123 | 0x8000


def test_releasing_rst_clears_reset_bits():
    scsi, _ = make_controller()
    scsi.access(0x80, True, ICR)
    scsi.access(0x00, True, ICR)
    assert read(scsi, ICR) == 0
    assert read(scsi, CSR) == 0


def test_assert_sel_sets_status():
    scsi, _ = make_controller()
    scsi.access(0x04, True, ICR)
    assert read(scsi, CSR) & 0x02
    assert read(scsi, BSR) == 0x10


def test_releasing_sel_clears_status_bit():
    scsi, _ = make_controller()
    scsi.access(0x04, True, ICR)
    scsi.access(0x00, True, ICR)
    assert read(scsi, CSR) & 0x02 == 0


def test_arbitration_reports_in_progress():
    scsi, _ = make_controller()
    scsi.access(0x01, True, MR)
    scsi.access(0x80, True, ODR)
    assert read(scsi, ICR) == 0x40
    assert read(scsi, ODR) == 0


def test_out_of_range_address_passes_data_through():
    scsi, _ = make_controller()
    assert scsi.access(0x55, True, 8) == 0x55
    assert scsi.access(0x66, False, 9) == 0x66
    assert [read(scsi, a) for a in range(8)] == [0] * 8


def test_write_returns_data_written():
    scsi, _ = make_controller()
    assert scsi.access(0x12, True, 3) == 0x12


def test_ram_too_small_raises():
    with pytest.raises(ValueError):
        SCSIController(bytearray(16))