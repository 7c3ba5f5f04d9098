import pytest

from vmacdevices.scheduler import TaskScheduler
from vmacdevices.via import VIA
from vmacdevices.via_ports import Interrupt, PortConfig, ViaPort

ORB, DDR_B, DDR_A = 0x00, 0x02, 0x03
T1C_L, T1C_H, T2_L, T2_H = 0x04, 0x05, 0x08, 0x09
SR, ACR, IFR, IER, ORA = 0x0A, 0x0B, 0x0D, 0x0E, 0x0F


def make_via(port_a=None, port_b=None):
    scheduler = TaskScheduler(lambda n: None)
    via = VIA(scheduler, port_a, port_b, 10, 0)
    via.reset()
    return scheduler, via


def test_invalid_clock_rejected():
    with pytest.raises(ValueError):
        VIA(TaskScheduler(lambda n: None), None, None, 0, 0)


def test_ier_set_and_clear():
    _, via = make_via()
    assert via.access(0, False, IER) == 0x80
    via.access(0x82, True, IER)
    assert via.access(0, False, IER) == 0x82
    via.access(0x02, True, IER)
    assert via.access(0, False, IER) == 0x80


def test_pulse_raises_request_and_ifr_write_clears():
    changes = []
    _, via = make_via()
    via.interrupts.on_change = changes.append
    via.access(0x82, True, IER)
    via.pulse(Interrupt.CA1)
    assert via.access(0, False, IFR) & 0x82 == 0x82
    assert via.interrupts.request == 1
    via.access(0x02, True, IFR)
    assert via.access(0, False, IFR) == 0
    assert changes == [1, 0]


def test_reading_ora_clears_ca1():
    _, via = make_via()
    via.pulse(Interrupt.CA1)
    via.access(0, False, ORA)
    assert via.interrupts.ifr & (1 << Interrupt.CA1) == 0


def test_port_b_output_round_trip():
    seen = []
    port_b = ViaPort(PortConfig(can_out=0xFF, on_change=lambda b, v: seen.append((b, v))))
    _, via = make_via(port_b=port_b)
    via.access(0xFF, True, DDR_B)
    via.access(0xA5, True, ORB)
    assert via.access(0, False, ORB) == 0xA5
    assert port_b.lines == [(0xA5 >> b) & 1 for b in range(8)]
    assert all(v == (0xA5 >> b) & 1 for b, v in seen)


def test_port_a_input_lines():
    port_a = ViaPort(PortConfig(can_in=0xFF))
    _, via = make_via(port_a=port_a)
    port_a.lines = [1, 0, 0, 0, 0, 0, 0, 1]
    assert via.access(0, False, ORA) == 0x81
    assert via.access(0, False, DDR_A) == 0


def test_timer1_one_shot_fires_after_interval():
    scheduler, via = make_via()
    via.access(0x10, True, T1C_L)
    via.access(0x00, True, T1C_H)
    scheduler.run_cycles(100)
    assert via.interrupts.ifr & (1 << Interrupt.T1) == 0
    scheduler.run_cycles(100)
    assert via.interrupts.ifr & (1 << Interrupt.T1)
    via.access(0, False, T1C_L)
    assert via.interrupts.ifr & (1 << Interrupt.T1) == 0


def test_timer1_free_running_toggles_pb7():
    port_b = ViaPort(PortConfig(can_out=0x80))
    scheduler, via = make_via(port_b=port_b)
    via.access(0x80, True, DDR_B)
    via.access(0xC0, True, ACR)
    via.access(0x10, True, T1C_L)
    via.access(0x00, True, T1C_H)
    assert via.t1_invert_time() == 0x10
    assert port_b.lines[7] == 0
    scheduler.run_cycles(200)
    assert port_b.lines[7] == 1
    assert via.interrupts.ifr & (1 << Interrupt.T1)


def test_t1_invert_time_zero_without_mode():
    _, via = make_via()
    via.access(0x34, True, 0x06)
    via.access(0x12, True, 0x07)
    assert via.t1_invert_time() == 0
    via.access(0xC0, True, ACR)
    assert via.t1_invert_time() == 0x1234


def test_timer2_fires():
    scheduler, via = make_via()
    via.access(0x20, True, T2_L)
    via.access(0x00, True, T2_H)
    scheduler.run_cycles(200)
    assert via.interrupts.ifr & (1 << Interrupt.T2) == 0
    scheduler.run_cycles(200)
    assert via.interrupts.ifr & (1 << Interrupt.T2)


def test_timer2_counts_down():
    scheduler, via = make_via()
    via.access(0x00, True, T2_L)
    via.access(0x01, True, T2_H)
    scheduler.run_cycles(100)
    low = via.access(0, False, T2_L)
    high = via.access(0, False, T2_H)
    value = (high << 8) | low
    assert 0 < value < 0x100


def test_extra_time_freezes_timer1():
    scheduler, via = make_via()
    via.access(0x10, True, T1C_L)
    via.access(0x00, True, T1C_H)
    via.extra_time_begin()
    assert via.t1_running is False
    scheduler.run_cycles(500)
    assert via.interrupts.ifr & (1 << Interrupt.T1) == 0
    via.extra_time_end()
    scheduler.run_cycles(200)
    assert via.interrupts.ifr & (1 << Interrupt.T1)


def test_shift_in():
    _, via = make_via()
    via.access(0x0C, True, ACR)
    via.shift_in_data(0x5A)
    flags = via.interrupts.ifr
    assert flags & (1 << Interrupt.SR)
    assert flags & (1 << Interrupt.CB1)
    assert via.access(0, False, SR) == 0x5A
    assert via.interrupts.ifr & (1 << Interrupt.SR) == 0


def test_shift_in_ignored_when_not_ready():
    _, via = make_via()
    via.shift_in_data(0x5A)
    assert via.access(0, False, SR) == 0
    assert via.interrupts.ifr == 0


def test_shift_out():
    _, via = make_via()
    assert via.shift_out_data() == 0
    via.access(0x1C, True, ACR)
    via.access(0x81, True, SR)
    assert via.shift_out_data() == 0x81
    assert via.cb2 == 1
    assert via.interrupts.ifr & (1 << Interrupt.SR)


def test_zap_drops_request():
    _, via = make_via()
    via.access(0x82, True, IER)
    via.pulse(Interrupt.CA1)
    assert via.interrupts.request == 1
    via.zap()
    assert via.interrupts.request == 0
    assert via.access(0, False, IER) == 0x80
    assert via.access(0, False, IFR) == 0