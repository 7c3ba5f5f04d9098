# vmacdevices

Emulated hardware for a compact 68k Macintosh. Each device is a plain
Python object, and an emulator core wires them together.

## What is included

- `vmacdevices.scheduler`
  - `TaskScheduler` keeps a 32-bit cycle count. It runs the CPU through
    a callable you supply, in slices that end exactly when a scheduled
    task (`TaskId`) falls due, and then calls that task's registered
    handler.
  - `Emulation` drives time in sixtieth-of-a-second ticks, with
    sub-ticks. It catches up at most 8 ticks when emulation lags. When
    `speed` is above 0, or `None` for all-out, it runs extra sub-ticks.
    It talks to the rest of the emulator through optional hook methods:
    `set_interrupt_button`, `mac_reset`, `sixtieth`, `sub_tick`,
    `end_tick`, `done_with_drawing`, `extra_time_begin` and
    `extra_time_end`.
- `vmacdevices.screen`
  - `frame_buffer_offset` gives the offset of the main or alternate
    screen buffer near the end of RAM.
  - `current_frame` returns a `memoryview` of that buffer. By default
    it covers 512 x 342 pixels at one bit each.
- `vmacdevices.scsi`
  - `SCSIController` is a minimal NCR 5380 register model with no
    devices on the bus.
  - When RST is asserted it resets the bus and sets the flag word the
    ROM polls in low memory.
- `vmacdevices.via_ports`
  - `ViaPort` holds an 8-bit port and its wiring (`PortConfig`): input
    and output masks, the float value, and callbacks that read input
    lines and report output changes.
  - `InterruptFlags` holds the IFR/IER registers and the interrupt
    request line. The interrupt sources are listed in `Interrupt`.
- `vmacdevices.via`
  - `VIA` is the 6522 VIA: register access, timer 1 (one-shot or free
    running, with optional PB7 toggling) and timer 2, both run against
    a `TaskScheduler`.
  - It also covers the shift register, control-line pulses, and
    freezing the timers during extra time.
- `vmacdevices.disk`
  - `GuestMemory` is a simple big-endian guest address space.
  - `DiskDrives` holds `DiskImage` objects in numbered drives. It
    detects Disk Copy 4.2 images (see `dc42_checksum`) and mounts
    inserted disks one at a time.
  - It transfers data between disks and guest memory, and serves the
    guest's low-level disk extension calls through `extension_access`.
  - Failures raise `MacError`, which carries a `MacErrorCode` and the
    byte count moved before the failure.

## Installing

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Examples

```python
from vmacdevices.scheduler import TaskScheduler
from vmacdevices.scsi import SCSIController

scheduler = TaskScheduler(run_cpu=lambda cycles: None)
scheduler.run_cycles(1000)
print(scheduler.current_count())    # 1000

ram = bytearray(0x10000)
scsi = SCSIController(ram)
scsi.reset()
scsi.access(0x80, True, 1)          # assert RST in the initiator command register
print(hex(scsi.access(0, False, 1)))  # 0x80
```

```python
from vmacdevices.disk import DiskDrives, DiskImage, GuestMemory

memory = GuestMemory(0x10000)
drives = DiskDrives(memory, num_drives=2)
drive = drives.insert(DiskImage(bytearray(1024)))
drives.next_pending_insert()        # mounts the raw image in that drive
print(drives.transfer(False, 0x1000, drive, 0, 512))  # 512 bytes read into memory
```

## What it does not do

The package has no CPU core and no command to run. Your code supplies
the cycle-running callable and the hooks each device needs.

These parts are not included:

- preparing or patching ROM images;
- a real-time clock or parameter RAM;
- the host side of a replacement floppy driver, meaning its open,
  prime, control, status and mount calls.

For disks, only the low-level disk extension in `DiskDrives` is
provided.