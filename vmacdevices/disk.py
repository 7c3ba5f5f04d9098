"""Disk image drives and the low level disk access extension."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import Callable, List, Optional

_MASK32 = 0xFFFFFFFF

# Layout of an extension parameter block in guest memory.
COMMAND_OFFSET = 4
RESULT_OFFSET = 6
PARAMS_OFFSET = 8
VERSION_OFFSET = PARAMS_OFFSET

# Commands of the disk extension.
CMD_VERSION = 0
CMD_NUM_DRIVES = 1
CMD_READ = 2
CMD_WRITE = 3
CMD_EJECT = 4
CMD_GET_SIZE = 5
CMD_GET_CALLBACK = 6
CMD_SET_CALLBACK = 7
CMD_QUIT_ON_EJECT = 8
CMD_FEATURES = 9
CMD_NEXT_PENDING_INSERT = 10
CMD_GET_RAW_MODE = 11
CMD_SET_RAW_MODE = 12

FEATURE_RAW_MODE = 0

# Parameter offsets of the disk extension.
PARAM_NUM_DRIVES = 8
PARAM_START = 8
PARAM_COUNT = 12
PARAM_BUFFER = 16
PARAM_DRIVE = 20

# Disk Copy 4.2 header fields.
DC42_DISK_NAME = 0
DC42_DATA_SIZE = 64
DC42_TAG_SIZE = 68
DC42_DATA_CHECKSUM = 72
DC42_TAG_CHECKSUM = 76
DC42_DISK_FORMAT = 80
DC42_FORMAT_BYTE = 81
DC42_PRIVATE = 82
DC42_USER_DATA = 84

_HEADER_SIZE = 128

# Posting insert events too often loses some of them.
MIN_TICKS_BETWEEN_INSERT = 240


class MacErrorCode(enum.IntEnum):
    """Result codes reported to the emulated system."""

    NO_ERR = 0
    MISC = -1
    CONTROL = -17
    STATUS = -18
    CLOSE = -24
    EOF = -39
    TOO_MANY_FILES = -42
    WRITE_PROTECTED = -44
    VOLUME_LOCKED = -46
    OPEN_WRITE = -49
    PARAM = -50
    NO_SUCH_DRIVE = -56
    OFF_LINE = -65


class MacError(Exception):
    """A failed disk operation; ``actual`` is the byte count moved before it."""

    def __init__(self, code: MacErrorCode, actual: int = 0) -> None:
        self.code = MacErrorCode(code)
        self.actual = actual
        super().__init__(f"{self.code.name} ({int(self.code)})")


class GuestMemory:
    """Big-endian emulated memory."""

    def __init__(self, size: int) -> None:
        if size <= 0:
            raise ValueError("memory size must be positive")
        self.data = bytearray(size)

    def _check(self, addr: int, count: int) -> None:
        if addr < 0 or count < 0 or addr + count > len(self.data):
            raise IndexError(f"guest access of {count} bytes at {addr:#x} out of range")

    def _contiguous(self, addr: int, count: int) -> int:
        if 0 <= addr < len(self.data):
            return min(count, len(self.data) - addr)
        return 0

    def get_byte(self, addr: int) -> int:
        self._check(addr, 1)
        return self.data[addr]

    def get_word(self, addr: int) -> int:
        self._check(addr, 2)
        return struct.unpack_from(">H", self.data, addr)[0]

    def get_long(self, addr: int) -> int:
        self._check(addr, 4)
        return struct.unpack_from(">L", self.data, addr)[0]

    def put_byte(self, addr: int, value: int) -> None:
        self._check(addr, 1)
        self.data[addr] = value & 0xFF

    def put_word(self, addr: int, value: int) -> None:
        self._check(addr, 2)
        struct.pack_into(">H", self.data, addr, value & 0xFFFF)

    def put_long(self, addr: int, value: int) -> None:
        self._check(addr, 4)
        struct.pack_into(">L", self.data, addr, value & _MASK32)

    def read(self, addr: int, count: int) -> bytes:
        self._check(addr, count)
        return bytes(self.data[addr:addr + count])

    def write(self, addr: int, data: bytes) -> None:
        self._check(addr, len(data))
        self.data[addr:addr + len(data)] = data


def dc42_checksum(data: bytes) -> int:
    """Disk Copy 4.2 checksum: add each big-endian word, then rotate right."""
    total = 0
    for (word,) in struct.iter_unpack(">H", data[: len(data) & ~1]):
        total = (total + word) & _MASK32
        total = (total >> 1) | ((total & 1) << 31)
    return total


@dataclass(eq=False)
class DiskImage:
    """The contents of a disk image file and whether it may be written."""

    data: bytearray
    locked: bool = False
    name: str = ""

    def __post_init__(self) -> None:
        self.data = bytearray(self.data)


class DiskDrives:
    """Emulated drives holding disk images, addressed by drive number.

    ``on_insert(callback, data)`` is called by :meth:`update` when a newly
    inserted disk is mounted and the guest has registered a mount callback;
    ``data`` is the drive number, with 0xFF in bits 16..23 when locked.
    """

    def __init__(
        self,
        memory: GuestMemory,
        num_drives: int = 6,
        on_insert: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        if not 1 <= num_drives <= 32:
            raise ValueError("num_drives must be in 1..32")
        self.memory = memory
        self.num_drives = num_drives
        self.on_insert = on_insert
        self.on_activity: Optional[Callable[[], None]] = None
        self.images: List[Optional[DiskImage]] = [None] * num_drives
        self.mounted_mask = 0
        self.data_offsets = [0] * num_drives
        self.data_sizes = [0] * num_drives
        self.support_dc42 = True
        self.update_checksums = False
        self.raw_mode = False
        self.delay_until_next_insert = 0
        self.quit_on_eject = False
        self.quit_requested = False
        self.mount_callback = 0

    # -- drive state ---------------------------------------------------

    def _is_locked(self, drive: int) -> bool:
        image = self.images[drive]
        return image is None or image.locked

    def _is_mounted(self, drive: int) -> bool:
        return bool(self.mounted_mask & (1 << drive))

    def _check_readable(self, drive: int) -> None:
        if not 0 <= drive < self.num_drives:
            raise MacError(MacErrorCode.NO_SUCH_DRIVE)
        if not self._is_mounted(drive):
            raise MacError(MacErrorCode.OFF_LINE)

    def _remove(self, drive: int) -> None:
        self.images[drive] = None

    def insert(self, image: DiskImage) -> int:
        """Put ``image`` into the first empty drive and return its number."""
        for drive, slot in enumerate(self.images):
            if slot is None:
                self.images[drive] = image
                return drive
        raise MacError(MacErrorCode.TOO_MANY_FILES)

    # -- image transfers -----------------------------------------------

    def _image_transfer(
        self, is_write: bool, addr: int, drive: int, offset: int, count: int
    ) -> int:
        image = self.images[drive]
        if image is None:
            raise MacError(MacErrorCode.OFF_LINE)
        avail = max(0, min(count, len(image.data) - offset))
        mem = self.memory.data
        if is_write:
            image.data[offset:offset + avail] = mem[addr:addr + avail]
        else:
            mem[addr:addr + avail] = image.data[offset:offset + avail]
        if avail != count:
            raise MacError(MacErrorCode.EOF, avail)
        return avail

    def _transfer_vm(
        self, is_write: bool, buffer_addr: int, drive: int, offset: int, count: int
    ) -> int:
        done = 0
        while done < count:
            contig = self.memory._contiguous(buffer_addr + done, count - done)
            if contig == 0:
                raise MacError(MacErrorCode.MISC, done)
            try:
                done += self._image_transfer(
                    is_write, buffer_addr + done, drive, offset + done, contig
                )
            except MacError as err:
                raise MacError(err.code, done + err.actual) from None
        return done

    def _read_image(self, drive: int, offset: int, count: int) -> bytes:
        image = self.images[drive]
        if image is None or offset + count > len(image.data):
            raise MacError(MacErrorCode.EOF)
        return bytes(image.data[offset:offset + count])

    # -- mounting ------------------------------------------------------

    def _pending_drive(self) -> Optional[int]:
        for drive, image in enumerate(self.images):
            if image is not None and not self._is_mounted(drive):
                return drive
        return None

    def _detect_format(self, drive: int, size: int):
        header = self._read_image(drive, 0, _HEADER_SIZE)
        if struct.unpack_from(">H", header, DC42_PRIVATE)[0] != 0x0100:
            return 0, size
        data_size, tag_size = struct.unpack_from(">LL", header, DC42_DATA_SIZE)
        tag_offset = DC42_USER_DATA + data_size
        blocks = data_size >> 9
        if not (
            size >= tag_offset + tag_size
            and data_size & 0x1FF == 0
            and blocks >= 4
            and header[DC42_DISK_NAME] < 64
            and (tag_size == 0 or blocks * 12 == tag_size)
        ):
            return 0, size
        if not self._is_locked(drive) and (not self.update_checksums or tag_size != 0):
            # tags are not kept up to date, so the image must not change
            self.images[drive].locked = True
        return DC42_USER_DATA, data_size

    def next_pending_insert(self) -> int:
        """Mount the next inserted but unmounted disk and return its drive."""
        drive = self._pending_drive()
        if drive is None:
            raise MacError(MacErrorCode.NO_SUCH_DRIVE)
        size = len(self.images[drive].data)
        try:
            if self.support_dc42 and not self.raw_mode:
                offset, data_size = self._detect_format(drive, size)
            else:
                offset, data_size = 0, size
        except MacError:
            self._remove(drive)
            raise
        self.mounted_mask |= 1 << drive
        self.data_offsets[drive] = offset
        self.data_sizes[drive] = data_size
        return drive

    def update(self) -> None:
        """Called every tick: report one newly inserted disk to the guest."""
        if self.delay_until_next_insert != 0:
            self.delay_until_next_insert -= 1
            return
        if self.mount_callback == 0:
            return
        try:
            drive = self.next_pending_insert()
        except MacError:
            return
        data = drive
        if self._is_locked(drive):
            data |= 0x00FF << 16
        if self.on_insert is not None:
            self.on_insert(self.mount_callback, data)
        if not self.raw_mode:
            self.delay_until_next_insert = MIN_TICKS_BETWEEN_INSERT

    # -- operations ----------------------------------------------------

    def transfer(
        self, is_write: bool, buffer_addr: int, drive: int, start: int, count: int
    ) -> int:
        """Move ``count`` bytes between guest memory and a disk; return the count."""
        if self.on_activity is not None:
            self.on_activity()
        self._check_readable(drive)
        if is_write and self._is_locked(drive):
            raise MacError(MacErrorCode.VOLUME_LOCKED)
        data_size = self.data_sizes[drive]
        if start > data_size:
            raise MacError(MacErrorCode.EOF)
        length = data_size - start
        hit_eof = length < count
        if not hit_eof:
            length = count
        actual = self._transfer_vm(
            is_write, buffer_addr, drive, self.data_offsets[drive] + start, length
        )
        if hit_eof:
            raise MacError(MacErrorCode.EOF, actual)
        return actual

    def _update_checksums(self, drive: int) -> None:
        if not self.update_checksums or self._is_locked(drive):
            return
        offset = self.data_offsets[drive]
        if offset != DC42_USER_DATA:
            return
        image = self.images[drive]
        body = image.data[offset:offset + self.data_sizes[drive]]
        struct.pack_into(">L", image.data, DC42_DATA_CHECKSUM, dc42_checksum(body))

    def eject(self, drive: int) -> None:
        """Unmount and remove the disk in ``drive``."""
        self._check_readable(drive)
        self.mounted_mask &= ~(1 << drive)
        self._update_checksums(drive)
        self._remove(drive)
        if self.quit_on_eject and all(image is None for image in self.images):
            self.quit_requested = True

    def eject_all(self) -> None:
        """Remove every disk, mounted or not."""
        self.mounted_mask = 0
        for drive, image in enumerate(self.images):
            if image is not None:
                self._update_checksums(drive)
                self._remove(drive)

    def reset(self) -> None:
        """State after a machine reset."""
        self.delay_until_next_insert = 0
        self.quit_on_eject = False
        self.mount_callback = 0

    def set_quit_on_eject(self) -> None:
        """Ask to quit once the last disk has been ejected."""
        self.quit_on_eject = True

    # -- guest extension -----------------------------------------------

    def _transfer_command(self, is_write: bool, p: int) -> None:
        mem = self.memory
        buffer_addr = mem.get_long(p + PARAM_BUFFER)
        drive = mem.get_word(p + PARAM_DRIVE)
        start = mem.get_long(p + PARAM_START)
        count = mem.get_long(p + PARAM_COUNT)
        try:
            actual = self.transfer(is_write, buffer_addr, drive, start, count)
        except MacError as err:
            mem.put_long(p + PARAM_COUNT, err.actual)
            raise
        mem.put_long(p + PARAM_COUNT, actual)

    def _dispatch(self, command: int, p: int) -> None:
        mem = self.memory
        if command == CMD_VERSION:
            mem.put_word(p + VERSION_OFFSET, 2)
        elif command == CMD_NUM_DRIVES:
            mem.put_word(p + PARAM_NUM_DRIVES, self.num_drives)
        elif command == CMD_READ:
            self._transfer_command(False, p)
        elif command == CMD_WRITE:
            self._transfer_command(True, p)
        elif command == CMD_EJECT:
            self.eject(mem.get_word(p + PARAM_DRIVE))
        elif command == CMD_GET_SIZE:
            drive = mem.get_word(p + PARAM_DRIVE)
            self._check_readable(drive)
            mem.put_long(p + PARAM_COUNT, self.data_sizes[drive])
        elif command == CMD_GET_CALLBACK:
            mem.put_long(p + PARAM_BUFFER, self.mount_callback)
        elif command == CMD_SET_CALLBACK:
            self.mount_callback = mem.get_long(p + PARAM_BUFFER)
        elif command == CMD_QUIT_ON_EJECT:
            self.quit_on_eject = True
        elif command == CMD_FEATURES:
            mem.put_long(p + PARAMS_OFFSET, 1 << FEATURE_RAW_MODE)
        elif command == CMD_NEXT_PENDING_INSERT:
            mem.put_word(p + PARAM_DRIVE, self.next_pending_insert())
        elif command == CMD_GET_RAW_MODE:
            mem.put_word(p + PARAM_BUFFER, int(self.raw_mode))
        elif command == CMD_SET_RAW_MODE:
            self.raw_mode = bool(mem.get_word(p + PARAM_BUFFER))
        else:
            raise MacError(MacErrorCode.CONTROL)

    def extension_access(self, p: int) -> MacErrorCode:
        """Carry out the command in the parameter block at ``p``."""
        command = self.memory.get_word(p + COMMAND_OFFSET)
        try:
            self._dispatch(command, p)
            result = MacErrorCode.NO_ERR
        except MacError as err:
            result = err.code
        self.memory.put_word(p + RESULT_OFFSET, result)
        return result