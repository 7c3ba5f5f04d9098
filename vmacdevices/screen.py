"""Locating the frame buffer the emulated screen shows."""

from __future__ import annotations

# Offsets of the two screen buffers, counted back from the end of RAM.
MAIN_OFFSET = 0x5900
ALTERNATE_OFFSET = 0xD900

# A 512 x 342 one-bit-per-pixel screen.
SCREEN_WIDTH = 512
SCREEN_HEIGHT = 342
FRAME_SIZE = SCREEN_WIDTH * SCREEN_HEIGHT // 8


def frame_buffer_offset(ram_size: int, main_page: bool) -> int:
    """Offset in RAM of the main or alternate screen buffer."""
    offset = ram_size - (MAIN_OFFSET if main_page else ALTERNATE_OFFSET)
    if offset < 0:
        raise ValueError(f"RAM of {ram_size:#x} bytes is too small for a screen buffer")
    return offset


def current_frame(ram, main_page: bool, frame_size: int = FRAME_SIZE) -> memoryview:
    """A view of the screen buffer selected by ``main_page`` at the end of a tick."""
    if frame_size <= 0:
        raise ValueError("frame_size must be positive")
    start = frame_buffer_offset(len(ram), main_page)
    end = start + frame_size
    if end > len(ram):
        raise ValueError(
            f"frame of {frame_size:#x} bytes at {start:#x} runs past the end of RAM"
        )
    return memoryview(ram)[start:end]