"""Emulated 68k Macintosh devices: task scheduling, screen buffer, SCSI, VIA and disk drives."""

__version__ = "0.1.0"