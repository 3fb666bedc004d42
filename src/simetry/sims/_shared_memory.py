"""Windows named shared memory: ctypes access plus the polling session on top.

Assetto Corsa, Assetto Corsa Competizione and rFactor 2 all publish telemetry
as named file mappings. Each backend supplies a reader that turns the raw
pages into a flat dict; everything else (connection state, retrying, packet
de-duplication) lives here.
"""

from __future__ import annotations

import asyncio
import ctypes
import ctypes.wintypes
import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, ClassVar

from simetry.moment import Moment, Simetry
from simetry.retry import retry_forever
from simetry.sims._convert import as_int

_logger = logging.getLogger(__name__)

_FILE_MAP_READ = 0x0004

# ---------------------------------------------------------------------------
# AC-family page names and the header both AC and ACC share
# ---------------------------------------------------------------------------

ACPMF_PHYSICS = "Local\\acpmf_physics"
ACPMF_GRAPHICS = "Local\\acpmf_graphics"
ACPMF_STATIC = "Local\\acpmf_static"

OFF_SM_VERSION = 0      # wchar[15]
OFF_AC_VERSION = 30     # wchar[15]
VERSION_CHARS = 15

# Assetto Corsa's shared memory layout stops at 1.7; Competizione publishes 1.8+.
_FIRST_COMPETIZIONE_SM_VERSION = (1, 8)


# ---------------------------------------------------------------------------
# Low-level helpers (ctypes only, no mmap module)
# ---------------------------------------------------------------------------


def read_shared_memory(name: str, size: int) -> bytes | None:
    """Open a named shared memory mapping, copy *size* bytes, then close.

    Uses ``OpenFileMappingW`` + ``MapViewOfFile`` + ``ctypes.string_at``
    so it works with the sim's existing mappings without creating new ones.
    Returns ``None`` if the mapping does not exist (sim not running).
    """
    if sys.platform != "win32":
        return None

    k32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    # Set correct types so 64-bit pointers are not truncated on 64-bit Windows.
    k32.MapViewOfFile.restype = ctypes.c_void_p
    k32.MapViewOfFile.argtypes = [
        ctypes.wintypes.HANDLE,
        ctypes.wintypes.DWORD,
        ctypes.wintypes.DWORD,
        ctypes.wintypes.DWORD,
        ctypes.c_size_t,
    ]
    k32.UnmapViewOfFile.argtypes = [ctypes.c_void_p]
    k32.UnmapViewOfFile.restype = ctypes.wintypes.BOOL

    handle = k32.OpenFileMappingW(_FILE_MAP_READ, False, name)
    if not handle:
        return None

    ptr = k32.MapViewOfFile(handle, _FILE_MAP_READ, 0, 0, size)
    k32.CloseHandle(handle)

    if not ptr:
        return None

    data: bytes = ctypes.string_at(ptr, size)
    k32.UnmapViewOfFile(ptr)
    return data


def mapping_exists(name: str) -> bool:
    """Return True if the named mapping exists."""
    if sys.platform != "win32":
        return False
    k32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    handle = k32.OpenFileMappingW(_FILE_MAP_READ, False, name)
    if handle:
        k32.CloseHandle(handle)
        return True
    return False


def read_float(buf: bytes, offset: int) -> float:
    return ctypes.c_float.from_buffer_copy(buf[offset : offset + 4]).value


def read_double(buf: bytes, offset: int) -> float:
    return ctypes.c_double.from_buffer_copy(buf[offset : offset + 8]).value


def read_int(buf: bytes, offset: int) -> int:
    return ctypes.c_int32.from_buffer_copy(buf[offset : offset + 4]).value


def read_uint(buf: bytes, offset: int) -> int:
    return ctypes.c_uint32.from_buffer_copy(buf[offset : offset + 4]).value


def read_byte(buf: bytes, offset: int) -> int:
    return buf[offset]


def read_wstr(buf: bytes, offset: int, chars: int) -> str:
    raw = buf[offset : offset + chars * 2].decode("utf-16-le", errors="ignore")
    return raw.split("\0", 1)[0]


def read_str(buf: bytes, offset: int, length: int) -> str:
    raw = buf[offset : offset + length].split(b"\0", 1)[0]
    return raw.decode("utf-8", errors="replace")


def read_versions(buf: bytes) -> dict:
    """``smVersion``/``acVersion`` from the head of an AC-family static page."""
    return {
        "smVersion": read_wstr(buf, OFF_SM_VERSION, VERSION_CHARS),
        "acVersion": read_wstr(buf, OFF_AC_VERSION, VERSION_CHARS),
    }


def is_competizione(static: dict) -> bool | None:
    """Tell ACC from AC by the static page's ``smVersion``.

    Returns None while the sim has not filled the page in yet (or the
    version string is junk), so the caller keeps waiting.
    """
    raw = str(static.get("smVersion") or "").strip()
    try:
        version = tuple(int(part) for part in raw.split("."))
    except ValueError:
        return None
    return version >= _FIRST_COMPETIZIONE_SM_VERSION


# ---------------------------------------------------------------------------
# Connection and session
# ---------------------------------------------------------------------------


class SharedMemoryConnection(ABC):
    """Tracks whether a sim's shared memory is present and reads frames from it.

    Parameters
    ----------
    reader:
        Object with ``is_available()``, ``close()`` and the page readers the
        subclass uses. Injected for testability.
    """

    sim_name: ClassVar[str]

    def __init__(self, reader: Any) -> None:
        self._reader = reader
        self._connected: bool = False
        self._callbacks: list[Callable[[bool], None]] = []

    @property
    def is_connected(self) -> bool:
        """True when the sim's shared memory is accessible."""
        return self._connected

    def connect(self) -> bool:
        """Attempt to connect to the shared memory.

        Returns True if the sim is running, False otherwise (never raises).
        """
        try:
            available = bool(self._reader.is_available()) and self._is_this_sim()
        except Exception as exc:
            _logger.debug("%s shared memory check failed: %s", self.sim_name, exc)
            available = False

        if available != self._connected:
            self._connected = available
            self._fire_callbacks(available)

        return self._connected

    def disconnect(self) -> None:
        """Disconnect and notify callbacks."""
        self._reader.close()
        if self._connected:
            self._connected = False
            self._fire_callbacks(False)

    def register_callback(self, callback: Callable[[bool], None]) -> None:
        """Register *callback(connected: bool)* for connection state changes."""
        self._callbacks.append(callback)

    def read_frame(self) -> dict | None:
        """Return the merged pages as one dict, or None if not connected."""
        if not self._connected:
            return None
        return self._read_pages()

    def _is_this_sim(self) -> bool:
        """Whether the mapping that exists belongs to this sim."""
        return True

    @abstractmethod
    def _read_pages(self) -> dict:
        ...

    def _fire_callbacks(self, state: bool) -> None:
        for cb in self._callbacks:
            cb(state)


class SharedMemoryClient(Simetry):
    """Session polling a :class:`SharedMemoryConnection` until the sim exits.

    A frame is emitted only when its ``PACKET_KEY`` value changes, so a
    paused sim produces no duplicates.
    """

    NAME: ClassVar[str]
    PACKET_KEY: ClassVar[str]

    def __init__(
        self, connection: SharedMemoryConnection, poll_interval: float = 1.0 / 60.0
    ) -> None:
        super().__init__()
        self._connection = connection
        self._poll_interval = poll_interval
        self._last_packet: int | None = None

    @property
    def name(self) -> str:
        return self.NAME

    @classmethod
    async def connect(
        cls,
        retry_delay: float = 5.0,
        reader: Any | None = None,
        poll_interval: float = 1.0 / 60.0,
    ) -> SharedMemoryClient:
        """Wait until the sim's shared memory exists and return a session."""
        connection = cls._make_connection(reader)

        async def attempt() -> SharedMemoryConnection | None:
            return connection if connection.connect() else None

        try:
            await retry_forever(attempt, retry_delay, cls.NAME)
        except asyncio.CancelledError:
            connection.disconnect()
            raise
        return cls(connection, poll_interval)

    async def _next_moment(self) -> Moment | None:
        while self._connection.connect():
            frame = self._connection.read_frame()
            if frame:
                packet = as_int(frame.get(self.PACKET_KEY))
                if packet != self._last_packet:
                    self._last_packet = packet
                    return self._make_moment(frame)
            await asyncio.sleep(self._poll_interval)
        return None

    async def _close(self) -> None:
        self._connection.disconnect()

    @classmethod
    @abstractmethod
    def _make_connection(cls, reader: Any | None) -> SharedMemoryConnection:
        ...

    @abstractmethod
    def _make_moment(self, frame: dict) -> Moment:
        ...
