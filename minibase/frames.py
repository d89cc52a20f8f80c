"""In-memory structures behind the disk buffer pool: pages, frames and file handles."""

from __future__ import annotations

import struct
from collections import deque
from dataclasses import dataclass, field

INVALID_PAGE_NUM = -1
PAGE_SIZE = 1 << 12
_PAGE_NUM_FORMAT = struct.Struct("<i")
PAGE_DATA_SIZE = PAGE_SIZE - _PAGE_NUM_FORMAT.size
_SUB_HEADER_FORMAT = struct.Struct("<ii")
FILE_SUB_HEADER_SIZE = _SUB_HEADER_FORMAT.size
BUFFER_SIZE = 50
MAX_OPEN_FILE = 1024


def _empty_data() -> bytearray:
    return bytearray(PAGE_DATA_SIZE)


@dataclass
class Page:
    """A fixed-size page: its number followed by its data area."""

    page_num: int = 0
    data: bytearray = field(default_factory=_empty_data)

    def __post_init__(self) -> None:
        if len(self.data) != PAGE_DATA_SIZE:
            raise ValueError(
                f"page data must be {PAGE_DATA_SIZE} bytes, got {len(self.data)}"
            )
        self.data = bytearray(self.data)

    def to_bytes(self) -> bytes:
        """Serialise the page to exactly PAGE_SIZE bytes."""
        return _PAGE_NUM_FORMAT.pack(self.page_num) + bytes(self.data)

    @classmethod
    def from_bytes(cls, raw: bytes) -> Page:
        """Build a page from exactly PAGE_SIZE bytes."""
        if len(raw) != PAGE_SIZE:
            raise ValueError(f"a page is {PAGE_SIZE} bytes, got {len(raw)}")
        (page_num,) = _PAGE_NUM_FORMAT.unpack_from(raw)
        return cls(page_num, bytearray(raw[_PAGE_NUM_FORMAT.size:]))

    def clear(self) -> None:
        """Zero the page number and data in place."""
        self.page_num = 0
        self.data[:] = bytes(PAGE_DATA_SIZE)


@dataclass
class Frame:
    """A buffer slot holding one page of one file."""

    dirty: bool = False
    pin_count: int = 0
    acc_time: int = 0
    file_desc: int = -1
    page: Page = field(default_factory=Page)


@dataclass
class PageHandle:
    """A reference to a pinned frame handed out by the buffer pool."""

    open: bool = False
    frame: Frame | None = None


@dataclass
class FileHandle:
    """An open paged file; its header page holds the page counts and the allocation bitmap."""

    file_name: str
    file_desc: int
    hdr_frame: Frame
    bopen: bool = True

    @property
    def hdr_page(self) -> Page:
        return self.hdr_frame.page

    @property
    def page_count(self) -> int:
        return _SUB_HEADER_FORMAT.unpack_from(self.hdr_page.data)[0]

    @page_count.setter
    def page_count(self, value: int) -> None:
        _SUB_HEADER_FORMAT.pack_into(self.hdr_page.data, 0, value, self.allocated_pages)

    @property
    def allocated_pages(self) -> int:
        return _SUB_HEADER_FORMAT.unpack_from(self.hdr_page.data)[1]

    @allocated_pages.setter
    def allocated_pages(self, value: int) -> None:
        _SUB_HEADER_FORMAT.pack_into(self.hdr_page.data, 0, self.page_count, value)

    def _bit_position(self, page_num: int) -> tuple[int, int]:
        byte = FILE_SUB_HEADER_SIZE + page_num // 8
        if page_num < 0 or byte >= PAGE_DATA_SIZE:
            raise IndexError(f"page number {page_num} is outside the bitmap")
        return byte, 1 << (page_num % 8)

    def is_page_allocated(self, page_num: int) -> bool:
        byte, mask = self._bit_position(page_num)
        return bool(self.hdr_page.data[byte] & mask)

    def mark_allocated(self, page_num: int) -> None:
        byte, mask = self._bit_position(page_num)
        self.hdr_page.data[byte] |= mask

    def mark_free(self, page_num: int) -> None:
        byte, mask = self._bit_position(page_num)
        self.hdr_page.data[byte] &= ~mask & 0xFF


class FrameManager:
    """A fixed set of frames handed out in least-recently-used order."""

    def __init__(self, size: int = BUFFER_SIZE) -> None:
        if size <= 0:
            raise ValueError("a frame manager needs at least one frame")
        self.size = size
        self.frames = [Frame() for _ in range(size)]
        self.allocated = [False] * size
        self._lru: deque[Frame] = deque()

    def alloc(self) -> Frame:
        """Return a free frame, or recycle the least recently used one."""
        for position, taken in enumerate(self.allocated):
            if not taken:
                self.allocated[position] = True
                frame = self.frames[position]
                self._lru.appendleft(frame)
                return frame
        frame = self._lru.pop()
        self._lru.appendleft(frame)
        return frame

    def get(self, file_desc: int, page_num: int) -> Frame | None:
        """Find the frame holding the page and mark it most recently used."""
        for frame in self._lru:
            if frame.file_desc == file_desc and frame.page.page_num == page_num:
                self._lru.remove(frame)
                self._lru.appendleft(frame)
                return frame
        return None