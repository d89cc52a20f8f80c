"""A paged file store with a fixed pool of in-memory frames."""

from __future__ import annotations

import functools
import os
import struct
import time

from .frames import (
    FILE_SUB_HEADER_SIZE,
    MAX_OPEN_FILE,
    PAGE_DATA_SIZE,
    PAGE_SIZE,
    BUFFER_SIZE,
    FileHandle,
    Frame,
    FrameManager,
    Page,
    PageHandle,
)

_SUB_HEADER = struct.Struct("<ii")
_MAX_PAGES = (PAGE_DATA_SIZE - FILE_SUB_HEADER_SIZE) * 8


class BufferPoolError(Exception):
    """Raised when a buffer pool operation fails; ``reason`` names the failure."""

    def __init__(self, reason: str, message: str = "") -> None:
        super().__init__(f"{reason}: {message}" if message else reason)
        self.reason = reason


def _now() -> int:
    return time.monotonic_ns()


class DiskBufferPool:
    """Caches pages of open paged files in a fixed number of frames."""

    def __init__(self, buffer_size: int = BUFFER_SIZE) -> None:
        self._manager = FrameManager(buffer_size)
        self._open_list: list[FileHandle | None] = [None] * MAX_OPEN_FILE

    # ----- files -------------------------------------------------------

    def create_file(self, file_name: str | os.PathLike) -> None:
        """Create a new paged file holding only its header page."""
        try:
            fd = os.open(file_name, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o600)
        except OSError as exc:
            raise BufferPoolError("SCHEMA_DB_EXIST", f"cannot create {file_name}: {exc}") from exc
        os.close(fd)

        try:
            fd = os.open(file_name, os.O_RDWR)
        except OSError as exc:
            raise BufferPoolError("IOERR_ACCESS", f"cannot open {file_name}: {exc}") from exc

        data = bytearray(PAGE_DATA_SIZE)
        _SUB_HEADER.pack_into(data, 0, 1, 1)
        data[FILE_SUB_HEADER_SIZE] |= 0x01
        header = Page(0, data)
        try:
            try:
                os.lseek(fd, 0, os.SEEK_SET)
            except OSError as exc:
                raise BufferPoolError("IOERR_SEEK", str(exc)) from exc
            try:
                written = os.write(fd, header.to_bytes())
            except OSError as exc:
                raise BufferPoolError("IOERR_WRITE", str(exc)) from exc
            if written != PAGE_SIZE:
                raise BufferPoolError("IOERR_WRITE", f"short write to {file_name}")
        finally:
            os.close(fd)

    def open_file(self, file_name: str | os.PathLike) -> int:
        """Open a paged file and return its file id."""
        name = os.fspath(file_name)
        for file_id, handle in enumerate(self._open_list):
            if handle is not None and handle.file_name == name:
                return file_id

        slot = next((i for i, h in enumerate(self._open_list) if h is None), None)
        if slot is None:
            raise BufferPoolError("BUFFERPOOL_OPEN_TOO_MANY_FILES", name)

        try:
            fd = os.open(name, os.O_RDWR)
        except OSError as exc:
            raise BufferPoolError("IOERR_ACCESS", f"cannot open {name}: {exc}") from exc

        try:
            frame = self._allocate_block()
        except BufferPoolError:
            os.close(fd)
            raise
        frame.dirty = False
        frame.acc_time = _now()
        frame.file_desc = fd
        frame.pin_count = 1
        try:
            self._load_page(0, fd, frame)
        except BufferPoolError:
            frame.pin_count = 0
            self._dispose_block(frame)
            os.close(fd)
            raise

        self._open_list[slot] = FileHandle(file_name=name, file_desc=fd, hdr_frame=frame)
        return slot

    def close_file(self, file_id: int) -> None:
        """Flush every page of the file and close it."""
        handle = self._check_file_id(file_id)
        handle.hdr_frame.pin_count -= 1
        try:
            self._force_all_pages(handle, keep_pinned=False)
        except BufferPoolError:
            handle.hdr_frame.pin_count += 1
            raise
        try:
            os.close(handle.file_desc)
        except OSError as exc:
            raise BufferPoolError("IOERR_CLOSE", str(exc)) from exc
        handle.bopen = False
        self._open_list[file_id] = None

    # ----- pages -------------------------------------------------------

    def get_this_page(self, file_id: int, page_num: int) -> PageHandle:
        """Pin the given page in a frame, loading it from disk if needed."""
        handle = self._check_file_id(file_id)
        self._check_page_num(page_num, handle)

        for frame in self._allocated_frames_of(handle.file_desc):
            if frame.page.page_num == page_num:
                frame.pin_count += 1
                frame.acc_time = _now()
                return PageHandle(open=True, frame=frame)

        frame = self._allocate_block()
        frame.dirty = False
        frame.file_desc = handle.file_desc
        frame.pin_count = 1
        frame.acc_time = _now()
        try:
            self._load_page(page_num, handle.file_desc, frame)
        except BufferPoolError:
            frame.pin_count = 0
            self._dispose_block(frame)
            raise
        return PageHandle(open=True, frame=frame)

    def allocate_page(self, file_id: int) -> PageHandle:
        """Allocate a page, reusing a free one or extending the file."""
        handle = self._check_file_id(file_id)

        if handle.allocated_pages < handle.page_count:
            for page_num in range(handle.page_count):
                if not handle.is_page_allocated(page_num):
                    handle.allocated_pages += 1
                    handle.mark_allocated(page_num)
                    handle.hdr_frame.dirty = True
                    return self.get_this_page(file_id, page_num)

        page_num = handle.page_count
        if page_num >= _MAX_PAGES:
            raise BufferPoolError("BUFFERPOOL_NOBUF", f"{handle.file_name} is full")

        frame = self._allocate_block()

        handle.allocated_pages += 1
        handle.page_count += 1
        handle.mark_allocated(page_num)
        handle.hdr_frame.dirty = True

        frame.dirty = False
        frame.file_desc = handle.file_desc
        frame.pin_count = 1
        frame.acc_time = _now()
        frame.page.clear()
        frame.page.page_num = page_num

        self._flush_block(frame)
        return PageHandle(open=True, frame=frame)

    def get_page_num(self, page_handle: PageHandle) -> int:
        """Return the number of the page behind an open handle."""
        return self._open_frame(page_handle).page.page_num

    def get_data(self, page_handle: PageHandle) -> bytearray:
        """Return the mutable data area of the page behind an open handle."""
        return self._open_frame(page_handle).page.data

    def dispose_page(self, file_id: int, page_num: int) -> None:
        """Drop a page from the file, turning it into a free page."""
        handle = self._check_file_id(file_id)
        self._check_page_num(page_num, handle)

        for position, frame in enumerate(self._manager.frames):
            if not self._manager.allocated[position]:
                continue
            if frame.file_desc != handle.file_desc or frame.page.page_num != page_num:
                continue
            if frame.pin_count != 0:
                raise BufferPoolError("BUFFERPOOL_PAGE_PINNED", f"page {page_num} is pinned")
            self._manager.allocated[position] = False

        handle.hdr_frame.dirty = True
        handle.allocated_pages -= 1
        handle.mark_free(page_num)

    def force_page(self, file_id: int, page_num: int) -> None:
        """Write a cached page to disk if dirty and release its frame.

        A page number of -1 stands for the first cached page of the file.
        """
        handle = self._check_file_id(file_id)
        for position, frame in enumerate(self._manager.frames):
            if not self._manager.allocated[position]:
                continue
            if frame.file_desc != handle.file_desc:
                continue
            if frame.page.page_num != page_num and page_num != -1:
                continue
            if frame.pin_count != 0:
                raise BufferPoolError("BUFFERPOOL_PAGE_PINNED", f"page {page_num} is pinned")
            if frame.dirty:
                self._flush_block(frame)
            self._manager.allocated[position] = False
            return

    def mark_dirty(self, page_handle: PageHandle) -> None:
        """Mark the page as modified so it is written back when evicted."""
        if page_handle.frame is None:
            raise BufferPoolError("BUFFERPOOL_CLOSED", "handle holds no frame")
        page_handle.frame.dirty = True

    def unpin_page(self, page_handle: PageHandle) -> None:
        """Release a handle's pin so its frame may be evicted."""
        if page_handle.frame is None:
            raise BufferPoolError("BUFFERPOOL_CLOSED", "handle holds no frame")
        page_handle.open = False
        page_handle.frame.pin_count -= 1

    def get_page_count(self, file_id: int) -> int:
        """Return the number of pages in the file, free ones included."""
        return self._check_file_id(file_id).page_count

    def flush_all_pages(self, file_id: int) -> None:
        """Write every dirty page of the file to disk."""
        handle = self._check_file_id(file_id)
        self._force_all_pages(handle, keep_pinned=True)

    # ----- internals ---------------------------------------------------

    def _open_frame(self, page_handle: PageHandle) -> Frame:
        if not page_handle.open or page_handle.frame is None:
            raise BufferPoolError("BUFFERPOOL_CLOSED", "page handle is not open")
        return page_handle.frame

    def _allocated_frames_of(self, file_desc: int):
        for position, frame in enumerate(self._manager.frames):
            if self._manager.allocated[position] and frame.file_desc == file_desc:
                yield frame

    def _force_all_pages(self, handle: FileHandle, keep_pinned: bool) -> None:
        for position, frame in enumerate(self._manager.frames):
            if not self._manager.allocated[position]:
                continue
            if frame.file_desc != handle.file_desc:
                continue
            if frame.dirty:
                self._flush_block(frame)
            if keep_pinned and frame.pin_count != 0:
                continue
            self._manager.allocated[position] = False

    def _flush_block(self, frame: Frame) -> None:
        offset = frame.page.page_num * PAGE_SIZE
        try:
            os.lseek(frame.file_desc, offset, os.SEEK_SET)
        except OSError as exc:
            raise BufferPoolError("IOERR_SEEK", str(exc)) from exc
        try:
            written = os.write(frame.file_desc, frame.page.to_bytes())
        except OSError as exc:
            raise BufferPoolError("IOERR_WRITE", str(exc)) from exc
        if written != PAGE_SIZE:
            raise BufferPoolError("IOERR_WRITE", f"short write of page {frame.page.page_num}")
        frame.dirty = False

    def _allocate_block(self) -> Frame:
        manager = self._manager
        for position, taken in enumerate(manager.allocated):
            if not taken:
                manager.allocated[position] = True
                return manager.frames[position]

        candidates = [frame for frame in manager.frames if frame.pin_count == 0]
        if not candidates:
            raise BufferPoolError("NOMEM", "all frames are pinned")
        victim = min(candidates, key=lambda frame: frame.acc_time)
        if victim.dirty:
            self._flush_block(victim)
        return victim

    def _dispose_block(self, frame: Frame) -> None:
        if frame.pin_count != 0:
            raise BufferPoolError("LOCKED_UNLOCK", "frame is pinned")
        if frame.dirty:
            self._flush_block(frame)
        frame.dirty = False
        position = next(i for i, f in enumerate(self._manager.frames) if f is frame)
        self._manager.allocated[position] = False

    def _check_file_id(self, file_id: int) -> FileHandle:
        if file_id < 0 or file_id >= MAX_OPEN_FILE:
            raise BufferPoolError("BUFFERPOOL_ILLEGAL_FILE_ID", f"file id {file_id}")
        handle = self._open_list[file_id]
        if handle is None:
            raise BufferPoolError("BUFFERPOOL_ILLEGAL_FILE_ID", f"file id {file_id} is not open")
        return handle

    @staticmethod
    def _check_page_num(page_num: int, handle: FileHandle) -> None:
        if page_num < 0 or page_num >= handle.page_count:
            raise BufferPoolError("BUFFERPOOL_INVALID_PAGE_NUM", f"page {page_num}")
        if not handle.is_page_allocated(page_num):
            raise BufferPoolError("BUFFERPOOL_INVALID_PAGE_NUM", f"page {page_num} is free")

    @staticmethod
    def _load_page(page_num: int, file_desc: int, frame: Frame) -> None:
        try:
            os.lseek(file_desc, page_num * PAGE_SIZE, os.SEEK_SET)
        except OSError as exc:
            raise BufferPoolError("IOERR_SEEK", str(exc)) from exc
        try:
            raw = os.read(file_desc, PAGE_SIZE)
        except OSError as exc:
            raise BufferPoolError("IOERR_READ", str(exc)) from exc
        if len(raw) != PAGE_SIZE:
            raise BufferPoolError("IOERR_READ", f"short read of page {page_num}")
        loaded = Page.from_bytes(raw)
        frame.page.page_num = loaded.page_num
        frame.page.data[:] = loaded.data


@functools.lru_cache(maxsize=None)
def global_disk_buffer_pool() -> DiskBufferPool:
    """Return the process-wide buffer pool."""
    return DiskBufferPool()