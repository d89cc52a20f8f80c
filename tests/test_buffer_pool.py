import struct

import pytest

from minibase.buffer_pool import BufferPoolError, DiskBufferPool, global_disk_buffer_pool
from minibase.frames import FILE_SUB_HEADER_SIZE, MAX_OPEN_FILE, PAGE_SIZE


@pytest.fixture
def pool():
    return DiskBufferPool()


@pytest.fixture
def path(tmp_path):
    return str(tmp_path / "data.bin")


def test_create_file_writes_one_header_page(pool, path):
    pool.create_file(path)
    with open(path, "rb") as fh:
        raw = fh.read()
    assert len(raw) == PAGE_SIZE
    page_count, allocated = struct.unpack_from("<ii", raw, 4)
    assert (page_count, allocated) == (1, 1)
    assert raw[4 + FILE_SUB_HEADER_SIZE] & 1 == 1


def test_create_twice_fails(pool, path):
    pool.create_file(path)
    with pytest.raises(BufferPoolError) as err:
        pool.create_file(path)
    assert err.value.reason == "SCHEMA_DB_EXIST"


def test_open_missing_file_fails(pool, tmp_path):
    with pytest.raises(BufferPoolError) as err:
        pool.open_file(str(tmp_path / "missing.bin"))
    assert err.value.reason == "IOERR_ACCESS"


def test_open_same_file_returns_same_id(pool, path):
    pool.create_file(path)
    first = pool.open_file(path)
    assert pool.open_file(path) == first
    assert pool.get_page_count(first) == 1


@pytest.mark.parametrize("file_id", [-1, MAX_OPEN_FILE, 5])
def test_illegal_file_id(pool, file_id):
    with pytest.raises(BufferPoolError) as err:
        pool.get_page_count(file_id)
    assert err.value.reason == "BUFFERPOOL_ILLEGAL_FILE_ID"


def test_allocate_page_extends_file(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    assert pool.get_page_num(handle) == 1
    assert pool.get_page_count(fid) == 2
    second = pool.allocate_page(fid)
    assert pool.get_page_num(second) == 2


def test_data_survives_close_and_reopen(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    page_num = pool.get_page_num(handle)
    pool.get_data(handle)[:5] = b"hello"
    pool.mark_dirty(handle)
    pool.unpin_page(handle)
    pool.close_file(fid)

    other = DiskBufferPool()
    fid = other.open_file(path)
    assert other.get_page_count(fid) == 2
    loaded = other.get_this_page(fid, page_num)
    assert bytes(other.get_data(loaded)[:5]) == b"hello"
    assert other.get_page_num(loaded) == page_num


def test_closed_file_id_becomes_illegal(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    pool.close_file(fid)
    with pytest.raises(BufferPoolError) as err:
        pool.get_page_count(fid)
    assert err.value.reason == "BUFFERPOOL_ILLEGAL_FILE_ID"


def test_unallocated_page_is_invalid(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    with pytest.raises(BufferPoolError) as err:
        pool.get_this_page(fid, 1)
    assert err.value.reason == "BUFFERPOOL_INVALID_PAGE_NUM"


def test_unpinned_handle_is_closed(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    pool.unpin_page(handle)
    with pytest.raises(BufferPoolError) as err:
        pool.get_data(handle)
    assert err.value.reason == "BUFFERPOOL_CLOSED"
    with pytest.raises(BufferPoolError):
        pool.get_page_num(handle)


def test_dispose_pinned_page_fails_then_reuse(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    page_num = pool.get_page_num(handle)
    with pytest.raises(BufferPoolError) as err:
        pool.dispose_page(fid, page_num)
    assert err.value.reason == "BUFFERPOOL_PAGE_PINNED"

    pool.unpin_page(handle)
    pool.dispose_page(fid, page_num)
    with pytest.raises(BufferPoolError):
        pool.get_this_page(fid, page_num)

    reused = pool.allocate_page(fid)
    assert pool.get_page_num(reused) == page_num
    assert pool.get_page_count(fid) == 2


def test_same_page_shares_frame(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    page_num = pool.get_page_num(handle)
    again = pool.get_this_page(fid, page_num)
    assert again.frame is handle.frame
    assert handle.frame.pin_count == 2


def test_eviction_writes_back_dirty_pages(path):
    pool = DiskBufferPool(buffer_size=3)
    pool.create_file(path)
    fid = pool.open_file(path)
    numbers = []
    for marker in (b"a", b"b", b"c", b"d"):
        handle = pool.allocate_page(fid)
        numbers.append(pool.get_page_num(handle))
        pool.get_data(handle)[0:1] = marker
        pool.mark_dirty(handle)
        pool.unpin_page(handle)
    for page_num, marker in zip(numbers, (b"a", b"b", b"c", b"d")):
        handle = pool.get_this_page(fid, page_num)
        assert bytes(pool.get_data(handle)[0:1]) == marker
        pool.unpin_page(handle)


def test_all_frames_pinned(path):
    pool = DiskBufferPool(buffer_size=2)
    pool.create_file(path)
    fid = pool.open_file(path)
    pool.allocate_page(fid)
    with pytest.raises(BufferPoolError) as err:
        pool.allocate_page(fid)
    assert err.value.reason == "NOMEM"
    assert pool.get_page_count(fid) == 2


def test_flush_all_pages_keeps_file_usable(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    pool.get_data(handle)[:3] = b"xyz"
    pool.mark_dirty(handle)
    pool.unpin_page(handle)
    pool.flush_all_pages(fid)
    with open(path, "rb") as fh:
        raw = fh.read()
    assert len(raw) == 2 * PAGE_SIZE
    assert raw[PAGE_SIZE + 4:PAGE_SIZE + 7] == b"xyz"
    assert pool.get_page_num(pool.allocate_page(fid)) == 2


def test_force_page_releases_frame(pool, path):
    pool.create_file(path)
    fid = pool.open_file(path)
    handle = pool.allocate_page(fid)
    page_num = pool.get_page_num(handle)
    with pytest.raises(BufferPoolError) as err:
        pool.force_page(fid, page_num)
    assert err.value.reason == "BUFFERPOOL_PAGE_PINNED"
    pool.get_data(handle)[:2] = b"ok"
    pool.mark_dirty(handle)
    pool.unpin_page(handle)
    pool.force_page(fid, page_num)
    fresh = pool.get_this_page(fid, page_num)
    assert bytes(pool.get_data(fresh)[:2]) == b"ok"


def test_global_pool_is_shared(path):
    first = global_disk_buffer_pool()
    first.create_file(path)
    fid = first.open_file(path)
    try:
        second = global_disk_buffer_pool()
        assert second.open_file(path) == fid
        assert second.get_page_count(fid) == 1
    finally:
        first.close_file(fid)