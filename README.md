# minibase

Storage-layer pieces for a small relational database engine. It is pure Python
and has no third-party dependencies.

## What is inside

- `minibase.frames` holds the in-memory structures of the page cache.
  - `Page` is a 4096-byte page: a page number followed by the data area. It
    has `to_bytes()`, `from_bytes()` and `clear()`.
  - `Frame` is a buffer slot. It holds the dirty flag, the pin count, the
    access time, the file descriptor and the page.
  - `PageHandle` is what the pool hands out for a pinned frame.
  - `FileHandle` is an open paged file. Through its header page it reads and
    writes `page_count`, `allocated_pages` and the allocation bitmap.
  - `FrameManager` has a fixed set of frames. `alloc()` returns a free frame
    or recycles the least recently used one. `get()` finds the frame that
    holds a page and moves it to the front.
- `minibase.buffer_pool` provides `DiskBufferPool`, a paged file manager with
  a fixed number of cached frames (50 by default).
  - Page 0 of each file is a header. It holds the page count, the number of
    allocated pages and an allocation bitmap.
  - When every frame is taken, the pool evicts the unpinned frame with the
    oldest access time. A dirty frame is written back before it is reused.
  - Operations:
    - files: `create_file`, `open_file`, `close_file`
    - pages: `get_this_page`, `allocate_page`, `dispose_page`
    - writing: `force_page`, `flush_all_pages`
    - handles: `mark_dirty`, `unpin_page`, `get_page_num`, `get_data`
    - information: `get_page_count`
  - Failures raise `BufferPoolError`. Its `reason` attribute names the failure,
    for example `"BUFFERPOOL_INVALID_PAGE_NUM"` or `"BUFFERPOOL_PAGE_PINNED"`.
  - `global_disk_buffer_pool()` returns one shared instance for the whole
    process.
- `minibase.trx` provides `Trx`, a transaction with no concurrency control.
  - It logs insert and delete `Operation`s on `Record`s, per table and keyed
    by `RID`.
  - Each record carries a 32-bit system field. The field holds the id of the
    transaction that touched the record, and its top bit is a deletion flag.
  - `is_visible()` decides whether the transaction may see a record.
  - `commit()` and `rollback()` call back into each table and then reset the
    transaction.
  - A table passed to `Trx` must provide a `trx_field_offset` attribute and the
    methods `commit_insert`, `commit_delete`, `rollback_insert` and
    `rollback_delete`. Each of these methods takes the transaction and a `RID`.
  - Misuse raises `TrxError`. An example of misuse is logging a second
    operation on the same record.
- `minibase.dates` checks dates stored as `YYYYMMDD` integers.
  - The functions are `is_leap_year`, `is_date` and `is_valid_date`.
  - Years before 1970 are rejected.

## Installing

```
pip install .
```

## Example

```python
from minibase.buffer_pool import DiskBufferPool
from minibase.dates import is_valid_date

pool = DiskBufferPool()
pool.create_file("table.data")
file_id = pool.open_file("table.data")

handle = pool.allocate_page(file_id)
data = pool.get_data(handle)
data[:5] = b"hello"
pool.mark_dirty(handle)
pool.unpin_page(handle)

print(pool.get_page_count(file_id))  # 2: the header page and the new page
pool.close_file(file_id)

print(is_valid_date(20240229))  # True
print(is_valid_date(20230229))  # False
```

## What it does not do

This package provides only the building blocks named above. It does not
include any of the following:

- tables or a record layout within pages
- indexes
- a catalogue of databases
- an SQL parser
- a server or a command-line tool

`Trx` works with any table object that meets the interface described above,
but the package does not provide such a table.

## Running the tests

```
pip install ".[test]"
pytest
```