import asyncio
import io
import itertools
import logging

import pytest

from seriesdump.application.query import parse_query
from seriesdump.application.use_cases import dump_series
from seriesdump.domain.decoding import build_qualifier
from seriesdump.domain.errors import MalformedColumnError
from seriesdump.domain.models import Column, Row
from tests.helpers.fakes import BASE, CPU, HOST, MEM, WEB01, FakeStore, int_row, row_key


class CountingOut(io.StringIO):
    flushes = 0

    def flush(self):
        self.flushes += 1
        super().flush()


def run(store, uids, *args, **kw):
    async def go():
        queries = await parse_query(list(args), uids)
        return await dump_series(store=store, uids=uids, queries=queries, **kw)
    return asyncio.run(go())


def test_import_dump(store, uids):
    out = CountingOut()
    n = run(store, uids, "0", "sum", "sys.cpu.user", import_format=True, out=out)
    assert n == 3
    assert out.getvalue().splitlines() == [
        "sys.cpu.user 1356998400 42 host=web01",
        "sys.cpu.user 1356998405 7 host=web02",
        "sys.cpu.user 1357002000 1 host=web01",
        "sys.cpu.user 1357002010 2 host=web01",
    ]
    assert out.flushes == 3
    assert store.deleted == []


def test_tag_filter_limits_rows(store, uids):
    out = io.StringIO()
    assert run(store, uids, "0", "sum", "sys.cpu.user", "host=web02", import_format=True, out=out) == 1
    assert out.getvalue() == "sys.cpu.user 1356998405 7 host=web02\n"


def test_time_range_limits_rows(store, uids):
    # the scan stops an hour and a second past the end
    out = io.StringIO()
    assert run(store, uids, "0", str(BASE - 3600), "sum", "sys.cpu.user", "host=web01",
               import_format=True, out=out) == 1
    assert out.getvalue() == "sys.cpu.user 1356998400 42 host=web01\n"


def test_delete_touches_every_scanned_row(store, uids, cpu_rows):
    n = run(store, uids, "0", "sum", "sys.cpu.user", delete=True, quiet=True)
    assert n == 3
    assert sorted(store.deleted) == sorted(r.key for r in cpu_rows if r.key[:3] == CPU)
    assert list(store.rows) == [row_key(MEM, BASE, HOST, WEB01)]
    assert all(c.closed for c in store.cursors)


def test_quiet_writes_nothing(store, uids):
    out = io.StringIO()
    assert run(store, uids, "0", "sum", "sys.cpu.user", quiet=True, out=out) == 3
    assert out.getvalue() == ""


def test_several_queries_add_up(store, uids):
    assert run(store, uids, "0", "sum", "sys.cpu.user", "sum", "sys.mem.free", quiet=True) == 4
    assert len(store.cursors) == 2


def test_progress_lines_while_deleting(uids, caplog):
    store = FakeStore([int_row(CPU, BASE + i * 3600, (HOST, WEB01)) for i in range(4)])
    caplog.set_level(logging.INFO, logger="seriesdump.application.use_cases")
    clock = itertools.count(0, 45).__next__
    run(store, uids, "0", "sum", "sys.cpu.user", delete=True, quiet=True, clock=clock)
    lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("Still")]
    assert lines == [
        "Still (1) deleting sys.cpu.user rows touched = 2",
        "Still (2) deleting sys.cpu.user rows touched = 4",
    ]


def test_malformed_column_stops_the_run(uids):
    bad = Row(row_key(CPU, BASE + 3600, HOST, WEB01),
              (Column(build_qualifier(0, 0) + build_qualifier(1, 0), b"\x01\x02\x03"),))
    first = int_row(CPU, BASE, (HOST, WEB01))
    last = int_row(CPU, BASE + 7200, (HOST, WEB01))
    store = FakeStore([first, bad, last], page_size=10)
    out = io.StringIO()
    with pytest.raises(MalformedColumnError):
        run(store, uids, "0", "sum", "sys.cpu.user", delete=True, import_format=True, out=out)
    assert out.getvalue() == "sys.cpu.user 1356998400 42 host=web01\n"
    assert store.deleted == [first.key]
    assert store.cursors[0].closed
