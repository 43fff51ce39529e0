"""Shared fixtures: a small UID table and the rows of two CPU series and one memory series."""

import pytest

from tests.helpers.fakes import (
    BASE, CPU, HOST, MEM, WEB01, WEB02, FakeStore, FakeUidResolver, int_row,
)


@pytest.fixture
def uids():
    return FakeUidResolver(
        metrics={"sys.cpu.user": CPU, "sys.mem.free": MEM},
        tagk={"host": HOST},
        tagv={"web01": WEB01, "web02": WEB02},
    )


@pytest.fixture
def cpu_rows():
    return [
        int_row(CPU, BASE, (HOST, WEB01), ((0, 42),)),
        int_row(CPU, BASE + 3600, (HOST, WEB01), ((0, 1), (10, 2))),
        int_row(CPU, BASE, (HOST, WEB02), ((5, 7),)),
        int_row(MEM, BASE, (HOST, WEB01), ((0, 3),)),
    ]


@pytest.fixture
def store(cpu_rows):
    return FakeStore(cpu_rows, page_size=2)
