# -*- coding: utf-8 -*-
"""Index spaces, type mapping and scratch buffers."""

import logging

import numpy as np
import pytest

from phin.errors import ConfigurationError
from phin.host import HostSettings, NeighborList, check_host_settings
from phin.indexing import TagIndex, dense_to_tag, tag_to_dense
from phin.io.buffers import BufferArena, GrowableBuffer
from phin.type_mapper import TypeMapper


def test_tag_dense_round_trip():
    tags = np.array([1, 5, 3, 2, 4])
    assert np.array_equal(dense_to_tag(tag_to_dense(tags)), tags)
    assert tag_to_dense(1) == 0


def test_tag_index_shuffled_slots():
    # slot -> tag, two ghosts at the end
    tag = np.array([3, 1, 4, 2, 1, 3])
    ilist = np.array([2, 0, 3, 1])
    index = TagIndex.build(ilist, tag, nlocal=4)

    assert index.n == 4
    assert index.dense_to_local.tolist() == [1, 3, 0, 2]
    assert index.dense_of(np.array([4, 5])).tolist() == [0, 2]
    assert index.tag_of(5) == 3
    for dense in range(4):
        assert index.dense_of(index.local(dense)) == dense

    with pytest.raises(ValueError):
        index.dense_to_local[0] = 7


@pytest.mark.parametrize(
    "tag, ilist, nlocal",
    [
        (np.array([1, 1, 3]), np.array([0, 1, 2]), 3),  # duplicate
        (np.array([1, 2, 4]), np.array([0, 1, 2]), 3),  # out of range
        (np.array([0, 1, 2]), np.array([0, 1, 2]), 3),  # tags disabled
        (np.array([1, 2, 3]), np.array([0, 1]), 3),     # partial list
    ],
)
def test_tag_index_rejects(tag, ilist, nlocal):
    with pytest.raises(ConfigurationError):
        TagIndex.build(ilist, tag, nlocal)


def test_host_settings():
    check_host_settings(HostSettings())
    with pytest.raises(ConfigurationError, match="atom IDs"):
        check_host_settings(HostSettings(tag_enable=False))
    with pytest.raises(ConfigurationError, match="newton pair off"):
        check_host_settings(HostSettings(newton_pair=True), owner="Compute style phin")


def test_numneigh():
    nlist = NeighborList(ilist=np.array([1, 0]), firstneigh=[np.array([1, 2, 3]), np.array([0])])
    assert nlist.inum == 2
    assert nlist.numneigh().tolist() == [3, 1]
    i, j = nlist.flatten()
    assert i.tolist() == [1, 0, 0, 0]
    assert j.tolist() == [0, 1, 2, 3]


def test_type_mapper(caplog):
    with caplog.at_level(logging.WARNING, logger="phin"):
        mapper = TypeMapper.from_names(["O", "H", "Ar"], ["H", "O"])
    assert "left unmapped" in caplog.text

    assert mapper.ntypes == 3
    assert mapper.table.tolist() == [-1, 1, 0, -1]
    assert mapper[2] == 0
    assert mapper.covered(1, 2)
    assert not mapper.covered(1, 3)

    flags = mapper.setflag()
    assert flags[1, 2] and flags[1, 1] and flags[2, 2]
    assert not flags[2, 1]
    assert not flags[1, 3] and not flags[3, 3]

    assert mapper.map_types(np.array([2, 1, 1])).tolist() == [0, 1, 1]
    with pytest.raises(ConfigurationError, match="no model type"):
        mapper.map_types(np.array([1, 3]))
    with pytest.raises(ConfigurationError):
        mapper.map_types(np.array([4]))
    with pytest.raises(ValueError):
        mapper.table[0] = 1


def test_growable_buffer():
    buf = GrowableBuffer(np.float64, (3,))
    assert buf.capacity == 0
    v = buf.view(10)
    assert v.shape == (10, 3)
    v[:] = 1.0

    buf.view(12)
    assert buf.capacity == 15
    assert np.all(buf.storage[:10] == 1.0)
    assert buf.n_grow == 2

    buf.view(4)
    assert buf.capacity == 15
    buf.view(100)
    assert buf.capacity == 100
    assert buf.n_grow == 3

    with pytest.raises(ValueError):
        buf.view(-1)


def test_buffer_arena_reuses_storage():
    arena = BufferArena()
    a = arena.view("edges", 8, np.int64)
    b = arena.view("edges", 5, np.int64)
    assert np.shares_memory(a, b)
    assert arena.capacities() == {"edges": 8}
