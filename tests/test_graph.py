# -*- coding: utf-8 -*-
"""Edge list construction from a host neighbor list."""

import numpy as np
import pytest

from phin.errors import ConfigurationError, GraphConstructionError
from phin.host import NEIGHMASK, HostAtoms, HostBox, NeighborList
from phin.indexing import TagIndex
from phin.io.buffers import BufferArena
from phin.io.graph_fns import build_edge_list, cell_from_box, edge_vectors
from phin.torch.calculator import build_host_frame

from utils import two_atom_frame


def _dense_pos(atoms, tag_index):
    return atoms.x[tag_index.dense_to_local]


def _edges(atoms, nlist, box, cutoff, arena=None):
    tag_index = TagIndex.build(nlist.ilist, atoms.tag, atoms.nlocal)
    cell = cell_from_box(box)
    pos = _dense_pos(atoms, tag_index)
    edges = build_edge_list(
        x=atoms.x, pos=pos, nlist=nlist, tag_index=tag_index,
        cell=cell, cutoff=cutoff, arena=arena,
    )
    return edges, pos, cell, tag_index


def test_cell_from_box_triclinic():
    box = HostBox(boxlo=(1.0, 2.0, 3.0), boxhi=(11.0, 12.0, 13.0), xy=2.0, xz=-1.0, yz=0.5)
    cell = cell_from_box(box)
    expected = np.array([[10.0, 0.0, 0.0], [2.0, 10.0, 0.0], [-1.0, 0.5, 10.0]])
    assert np.allclose(cell.matrix, expected)
    assert np.allclose(cell.inverse_transpose, np.linalg.inv(expected).T)
    assert cell.volume == pytest.approx(1000.0)

    frac = np.array([[1.0, -1.0, 2.0], [0.5, 0.0, 0.25]])
    assert np.allclose(cell.fractional(cell.cartesian(frac)), frac)


@pytest.mark.parametrize(
    "lo, hi",
    [((0.0, 0.0, 0.0), (10.0, 0.0, 10.0)), ((0.0, 0.0, 0.0), (10.0, 10.0, np.nan))],
)
def test_cell_from_box_rejects_bad_lengths(lo, hi):
    with pytest.raises(ConfigurationError):
        cell_from_box(HostBox(boxlo=lo, boxhi=hi))


def test_two_atoms_wrapped_neighbor():
    """The 1 A periodic neighbor is found, not the 9 A direct one."""
    atoms, nlist, box = two_atom_frame()
    edges, pos, cell, _ = _edges(atoms, nlist, box, cutoff=5.0)

    assert edges.n_candidates == 4
    assert edges.n_edges == 2
    table = {
        (int(s), int(d)): tuple(sh)
        for s, d, sh in zip(edges.edge_index[0], edges.edge_index[1], edges.shifts)
    }
    assert table == {(0, 1): (-1.0, 0.0, 0.0), (1, 0): (1.0, 0.0, 0.0)}

    vec = edge_vectors(pos, edges.edge_index, edges.shifts, cell.matrix)
    assert np.allclose(np.linalg.norm(vec, axis=1), 1.0)


def test_triclinic_shift_reconstruction():
    """shift @ cell + pos[dst] lands on the ghost the host placed."""
    rng = np.random.default_rng(3)
    box = HostBox(boxlo=(0.0, 0.0, 0.0), boxhi=(10.0, 10.0, 10.0), xy=2.0)
    cell = cell_from_box(box).matrix
    frac = rng.uniform(0.0, 1.0, size=(6, 3))
    local = frac @ cell

    # 3x3x3 block of images, every image of every atom is a neighbor
    x, tag = [local], [np.arange(1, 7)]
    for s in np.ndindex(3, 3, 3):
        s = np.array(s) - 1
        if np.any(s != 0):
            x.append(local + s @ cell)
            tag.append(np.arange(1, 7))
    x = np.concatenate(x)
    tag = np.concatenate(tag)
    atoms = HostAtoms(x=x, f=np.zeros_like(x), tag=tag, type=np.ones_like(tag),
                      nlocal=6, nghost=len(x) - 6)
    firstneigh = [np.array([j for j in range(len(x)) if j != i]) for i in range(6)]
    nlist = NeighborList(ilist=np.arange(6), firstneigh=firstneigh)

    # larger than the diagonal of the orthogonal 10 A box
    cutoff = 18.0
    edges, pos, cell_geo, _ = _edges(atoms, nlist, box, cutoff)

    assert np.array_equal(edges.shifts, np.rint(edges.shifts))
    d = x[np.concatenate(firstneigh)] - np.repeat(local, len(x) - 1, axis=0)
    assert edges.n_edges == int(np.count_nonzero(np.einsum("ij,ij->i", d, d) < cutoff ** 2))

    i_loc, j_loc = nlist.flatten()
    keep = np.einsum("ij,ij->i", x[i_loc] - x[j_loc], x[i_loc] - x[j_loc]) < cutoff ** 2
    reconstructed = pos[edges.edge_index[1]] + edges.shifts @ cell_geo.matrix
    assert np.allclose(reconstructed, x[j_loc[keep]])
    assert np.any(edges.shifts[:, 1] != 0)


def test_edges_match_brute_force():
    """Every pair within the cutoff appears exactly once per direction."""
    from ase.build import bulk

    atoms = bulk("Cu", "fcc", a=3.6, cubic=True).repeat((2, 2, 2))
    atoms.rattle(0.05, seed=1)
    atoms.set_cell(atoms.cell.array + np.array([[0, 0, 0], [0.6, 0, 0], [0.3, -0.2, 0]]), scale_atoms=True)
    cutoff = 3.0
    frame = build_host_frame(atoms, ["Cu"], cutoff + 0.5)
    edges, pos, cell, _ = _edges(frame.atoms, frame.nlist, frame.box, cutoff)

    found = set()
    host_cell = cell.matrix
    for (s, d), sh in zip(edges.edge_index.T, edges.shifts.astype(int)):
        found.add((int(s), int(d), tuple(sh)))
    assert len(found) == edges.n_edges

    expected = set()
    n = len(pos)
    for s in np.ndindex(5, 5, 5):
        s = np.array(s) - 2
        t = s @ host_cell
        for a in range(n):
            for b in range(n):
                if a == b and not s.any():
                    continue
                if np.linalg.norm(pos[b] + t - pos[a]) < cutoff:
                    expected.add((a, b, tuple(s)))
    assert found == expected


def test_cutoff_is_strict():
    atoms, nlist, box = two_atom_frame()
    with pytest.raises(GraphConstructionError):
        _edges(atoms, nlist, box, cutoff=1.0)
    edges, _, _, _ = _edges(atoms, nlist, box, cutoff=1.0 + 1e-9)
    assert edges.n_edges == 2


def test_zero_edges_rejected():
    atoms, nlist, box = two_atom_frame()
    with pytest.raises(GraphConstructionError) as err:
        _edges(atoms, nlist, box, cutoff=0.5)
    assert err.value.n_candidates == 4
    assert err.value.cutoff == 0.5


def test_special_bits_are_masked():
    atoms, nlist, box = two_atom_frame()
    flagged = NeighborList(
        ilist=nlist.ilist,
        firstneigh=[np.asarray(nb) | (1 << 30) for nb in nlist.firstneigh],
    )
    plain, _, _, _ = _edges(atoms, nlist, box, cutoff=5.0)
    masked, _, _, _ = _edges(atoms, flagged, box, cutoff=5.0)
    assert np.array_equal(plain.edge_index, masked.edge_index)
    assert np.array_equal(plain.shifts, masked.shifts)
    assert (np.asarray(flagged.firstneigh[0]) & NEIGHMASK).tolist() == [1, 2]


def test_ghost_with_foreign_tag():
    atoms, nlist, box = two_atom_frame()
    atoms.tag[2] = 7
    with pytest.raises(ConfigurationError):
        _edges(atoms, nlist, box, cutoff=5.0)


def test_outputs_do_not_alias_scratch():
    arena = BufferArena()
    atoms, nlist, box = two_atom_frame()
    first, _, _, _ = _edges(atoms, nlist, box, cutoff=5.0, arena=arena)
    saved = first.edge_index.copy(), first.shifts.copy()

    atoms.x[2] = [-1.5, 0.0, 0.0]
    atoms.x[3] = [10.5, 0.0, 0.0]
    atoms.x[1] = [8.5, 0.0, 0.0]
    _edges(atoms, NeighborList(nlist.ilist, [np.array([2, 1]), np.array([3, 0])]), box, 5.0, arena)
    assert np.array_equal(first.edge_index, saved[0])
    assert np.array_equal(first.shifts, saved[1])
