import numpy as np
import pytest

from dit.sparse import SparseVector, concat_sparse


def test_set_overwrites_existing_index():
    v = SparseVector(dim=5)
    v.set(3, 1.0)
    v.set(1, 2.0)
    v.set(3, 4.0)
    assert v.indices == [3, 1]
    assert v.values == [4.0, 2.0]
    assert v.nnz == 2


def test_dot_skips_indices_past_dense_length():
    v = SparseVector(dim=4, indices=[0, 3], values=[2.0, 5.0])
    assert v.dot([1.0, 1.0]) == pytest.approx(2.0)
    assert v.dot([1.0, 0.0, 0.0, 2.0]) == pytest.approx(12.0)


def test_to_dense_and_norm():
    v = SparseVector(dim=3, indices=[2, 0], values=[4.0, 3.0])
    np.testing.assert_allclose(v.to_dense(), [3.0, 0.0, 4.0])
    assert v.l2_norm() == pytest.approx(5.0)


def test_concat_shifts_indices():
    a = SparseVector(dim=2, indices=[1], values=[1.0])
    b = SparseVector(dim=0)
    c = SparseVector(dim=3, indices=[0, 2], values=[2.0, 3.0])
    out = concat_sparse([a, b, c])
    assert out.dim == 5
    assert out.indices == [1, 2, 4]
    assert out.values == [1.0, 2.0, 3.0]


def test_concat_is_associative():
    a = SparseVector(dim=2, indices=[0], values=[1.0])
    b = SparseVector(dim=3, indices=[1], values=[2.0])
    c = SparseVector(dim=1, indices=[0], values=[3.0])
    left = concat_sparse([concat_sparse([a, b]), c])
    right = concat_sparse([a, concat_sparse([b, c])])
    assert left == right
