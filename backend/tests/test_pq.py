"""Tests for PQ codebook training, validation and serialization."""

import numpy as np
import pytest

from pq import CodebookError, PQCodebook, subspace_bounds, train_pq_codebook


def _data(n=50, dim=16, seed=0):
    return np.random.default_rng(seed).normal(size=(n, dim))


# ═══════════════════════════════════════════════════════════════════════════
#  Subspace split
# ═══════════════════════════════════════════════════════════════════════════

class TestSubspaceBounds:
    def test_even_split(self):
        assert subspace_bounds(16, 4) == [(0, 4), (4, 8), (8, 12), (12, 16)]

    def test_last_subspace_absorbs_remainder(self):
        assert subspace_bounds(10, 4) == [(0, 2), (2, 4), (4, 6), (6, 10)]

    def test_covers_every_dimension(self):
        bounds = subspace_bounds(387, 8)
        assert bounds[0][0] == 0 and bounds[-1][1] == 387
        assert all(a[1] == b[0] for a, b in zip(bounds, bounds[1:]))

    def test_dimension_smaller_than_subspaces_raises(self):
        with pytest.raises(ValueError):
            subspace_bounds(4, 8)

    def test_zero_subspaces_raises(self):
        with pytest.raises(ValueError):
            subspace_bounds(4, 0)


# ═══════════════════════════════════════════════════════════════════════════
#  Training
# ═══════════════════════════════════════════════════════════════════════════

class TestTrain:
    def test_shapes(self):
        cb = train_pq_codebook(_data(), num_subspaces=4, num_centroids=8)
        assert cb.num_subspaces == 4
        assert all(t.shape == (8, 4) for t in cb.centroids)
        assert cb.assignments.shape == (50, 4)
        cb.validate(16, 50)

    def test_centroids_capped_by_vector_count(self):
        cb = train_pq_codebook(_data(n=5), num_subspaces=4, num_centroids=256)
        assert all(t.shape[0] == 5 for t in cb.centroids)

    def test_uneven_dimension(self):
        cb = train_pq_codebook(_data(n=20, dim=10), num_subspaces=4, num_centroids=4)
        assert [t.shape[1] for t in cb.centroids] == [2, 2, 2, 4]
        assert cb.dimension == 10

    def test_deterministic(self):
        a = train_pq_codebook(_data(), num_subspaces=4, num_centroids=8)
        b = train_pq_codebook(_data(), num_subspaces=4, num_centroids=8)
        np.testing.assert_array_equal(a.assignments, b.assignments)

    def test_zero_vectors_raises(self):
        with pytest.raises(ValueError):
            train_pq_codebook(np.empty((0, 16)), num_subspaces=4)

    def test_dimension_below_subspaces_raises(self):
        with pytest.raises(ValueError):
            train_pq_codebook(_data(dim=4), num_subspaces=8)

    def test_encode_width_mismatch(self):
        cb = train_pq_codebook(_data(), num_subspaces=4, num_centroids=8)
        with pytest.raises(CodebookError):
            cb.encode(np.zeros((2, 12)))

    def test_distance_table_zero_at_own_centroid(self):
        cb = train_pq_codebook(_data(n=6), num_subspaces=4, num_centroids=256)
        query = np.concatenate([t[2] for t in cb.centroids])
        tables = cb.distance_table(query)
        assert all(table[2] == pytest.approx(0.0) for table in tables)


# ═══════════════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestValidate:
    @pytest.fixture
    def codebook(self):
        return train_pq_codebook(_data(n=30), num_subspaces=4, num_centroids=8)

    def test_fewer_rows_than_vectors_is_fine(self, codebook):
        codebook.validate(16, 40)

    def test_more_rows_than_vectors(self, codebook):
        with pytest.raises(CodebookError):
            codebook.validate(16, 10)

    def test_wrong_dimension(self, codebook):
        with pytest.raises(CodebookError):
            codebook.validate(20, 30)

    def test_index_out_of_range(self, codebook):
        codebook.assignments[0, 1] = 99
        with pytest.raises(CodebookError):
            codebook.validate(16, 30)

    def test_missing_tables(self):
        with pytest.raises(CodebookError):
            PQCodebook(centroids=[]).validate(16, 1)

    def test_wrong_assignment_width(self, codebook):
        codebook.assignments = codebook.assignments[:, :3]
        with pytest.raises(CodebookError):
            codebook.validate(16, 30)


# ═══════════════════════════════════════════════════════════════════════════
#  Serialization
# ═══════════════════════════════════════════════════════════════════════════

class TestSerialization:
    def test_round_trip(self):
        cb = train_pq_codebook(_data(n=12, dim=10), num_subspaces=4, num_centroids=4)
        back = PQCodebook.from_dict(cb.to_dict())
        assert len(back.centroids) == 4
        for a, b in zip(cb.centroids, back.centroids):
            np.testing.assert_allclose(a, b)
        np.testing.assert_array_equal(cb.assignments, back.assignments)
        back.validate(10, 12)

    def test_garbage_raises_codebook_error(self):
        with pytest.raises(CodebookError):
            PQCodebook.from_dict({"centroids": "nope"})
        with pytest.raises(CodebookError):
            PQCodebook.from_dict({})
