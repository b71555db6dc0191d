"""Tests for patch samples, leaf statistics and training parameters."""

import numpy as np
import pytest

from patchtree import ForestParam, Leaf, PatchSample, Split


class TestPatchSample:
    """Tests for the rectangle difference test and leaf summaries."""

    def test_two_dimensional_patch_gets_one_channel(self):
        sample = PatchSample(np.zeros((4, 5)))

        assert sample.patch.shape == (1, 4, 5)
        assert sample.n_channels == 1

    def test_rejects_bad_shape(self):
        with pytest.raises(ValueError, match="2D or 3D"):
            PatchSample(np.zeros(4))

    def test_scalar_test_is_rectangle_mean_difference(self):
        patch = np.zeros((2, 4, 4))
        patch[1, :, :2] = 3.0
        patch[1, :, 2:] = 1.0
        sample = PatchSample(patch)

        split = Split(test=(1, (0, 0, 2, 4), (2, 0, 2, 2)))

        assert sample.scalar_test(split) == pytest.approx(2.0)
        assert sample.scalar_test(split) == sample.scalar_test(split)

    def test_summarize(self):
        samples = [
            PatchSample(np.zeros((2, 2)), label=0, offset=[0.0, 1.0]),
            PatchSample(np.zeros((2, 2)), label=2, offset=[2.0, 3.0]),
            PatchSample(np.zeros((2, 2)), label=2, offset=[4.0, 5.0]),
        ]

        leaf = PatchSample.summarize(samples)

        assert leaf.n_samples == 3
        np.testing.assert_array_equal(leaf.class_counts, [1, 0, 2])
        np.testing.assert_allclose(leaf.class_probs, [1 / 3, 0.0, 2 / 3])
        np.testing.assert_allclose(leaf.offset_mean, [2.0, 3.0])
        np.testing.assert_allclose(leaf.offset_var, [8 / 3, 8 / 3])

    def test_summarize_empty_batch(self):
        leaf = PatchSample.summarize([])

        assert leaf.n_samples == 0
        np.testing.assert_array_equal(leaf.class_probs, [0.0])
        assert leaf.offset_mean is None

    def test_leaf_repr(self):
        assert repr(Leaf([1, 3])) == "Leaf(samples=4, class_probs=[0.25, 0.75])"


class TestForestParam:
    """Tests for the training parameter record."""

    def test_defaults(self):
        param = ForestParam()

        assert param.max_depth == 15
        assert param.min_patches == 20
        assert param.ntests == 2000
        assert param.get_patch_size() == 25

    def test_patch_size_is_rounded(self):
        assert ForestParam(face_size=90, patch_size_ratio=0.25).get_patch_size() == 22

    @pytest.mark.parametrize("kwargs", [
        {'max_depth': -1},
        {'max_depth': 2.5},
        {'min_patches': -3},
        {'ntests': 0},
        {'face_size': 2, 'patch_size_ratio': 0.1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ForestParam(**kwargs)

    def test_invalid_message_names_parameter(self):
        with pytest.raises(ValueError, match="min_patches must be a non-negative integer, got -3"):
            ForestParam(min_patches=-3)

    def test_params_round_trip(self):
        param = ForestParam(max_depth=4, features=[0, 2], tree_path='trees/')

        assert ForestParam(**param.get_params()) == param
        assert ForestParam(max_depth=5) != param
