"""Scripted collaborators used to drive growth through exact scenarios.

The classes live at module level so trees holding them can be pickled.
"""

import numpy as np

from patchtree import Leaf, PatchSample, Sample, Split, SplitGenerator


class ValueSample(Sample):
    """Sample whose test value is fixed, whatever the split."""

    def __init__(self, value):
        self.value = value

    def __repr__(self):
        return f"ValueSample({self.value})"

    def scalar_test(self, split):
        return self.value

    @classmethod
    def summarize(cls, samples):
        return tuple(sorted(s.value for s in samples))


def make_value_samples(n_samples):
    return [ValueSample(float(v)) for v in range(n_samples)]


class FakeClock:
    """Clock advanced by hand."""

    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FixedCutSplitGenerator(SplitGenerator):
    """Always cuts the batch at the same fraction of its sorted values.

    Every call is recorded as ``(n_samples, count, patch_size, depth,
    split_mode)``. An optional clock is advanced by ``step`` seconds per
    call, and the call number ``fail_on_call`` raises RuntimeError to
    simulate an interrupted run.
    """

    def __init__(self, fraction=0.5, info=1.0, clock=None, step=0.0,
                 fail_on_call=None):
        self.fraction = fraction
        self.info = info
        self.clock = clock
        self.step = step
        self.fail_on_call = fail_on_call
        self.calls = []

    def generate(self, samples, count, rng, patch_size, depth, split_mode):
        self.calls.append((len(samples), count, patch_size, depth, split_mode))
        if self.fail_on_call is not None and len(self.calls) >= self.fail_on_call:
            raise RuntimeError("interrupted")
        if self.clock is not None:
            self.clock.advance(self.step)

        values = sorted(s.value for s in samples)
        cut = min(int(len(values) * self.fraction), len(values) - 1)
        threshold = values[cut]
        return [Split(threshold=threshold, info=self.info, test=('cut', depth))
                for _ in range(count)]


class NoSplitGenerator(SplitGenerator):
    """Produces only unusable candidates."""

    def generate(self, samples, count, rng, patch_size, depth, split_mode):
        return [Split() for _ in range(count)]


class ListSplitGenerator(SplitGenerator):
    """Returns the same candidate list at every node."""

    def __init__(self, splits):
        self.splits = splits

    def generate(self, samples, count, rng, patch_size, depth, split_mode):
        return list(self.splits)


def make_patch_samples(n_per_class=20, size=16, noise=0.05, seed=0):
    """Two classes of patches: bright left half vs bright right half."""
    rng = np.random.RandomState(seed)
    samples = []
    for label in (0, 1):
        for _ in range(n_per_class):
            patch = np.zeros((size, size), dtype=np.float32)
            if label == 0:
                patch[:, :size // 2] = 1.0
            else:
                patch[:, size // 2:] = 1.0
            patch += rng.normal(scale=noise, size=patch.shape).astype(np.float32)
            offset = rng.normal(loc=2.0 * label, scale=0.1, size=2)
            samples.append(PatchSample(patch, label=label, offset=offset))
    return samples


def assert_same_payload(a, b):
    if isinstance(a, Leaf):
        assert isinstance(b, Leaf)
        np.testing.assert_array_equal(a.class_counts, b.class_counts)
        np.testing.assert_allclose(a.class_probs, b.class_probs)
        if a.offset_mean is None:
            assert b.offset_mean is None
        else:
            np.testing.assert_allclose(a.offset_mean, b.offset_mean)
            np.testing.assert_allclose(a.offset_var, b.offset_var)
    else:
        assert a == b


def assert_same_nodes(node_a, node_b):
    """Recursively compare two node graphs."""
    stack = [(node_a, node_b)]
    while stack:
        a, b = stack.pop()
        assert a.depth == b.depth
        assert a.state == b.state
        assert a.split == b.split
        if a.is_leaf():
            assert_same_payload(a.leaf, b.leaf)
        if a.is_internal():
            stack.append((a.left, b.left))
            stack.append((a.right, b.right))
