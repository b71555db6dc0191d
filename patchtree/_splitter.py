# _splitter.py
import numpy as np

from ._criterion import ClassEntropyCriterion
from ._partitioner import (
    FEATURE_THRESHOLD, distinct_cut_positions, find_min_max,
    partition_samples, sort_samples_by_value
)

INFINITY = np.inf

# Split modes below this value draw a random threshold, the others search
# for the best cut of the batch.
RANDOM_THRESHOLD_MODES = 50


class Split:
    """Parameters of one binary test plus its quality scores.

    ``test`` holds the sample-defined test parameters evaluated by
    `Sample.scalar_test`. A default-constructed Split is the selection
    sentinel: it is worse than any real candidate.
    """

    __slots__ = ('threshold', 'margin', 'info', 'oob', 'test')

    def __init__(self, threshold=0.0, margin=0.0, info=-INFINITY,
                 oob=INFINITY, test=None):
        object.__setattr__(self, 'threshold', float(threshold))
        object.__setattr__(self, 'margin', float(margin))
        object.__setattr__(self, 'info', float(info))
        object.__setattr__(self, 'oob', float(oob))
        object.__setattr__(self, 'test', test)

    def __setattr__(self, name, value):
        raise AttributeError("Split is immutable")

    def __reduce__(self):
        return (type(self), (self.threshold, self.margin, self.info,
                             self.oob, self.test))

    def __eq__(self, other):
        if not isinstance(other, Split):
            return NotImplemented
        return self.__reduce__()[1] == other.__reduce__()[1]

    def __hash__(self):
        return hash(self.__reduce__()[1])

    def __repr__(self):
        return (f"Split(threshold={self.threshold:.4f}, margin={self.margin:.4f}, "
                f"info={self.info:.4f}, oob={self.oob:.4f}, test={self.test})")

    def is_valid(self):
        return self.info != -INFINITY


class SplitGenerator:
    """Abstract split generator.

    Split generators are called by the tree to propose candidate tests for
    a node and to route a batch of samples through the chosen test.
    """

    def generate(self, samples, count, rng, patch_size, depth, split_mode):
        """Return ``count`` candidate splits for ``samples``.

        Parameters
        ----------
        samples : list of Sample
            Samples that reached the node.
        count : int
            Number of candidates to produce.
        rng : numpy.random.RandomState
            Random stream of the tree. Consumed, never copied.
        patch_size : int
            Side of the square patch the tests may look at.
        depth : int
            Depth of the node being split.
        split_mode : int
            Value drawn uniformly from [0, 100] by the tree, used to
            alternate between generation strategies.
        """
        raise NotImplementedError("Subclasses must implement generate")

    def route(self, samples, val_set, threshold, margin):
        """Partition ``samples`` into the left and right subsets.

        ``val_set`` holds the ``(value, index)`` records of the batch sorted
        by test value. The default rule sends values strictly below
        ``threshold`` to the left; ``margin`` does not move samples.
        """
        return partition_samples(samples, val_set, threshold)


class PatchSplitGenerator(SplitGenerator):
    """Random two-rectangle patch tests scored with a criterion.

    Each candidate compares the mean intensity of two random rectangles in a
    random channel. Depending on the split mode the threshold is either
    drawn uniformly between the extreme values (extremely randomized trees)
    or placed at the best cut of the batch.

    Parameters
    ----------
    criterion : Criterion, default=ClassEntropyCriterion()
        Measure used to compute the information gain of a cut.
    n_channels : int, default=1
        Number of feature channels of the patches.
    max_rect_ratio : float, default=0.5
        Largest rectangle side as a fraction of the patch side.
    """

    def __init__(self, criterion=None, n_channels=1, max_rect_ratio=0.5):
        if n_channels < 1:
            raise ValueError(f"n_channels must be >= 1, got {n_channels!r}")
        if not 0.0 < max_rect_ratio <= 1.0:
            raise ValueError(f"max_rect_ratio must be in (0, 1], got {max_rect_ratio!r}")

        self.criterion = criterion if criterion is not None else ClassEntropyCriterion()
        self.n_channels = n_channels
        self.max_rect_ratio = max_rect_ratio

    def generate(self, samples, count, rng, patch_size, depth, split_mode):
        if not samples:
            return [Split() for _ in range(count)]

        height, width = samples[0].patch.shape[1:]
        height = min(height, patch_size)
        width = min(width, patch_size)

        y = self.criterion.targets(samples)
        random_threshold = split_mode < RANDOM_THRESHOLD_MODES

        splits = []
        for _ in range(count):
            test = self._draw_test(rng, width, height)
            splits.append(self._score_test(samples, y, test, rng, random_threshold))
        return splits

    def _draw_test(self, rng, width, height):
        """Draw a channel and two rectangles inside a width x height patch."""
        channel = int(rng.randint(self.n_channels))
        max_w = max(1, int(width * self.max_rect_ratio))
        max_h = max(1, int(height * self.max_rect_ratio))

        rects = []
        for _ in range(2):
            w = int(rng.randint(1, max_w + 1))
            h = int(rng.randint(1, max_h + 1))
            x = int(rng.randint(0, width - w + 1))
            y = int(rng.randint(0, height - h + 1))
            rects.append((x, y, w, h))
        return (channel, rects[0], rects[1])

    def _score_test(self, samples, y, test, rng, random_threshold):
        candidate = Split(test=test)
        val_set = sort_samples_by_value([s.scalar_test(candidate) for s in samples])
        sorted_values = val_set['value']

        min_value, max_value = find_min_max(val_set)
        if max_value <= min_value + FEATURE_THRESHOLD:
            # Constant test on this batch
            return candidate

        gains, children = self.criterion.split_gains(y[val_set['index']])

        if random_threshold:
            threshold = rng.uniform(min_value, max_value)
            pos = int(np.searchsorted(sorted_values, threshold, side='left'))
        else:
            gains = np.where(distinct_cut_positions(sorted_values), gains, -INFINITY)
            pos = int(np.argmax(gains))
            threshold = None

        info = gains[pos]
        if not np.isfinite(info):
            return candidate

        if threshold is None:
            # sum of halves is used to avoid infinite value
            threshold = sorted_values[pos - 1] / 2.0 + sorted_values[pos] / 2.0
        margin = min(threshold - sorted_values[pos - 1], sorted_values[pos] - threshold)

        return Split(threshold=threshold, margin=margin, info=info,
                     oob=children[pos], test=test)
