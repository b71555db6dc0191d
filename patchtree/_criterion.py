# _criterion.py
import numpy as np
from scipy.stats import entropy

INFINITY = np.inf


def _fill_empty(values):
    """Impurity of an empty side is zero."""
    return np.where(np.isfinite(values), values, 0.0)


class Criterion:
    """Interface for split quality measures.

    A criterion scores every cut position of a batch that is already sorted
    by test value. Cut position ``p`` sends ``[:p]`` to the left child and
    ``[p:]`` to the right one.
    """

    def targets(self, samples):
        """Extract the training targets of ``samples`` as an array."""
        raise NotImplementedError()

    def node_impurity(self, y):
        """Return the impurity of a node holding targets ``y``."""
        raise NotImplementedError()

    def children_impurity(self, y):
        """Impurity of the left and right child at every cut position."""
        raise NotImplementedError()

    def split_gains(self, y):
        """Information gain and weighted child impurity for each cut.

        Returns two arrays of length ``n + 1``. Cuts leaving one side
        empty get a gain of ``-inf``.
        """
        n_samples = len(y)
        gains = np.full(n_samples + 1, -INFINITY)
        children = np.full(n_samples + 1, INFINITY)
        if n_samples < 2:
            return gains, children

        impurity = self.node_impurity(y)
        impurity_left, impurity_right = self.children_impurity(y)

        n_left = np.arange(n_samples + 1, dtype=np.float64)
        n_right = n_samples - n_left
        weighted = (n_left * impurity_left + n_right * impurity_right) / n_samples

        children[1:n_samples] = weighted[1:n_samples]
        gains[1:n_samples] = impurity - weighted[1:n_samples]
        return gains, children


class ClassEntropyCriterion(Criterion):
    """Shannon entropy (in bits) of the class labels.

    Parameters
    ----------
    n_classes : int, optional
        Number of classes. Inferred from the largest label when omitted.
    """

    def __init__(self, n_classes=None):
        self.n_classes = n_classes

    def targets(self, samples):
        return np.array([s.label for s in samples], dtype=np.intp)

    def _n_classes(self, y):
        n_classes = self.n_classes or 0
        if len(y):
            n_classes = max(n_classes, int(y.max()) + 1)
        return max(n_classes, 1)

    def node_impurity(self, y):
        counts = np.bincount(y, minlength=self._n_classes(y))
        if counts.sum() == 0:
            return 0.0
        return float(entropy(counts, base=2))

    def children_impurity(self, y):
        n_samples = len(y)
        n_classes = self._n_classes(y)

        one_hot = np.zeros((n_samples, n_classes), dtype=np.float64)
        one_hot[np.arange(n_samples), y] = 1.0

        counts_left = np.zeros((n_samples + 1, n_classes), dtype=np.float64)
        np.cumsum(one_hot, axis=0, out=counts_left[1:])
        counts_right = counts_left[-1] - counts_left

        with np.errstate(divide='ignore', invalid='ignore'):
            impurity_left = entropy(counts_left, base=2, axis=1)
            impurity_right = entropy(counts_right, base=2, axis=1)
        return _fill_empty(impurity_left), _fill_empty(impurity_right)


class VarianceCriterion(Criterion):
    """Summed per-dimension variance of the regression offsets."""

    def targets(self, samples):
        if not samples:
            return np.zeros((0, 1), dtype=np.float64)
        return np.vstack([np.atleast_1d(s.offset) for s in samples]).astype(np.float64)

    def node_impurity(self, y):
        if len(y) == 0:
            return 0.0
        return float(np.sum(np.var(y, axis=0)))

    def children_impurity(self, y):
        n_samples = len(y)
        n_outputs = y.shape[1]

        sum_left = np.zeros((n_samples + 1, n_outputs), dtype=np.float64)
        sq_sum_left = np.zeros((n_samples + 1, n_outputs), dtype=np.float64)
        np.cumsum(y, axis=0, out=sum_left[1:])
        np.cumsum(y ** 2, axis=0, out=sq_sum_left[1:])
        sum_right = sum_left[-1] - sum_left
        sq_sum_right = sq_sum_left[-1] - sq_sum_left

        n_left = np.arange(n_samples + 1, dtype=np.float64)[:, None]
        n_right = n_samples - n_left

        with np.errstate(divide='ignore', invalid='ignore'):
            impurity_left = np.sum(sq_sum_left / n_left - (sum_left / n_left) ** 2, axis=1)
            impurity_right = np.sum(sq_sum_right / n_right - (sum_right / n_right) ** 2, axis=1)
        return _fill_empty(impurity_left), _fill_empty(impurity_right)
