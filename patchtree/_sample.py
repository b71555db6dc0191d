"""Training samples and leaf statistics.

A sample is the unit routed through the tree. The tree only needs two
things from it: a scalar value for a split test and a way to summarize a
batch into a leaf payload. `PatchSample` provides both for image patches.
"""

import numpy as np


class Sample:
    """Abstract training unit scored against split tests.

    Subclasses implement `scalar_test`, which must be deterministic for a
    fixed sample and split, and the `summarize` classmethod that turns a
    batch of samples into the payload stored at a leaf.
    """

    def scalar_test(self, split):
        """Value of the binary test described by ``split`` on this sample."""
        raise NotImplementedError()

    @classmethod
    def summarize(cls, samples):
        """Leaf payload for ``samples`` (which may be empty)."""
        raise NotImplementedError()


class Leaf:
    """Statistics of the training samples that reached a leaf."""

    __slots__ = ('n_samples', 'class_counts', 'class_probs',
                 'offset_mean', 'offset_var')

    def __init__(self, class_counts, offset_mean=None, offset_var=None):
        self.class_counts = np.asarray(class_counts, dtype=np.intp)
        self.n_samples = int(self.class_counts.sum())
        if self.n_samples > 0:
            self.class_probs = self.class_counts / float(self.n_samples)
        else:
            self.class_probs = np.zeros(self.class_counts.shape[0], dtype=np.float64)
        self.offset_mean = offset_mean
        self.offset_var = offset_var

    def __repr__(self):
        return (f"Leaf(samples={self.n_samples}, "
                f"class_probs={np.round(self.class_probs, 4).tolist()})")


class PatchSample(Sample):
    """Image patch with a class label and an optional regression offset.

    Parameters
    ----------
    patch : ndarray of shape (n_channels, height, width) or (height, width)
        Feature channels of the patch. A 2D patch is a single channel.
    label : int, default=0
        Class of the patch (e.g. head-pose bin).
    offset : array-like, optional
        Regression target (e.g. displacement to a facial landmark).
    """

    __slots__ = ('patch', 'label', 'offset')

    def __init__(self, patch, label=0, offset=None):
        patch = np.asarray(patch, dtype=np.float32)
        if patch.ndim == 2:
            patch = patch[np.newaxis]
        if patch.ndim != 3:
            raise ValueError(f"patch should be a 2D or 3D array, got {patch.ndim} dimensions")

        self.patch = patch
        self.label = int(label)
        self.offset = None if offset is None else np.asarray(offset, dtype=np.float64)

    @property
    def n_channels(self):
        return self.patch.shape[0]

    def scalar_test(self, split):
        """Mean intensity difference between the two rectangles of the test."""
        channel, rect_a, rect_b = split.test
        return float(self._rect_mean(channel, rect_a) - self._rect_mean(channel, rect_b))

    def _rect_mean(self, channel, rect):
        x, y, w, h = rect
        return self.patch[channel, y:y + h, x:x + w].mean()

    @classmethod
    def summarize(cls, samples):
        labels = np.array([s.label for s in samples], dtype=np.intp)
        class_counts = np.bincount(labels, minlength=1)

        offsets = [s.offset for s in samples if s.offset is not None]
        if offsets:
            offsets = np.vstack(offsets)
            return Leaf(class_counts, offsets.mean(axis=0), offsets.var(axis=0))
        return Leaf(class_counts)
