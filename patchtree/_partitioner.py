"""Order and partition a batch of samples around a split threshold.

This module contains the helpers that move samples to the left and right
child node given a split chosen by the splitting algorithm in
`_splitter.py`. The scalar test values of a batch are kept as a sorted
array of ``(value, index)`` records so the partition is a single binary
search.
"""
# Authors: The scikit-learn developers
# SPDX-License-Identifier: BSD-3-Clause

import numpy as np


# Feature threshold for considering values equal
FEATURE_THRESHOLD = 1e-7

INDEX_DTYPE = np.dtype([
    ('value', np.float64),
    ('index', np.intp),
])


def sort_samples_by_value(values):
    """Pair every test value with its sample index and sort ascending.

    The sort is stable: samples with equal values keep their input order.
    """
    values = np.asarray(values, dtype=np.float64).ravel()
    n_samples = values.shape[0]

    val_set = np.empty(n_samples, dtype=INDEX_DTYPE)
    val_set['value'] = values
    val_set['index'] = np.arange(n_samples, dtype=np.intp)

    order = np.argsort(values, kind='mergesort')
    return val_set[order]


def find_min_max(val_set):
    """Minimum and maximum value of a sorted value set."""
    if val_set.shape[0] == 0:
        return np.inf, -np.inf
    return float(val_set['value'][0]), float(val_set['value'][-1])


def distinct_cut_positions(sorted_values):
    """Mask over cut positions ``0..n`` that separate two distinct values.

    Position ``p`` cuts the sorted batch into ``[:p]`` and ``[p:]``. The two
    ends are never valid since one side would be empty.
    """
    n_samples = sorted_values.shape[0]
    mask = np.zeros(n_samples + 1, dtype=np.bool_)
    if n_samples > 1:
        mask[1:n_samples] = (
            sorted_values[1:] > sorted_values[:-1] + FEATURE_THRESHOLD
        )
    return mask


def partition_samples(samples, val_set, threshold):
    """Split ``samples`` at ``threshold`` using the sorted value set.

    Samples whose value is strictly below the threshold go to the left
    subset, the others to the right one. Both subsets keep ascending value
    order and together hold every input sample exactly once.
    """
    pos = int(np.searchsorted(val_set['value'], threshold, side='left'))
    indices = val_set['index']

    left = [samples[i] for i in indices[:pos]]
    right = [samples[i] for i in indices[pos:]]
    return left, right
