"""
patchtree - resumable conditional regression trees for patch-based vision
"""

from ._criterion import ClassEntropyCriterion, Criterion, VarianceCriterion
from ._param import ForestParam
from ._sample import Leaf, PatchSample, Sample
from ._splitter import PatchSplitGenerator, Split, SplitGenerator
from ._tree import CheckpointPolicy, Node, Tree

__version__ = "0.1.0"

__all__ = [
    'CheckpointPolicy',
    'ClassEntropyCriterion',
    'Criterion',
    'ForestParam',
    'Leaf',
    'Node',
    'PatchSample',
    'PatchSplitGenerator',
    'Sample',
    'Split',
    'SplitGenerator',
    'Tree',
    'VarianceCriterion',
]
