# _tree.py
import contextlib
import logging
import os
import pickle
import time

import numpy as np
from sklearn.utils import check_random_state

from ._param import ForestParam
from ._partitioner import sort_samples_by_value
from ._sample import PatchSample
from ._splitter import PatchSplitGenerator, Split

logger = logging.getLogger(__name__)

# Node states
NODE_UNRESOLVED = 0
NODE_LEAF = 1
NODE_INTERNAL = 2

TREE_LEAF = -1
TREE_UNDEFINED = -2

SNAPSHOT_VERSION = 1

# Seconds between two automatic snapshots during growth
CHECKPOINT_INTERVAL = 600.0

NODE_DTYPE = np.dtype([
    ('left_child', np.intp),
    ('right_child', np.intp),
    ('depth', np.intp),
    ('state', np.int8),
    ('threshold', np.float64),
    ('margin', np.float64),
    ('info', np.float64),
    ('oob', np.float64),
])

_SNAPSHOT_KEYS = ('n_nodes', 'i_node', 'i_leaf', 'param', 'save_path',
                  'splitter', 'sample_cls', 'nodes', 'tests', 'leaves')

_LOAD_ERRORS = (pickle.UnpicklingError, EOFError, ValueError, TypeError,
                AttributeError, ImportError, IndexError, KeyError, OverflowError,
                MemoryError)


class Node:
    """Vertex of a tree: unresolved, a leaf, or an internal split node.

    The depth is fixed at construction. A leaf holds a payload and no
    children; an internal node holds a split and exactly two children.
    """

    __slots__ = ('depth', 'state', 'split', 'left', 'right', 'leaf')

    def __init__(self, depth):
        self.depth = depth
        self.state = NODE_UNRESOLVED
        self.split = None
        self.left = None
        self.right = None
        self.leaf = None

    def __repr__(self):
        if self.state == NODE_LEAF:
            return f"Node(depth={self.depth}, leaf={self.leaf!r})"
        if self.state == NODE_INTERNAL:
            return f"Node(depth={self.depth}, split={self.split!r})"
        return f"Node(depth={self.depth}, unresolved)"

    def is_leaf(self):
        return self.state == NODE_LEAF

    def is_internal(self):
        return self.state == NODE_INTERNAL

    def has_split(self):
        return self.split is not None

    def set_split(self, split, left, right):
        """Turn an unresolved node into an internal node."""
        if self.state != NODE_UNRESOLVED:
            raise ValueError("A split can only be assigned to an unresolved node")
        if left.depth != self.depth + 1 or right.depth != self.depth + 1:
            raise ValueError(
                f"Children of a node at depth {self.depth} must be at depth "
                f"{self.depth + 1}, got {left.depth} and {right.depth}"
            )
        self.state = NODE_INTERNAL
        self.split = split
        self.left = left
        self.right = right

    def create_leaf(self, payload):
        """Turn the node into a leaf, releasing any subtree it held."""
        self.state = NODE_LEAF
        self.leaf = payload
        self.split = None
        self.left = None
        self.right = None

    def eval(self, sample):
        """True when ``sample`` descends into the left child."""
        return sample.scalar_test(self.split) < self.split.threshold


class StackRecord:
    """Record on stack for depth-first tree growing."""

    __slots__ = ('node', 'samples')

    def __init__(self, node, samples):
        self.node = node
        self.samples = samples


class CheckpointPolicy:
    """Decide when growth writes an automatic snapshot.

    Parameters
    ----------
    interval : float, default=600.0
        Seconds between two automatic snapshots.
    clock : callable, default=time.monotonic
        Returns the current time in seconds.
    """

    def __init__(self, interval=CHECKPOINT_INTERVAL, clock=time.monotonic):
        self.interval = interval
        self.clock = clock
        self.last_checkpoint = clock()

    def reset(self):
        self.last_checkpoint = self.clock()

    def is_due(self):
        """Return True and restart the timer once the interval elapsed."""
        now = self.clock()
        elapsed = now - self.last_checkpoint
        logger.debug(f"Time: {elapsed * 1000:.0f} ms")
        if elapsed > self.interval:
            self.last_checkpoint = now
            return True
        return False


class Tree:
    """Conditional regression tree grown from patch samples.

    Growth runs as soon as the tree is built and may be resumed with
    `update` on a tree reloaded with `Tree.load`. Progress is measured in
    node budget units: a complete tree of depth ``max_depth`` consumes
    ``2 ** max_depth - 1`` units, every split one unit and every leaf at
    depth ``d`` the ``2 ** (max_depth - d) - 1`` units of the subtree it
    replaces.

    Parameters
    ----------
    samples : sequence of Sample
        Training batch.
    param : ForestParam
        Training parameters; ``max_depth``, ``min_patches`` and ``ntests``
        drive the growth.
    random_state : int, RandomState instance or None, default=None
        Random stream of the split search. A RandomState instance is used
        as-is and advanced by the growth.
    save_path : str, default=''
        File the tree is saved to after growth and at automatic checkpoints.
    splitter : SplitGenerator, default=PatchSplitGenerator()
        Generates candidate splits and routes samples.
    sample_cls : type, default=PatchSample
        Sample class whose ``summarize`` builds leaf payloads.
    checkpoint_policy : CheckpointPolicy, optional
        Timing of automatic snapshots.

    Attributes
    ----------
    root : Node
        Root node of the tree.
    n_nodes : int
        Node budget of a complete tree.
    i_node : int
        Budget units consumed by the current growth pass.
    i_leaf : int
        Leaves created by the current growth pass.
    """

    def __init__(self, samples, param, random_state=None, save_path='',
                 splitter=None, sample_cls=PatchSample, checkpoint_policy=None):
        self.param = param
        self.save_path = save_path
        self.splitter = splitter if splitter is not None else PatchSplitGenerator()
        self.sample_cls = sample_cls
        self.checkpoint_policy = (checkpoint_policy if checkpoint_policy is not None
                                  else CheckpointPolicy())
        self.rng = check_random_state(random_state)

        self.n_nodes = self._node_budget(param.max_depth)
        self.i_node = 0
        self.i_leaf = 0

        logger.info("Start training")
        self.checkpoint_policy.reset()
        self.root = Node(0)
        self.grow(self.root, samples)
        self.save()

    def __repr__(self):
        return (f"Tree(max_depth={self.param.max_depth}, "
                f"nodes={self.i_node}/{self.n_nodes}, leaves={self.i_leaf})")

    @staticmethod
    def _node_budget(max_depth):
        if max_depth < 1:
            return 0
        return 2 ** max_depth - 1

    @property
    def progress(self):
        """Fraction of the node budget consumed."""
        if self.n_nodes == 0:
            return 0.0
        return self.i_node / self.n_nodes

    def _percent(self):
        return 100.0 * self.progress

    def is_finished(self):
        if self.n_nodes == 0:
            return False
        return self.i_node == self.n_nodes

    def update(self, samples, random_state=None):
        """Resume growth of an unfinished tree on ``samples``.

        Progress counters restart from zero and are rebuilt while the
        existing splits are re-applied to the new batch. A finished tree is
        left untouched.
        """
        logger.info(f"{self._percent():.2f}% : update tree")
        if self.is_finished():
            return

        self.rng = check_random_state(random_state)
        self.i_node = 0
        self.i_leaf = 0

        logger.info("Start training")
        self.checkpoint_policy.reset()
        self.grow(self.root, samples)
        self.save()

    def grow(self, node, samples):
        """Grow the subtree rooted at ``node`` from ``samples``, depth-first."""
        param = self.param
        min_patches = param.min_patches
        max_depth = param.max_depth

        builder_stack = [StackRecord(node, list(samples))]

        while builder_stack:
            record = builder_stack.pop()
            node = record.node
            samples = record.samples

            depth = node.depth
            n_node_samples = len(samples)

            if (n_node_samples < min_patches or depth >= max_depth or
                    node.is_leaf()):
                self._make_leaf(node, samples, 1)
                continue

            if node.has_split():
                # Only on resume: the partition is not persisted
                left, right = self._apply_optimal_split(samples, node.split)
                self.i_node += 1
                logger.info(
                    f"  (2) {self._percent():.2f}% : split(depth: {depth}, "
                    f"elements: {n_node_samples}) [A: {len(left)}, B: {len(right)}]"
                )
            else:
                split = self._find_optimal_split(samples, depth)
                if split is None:
                    logger.info("  No valid split found")
                    self._make_leaf(node, samples, 4)
                    continue

                left, right = self._apply_optimal_split(samples, split)
                node.set_split(split, Node(depth + 1), Node(depth + 1))
                self.i_node += 1

                self._save_auto()
                logger.info(
                    f"  (3) {self._percent():.2f}% : split(depth: {depth}, "
                    f"elements: {n_node_samples}) [A: {len(left)}, B: {len(right)}]"
                )

            # Push right child first so the left subtree is grown first
            builder_stack.append(StackRecord(node.right, right))
            builder_stack.append(StackRecord(node.left, left))

    def _make_leaf(self, node, samples, case):
        depth = node.depth
        node.create_leaf(self.sample_cls.summarize(samples))
        self.i_node += 2 ** (self.param.max_depth - depth) - 1
        self.i_leaf += 1
        logger.info(
            f"  ({case}) {self._percent():.2f}% : make leaf(depth: {depth}, "
            f"elements: {len(samples)}) [i_leaf: {self.i_leaf}]"
        )

    def _find_optimal_split(self, samples, depth):
        """Select the candidate split with the highest information gain.

        Returns None when no candidate beats the sentinel.
        """
        param = self.param
        split_mode = int(self.rng.randint(0, 101))
        splits = self.splitter.generate(samples, param.ntests, self.rng,
                                        param.get_patch_size(), depth, split_mode)

        best_split = Split()
        for split in splits:
            if split.info > best_split.info:
                best_split = split

        if best_split.is_valid():
            return best_split
        return None

    def _apply_optimal_split(self, samples, split):
        val_set = sort_samples_by_value([s.scalar_test(split) for s in samples])
        return self.splitter.route(samples, val_set, split.threshold, split.margin)

    def _save_auto(self):
        if self.checkpoint_policy.is_due():
            logger.info(f"Automatic tree saved at {self.checkpoint_policy.last_checkpoint}")
            self.save()

    def evaluate(self, sample, node=None):
        """Return the leaf payload reached by ``sample``.

        Descends from ``node`` (the root by default). The path must not
        contain unresolved nodes.
        """
        if node is None:
            node = self.root
        while not node.is_leaf():
            if node.eval(sample):
                node = node.left
            else:
                node = node.right
        return node.leaf

    def apply(self, samples):
        """Leaf payloads reached by every sample of ``samples``."""
        return [self.evaluate(sample) for sample in samples]

    def _iter_nodes(self):
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            if node.is_internal():
                stack.append(node.right)
                stack.append(node.left)

    @property
    def node_count(self):
        return sum(1 for _ in self._iter_nodes())

    @property
    def n_leaves(self):
        return sum(1 for node in self._iter_nodes() if node.is_leaf())

    def get_depth(self):
        """Depth of the deepest node."""
        return max(node.depth for node in self._iter_nodes())

    def save(self):
        """Write the tree to ``save_path``, replacing any previous snapshot.

        Failures are logged and reported by returning False; the in-memory
        tree is not affected.
        """
        if not self.save_path:
            logger.warning("No save path set, tree not saved")
            return False

        tmp_path = f"{self.save_path}.tmp"
        try:
            with open(tmp_path, 'wb') as f:
                pickle.dump(self, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_path, self.save_path)
        except (OSError, pickle.PicklingError, AttributeError, TypeError) as e:
            logger.error(f"Exception during tree serialization: {e}")
            with contextlib.suppress(OSError):
                os.remove(tmp_path)
            return False

        if self.is_finished():
            logger.info(f"Complete tree saved: {self.save_path}")
        else:
            logger.info(f"Unfinished tree saved: {self.save_path}")
        return True

    @classmethod
    def load(cls, path):
        """Read a tree saved by `save`.

        Returns None when the file cannot be opened or does not hold a valid
        snapshot. Snapshots are pickles: only load files you trust.
        """
        try:
            f = open(path, 'rb')
        except OSError:
            logger.info(f"  File not found: {path}")
            return None

        with f:
            try:
                tree = pickle.load(f)
            except _LOAD_ERRORS as e:
                logger.error(f"  Exception during tree serialization: {e}")
                return None

        if not isinstance(tree, cls):
            logger.error(f"  {path} does not hold a tree snapshot")
            return None

        if tree.is_finished():
            logger.info("  Complete tree reloaded")
        else:
            logger.info("  Unfinished tree reloaded")
        return tree

    def __getstate__(self):
        """Getstate re-implementation, for pickling."""
        nodes, tests, leaves = self._get_node_ndarray()
        return {
            'version': SNAPSHOT_VERSION,
            'n_nodes': self.n_nodes,
            'i_node': self.i_node,
            'i_leaf': self.i_leaf,
            'param': self.param.get_params(),
            'save_path': self.save_path,
            'splitter': self.splitter,
            'sample_cls': self.sample_cls,
            'nodes': nodes,
            'tests': tests,
            'leaves': leaves,
        }

    def __setstate__(self, d):
        """Setstate re-implementation, for unpickling."""
        if not isinstance(d, dict) or d.get('version') != SNAPSHOT_VERSION:
            raise ValueError('You have loaded Tree version which cannot be imported')

        missing = [key for key in _SNAPSHOT_KEYS if key not in d]
        if missing:
            raise ValueError(f"Tree snapshot is missing {', '.join(missing)}")

        self.param = ForestParam(**d['param'])
        self.n_nodes = int(d['n_nodes'])
        self.i_node = int(d['i_node'])
        self.i_leaf = int(d['i_leaf'])

        if self.n_nodes != self._node_budget(self.param.max_depth):
            raise ValueError(
                f"Node budget {self.n_nodes} does not match max_depth "
                f"{self.param.max_depth}"
            )
        if not 0 <= self.i_node <= self.n_nodes:
            raise ValueError(
                f"Consumed nodes {self.i_node} out of range [0, {self.n_nodes}]"
            )

        self.save_path = d['save_path']
        self.splitter = d['splitter']
        self.sample_cls = d['sample_cls']
        self.root = self._build_nodes(self._check_node_ndarray(d['nodes']),
                                      d['tests'], d['leaves'])

        # The random stream is not part of the snapshot, `update` provides one
        self.rng = None
        self.checkpoint_policy = CheckpointPolicy()

    def _get_node_ndarray(self):
        """Wraps nodes as a NumPy structured array in pre-order.

        Split tests and leaf payloads are returned as two object lists
        aligned with the array.
        """
        order = list(self._iter_nodes())
        index = {id(node): i for i, node in enumerate(order)}

        arr = np.zeros(len(order), dtype=NODE_DTYPE)
        tests = [None] * len(order)
        leaves = [None] * len(order)

        for i, node in enumerate(order):
            if node.is_internal():
                split = node.split
                arr[i] = (index[id(node.left)], index[id(node.right)], node.depth,
                          node.state, split.threshold, split.margin, split.info,
                          split.oob)
                tests[i] = split.test
            else:
                arr[i] = (TREE_LEAF, TREE_LEAF, node.depth, node.state,
                          TREE_UNDEFINED, TREE_UNDEFINED, TREE_UNDEFINED,
                          TREE_UNDEFINED)
                leaves[i] = node.leaf

        return arr, tests, leaves

    def _check_node_ndarray(self, node_ndarray):
        """Check node array from pickle."""
        if not isinstance(node_ndarray, np.ndarray) or node_ndarray.dtype != NODE_DTYPE:
            raise ValueError("node array from the pickle has the wrong dtype")

        if node_ndarray.ndim != 1:
            raise ValueError(
                "Wrong dimensions for node array from the pickle: "
                f"expected 1, got {node_ndarray.ndim}"
            )

        if node_ndarray.shape[0] == 0:
            raise ValueError("node array from the pickle is empty")

        if not node_ndarray.flags.c_contiguous:
            raise ValueError(
                "node array from the pickle should be a C-contiguous array"
            )

        return node_ndarray

    def _build_nodes(self, node_ndarray, tests, leaves):
        """Rebuild the node graph from its pre-order array."""
        n_nodes = node_ndarray.shape[0]
        if len(tests) != n_nodes or len(leaves) != n_nodes:
            raise ValueError(
                f"Expected {n_nodes} tests and leaves, got {len(tests)} and {len(leaves)}"
            )

        nodes = [Node(int(depth)) for depth in node_ndarray['depth']]
        if nodes[0].depth != 0:
            raise ValueError(f"Root node should be at depth 0, got {nodes[0].depth}")

        referenced = np.zeros(n_nodes, dtype=np.bool_)
        referenced[0] = True

        for i, record in enumerate(node_ndarray):
            state = int(record['state'])
            if state == NODE_INTERNAL:
                left = int(record['left_child'])
                right = int(record['right_child'])
                # Pre-order: children always come after their parent
                if not (i < left < n_nodes and i < right < n_nodes) or left == right:
                    raise ValueError(f"Invalid children ({left}, {right}) for node {i}")
                if referenced[left] or referenced[right]:
                    raise ValueError(f"Node {i} shares a child with another node")
                referenced[left] = referenced[right] = True

                split = Split(threshold=record['threshold'], margin=record['margin'],
                              info=record['info'], oob=record['oob'], test=tests[i])
                nodes[i].set_split(split, nodes[left], nodes[right])
            elif state == NODE_LEAF:
                nodes[i].create_leaf(leaves[i])
            elif state != NODE_UNRESOLVED:
                raise ValueError(f"Unknown state {state} for node {i}")

        if not referenced.all():
            raise ValueError("node array from the pickle holds unreachable nodes")

        return nodes[0]
