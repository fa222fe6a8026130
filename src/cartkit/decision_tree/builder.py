"""Recursive partitioning: split search, in-place index partitioning and tree growth.

`TreeBuilder` owns the scratch state of one tree construction: a permutation of
row indices in which every leaf owns a contiguous range ``index[lo:hi]``. Each
applied split partitions its range in place so rows routed to the true child
come first. Growth is depth-first when the leaf budget is unbounded and
best-first (highest impurity reduction first) otherwise.
"""

from __future__ import annotations

import heapq
import itertools
from typing import NamedTuple

import numpy as np
from loguru import logger

from cartkit.decision_tree.impurity import impurity_reduction_scan
from cartkit.decision_tree.models import TreeParams
from cartkit.decision_tree.nodes import InternalNode, LeafNode, Node
from cartkit.decision_tree.preprocessing import FeatureEncoder, compute_order
from cartkit.decision_tree.split import Split
from cartkit.exceptions import LabelDomainError, ShapeMismatchError
from cartkit.logging import SPLIT_LEVEL

# Reductions at or below this are rounding noise, not an improvement.
_MIN_IMPURITY_REDUCTION: float = 1e-12


class BuildResult(NamedTuple):
    """Output of `TreeBuilder.build`.

    Attributes:
        root (Node): Root of the fitted tree.
        importance (np.ndarray): Sum of split scores per predictor.
    """

    root: Node
    importance: np.ndarray


class _Candidate(NamedTuple):
    """Best split found on one predictor."""

    score: float
    value: float
    true_size: int


class TreeBuilder:
    """Grows one classification tree over an encoded training set.

    A builder is single-use: `build` releases the scratch buffers. Builders for
    different trees may run concurrently as long as they only share read-only
    inputs.

    Args:
        x (np.ndarray): ``(n, p)`` encoded predictor matrix.
        y (np.ndarray): ``(n,)`` class labels in ``0..k-1``.
        k (int): Number of classes.
        encoders (list[FeatureEncoder]): Encoders parallel to the columns of `x`.
        params (TreeParams): Hyper-parameters.
        samples (np.ndarray | None): Per-row sample counts (e.g. bootstrap
            draws). Rows with a zero count are left out. Defaults to one per row.
        order (list[np.ndarray | None] | None): Per-column ascending row
            order as returned by `compute_order`; computed when omitted.

    Raises:
        ShapeMismatchError: If `y`, `samples`, `order` or `encoders` do not
            match the shape of `x`.
        LabelDomainError: If a label in `y` lies outside ``0..k-1``.
    """

    def __init__(
        self,
        x: np.ndarray,
        y: np.ndarray,
        k: int,
        encoders: list[FeatureEncoder],
        params: TreeParams,
        *,
        samples: np.ndarray | None = None,
        order: list[np.ndarray | None] | None = None,
    ) -> None:
        n, p = x.shape
        if len(y) != n:
            raise ShapeMismatchError("y", n, len(y))
        if len(encoders) != p:
            raise ShapeMismatchError("encoders", p, len(encoders))
        if samples is not None and len(samples) != n:
            raise ShapeMismatchError("samples", n, len(samples))
        if order is not None and len(order) != p:
            raise ShapeMismatchError("order", p, len(order))

        self._x = x
        self._y = np.asarray(y, dtype=np.int64)
        self._k = k
        if n > 0 and (self._y.min() < 0 or self._y.max() >= k):
            labels = [int(label) for label in np.unique(self._y)]
            raise LabelDomainError(f"Class labels must lie in 0..{k - 1}, got {labels}", labels)
        self._encoders = encoders
        self._params = params
        self._samples = np.ones(n, dtype=np.int64) if samples is None else np.asarray(samples, dtype=np.int64)
        self._index = np.flatnonzero(self._samples > 0).astype(np.int64)
        if self._index.size == 0:
            raise ValueError("samples must contain at least one positive count")

        # Numeric columns keep their sorted rows partitioned like `_index`:
        # each leaf's rows in value order are ``_sorted[j][lo:hi]``.
        full_order = compute_order(x, encoders) if order is None else list(order)
        self._sorted: list[np.ndarray | None] = []
        for j, encoder in enumerate(encoders):
            if encoder.kind != "numeric":
                self._sorted.append(None)
                continue
            column_order = full_order[j]
            if column_order is None:
                column_order = np.argsort(x[:, j], kind="stable")
            column_order = np.asarray(column_order, dtype=np.int64)
            self._sorted.append(column_order[self._samples[column_order] > 0])
        self._goes_true = np.zeros(n, dtype=bool)
        self._rng = np.random.default_rng(params.seed)
        self._sequence = itertools.count()
        self._importance = np.zeros(p, dtype=np.float64)
        self._parents: dict[int, tuple[InternalNode | None, bool]] = {}
        self._built = False

        self._root_leaf = self._new_leaf(self._index)
        self._root: Node = self._root_leaf
        self._parents[id(self._root_leaf)] = (None, True)

    @property
    def root(self) -> Node:
        """Current root; a leaf until the first split is applied."""
        return self._root

    @property
    def n_samples(self) -> int:
        """Number of rows with a positive sample count (the root range is ``[0, n_samples)``)."""
        return len(self._index)

    @property
    def index(self) -> np.ndarray:
        """Copy of the current row index permutation."""
        return self._index.copy()

    def build(self) -> BuildResult:
        """Grow the tree and release the construction buffers.

        Returns:
            BuildResult: The root node and per-predictor importance.

        Raises:
            RuntimeError: If the builder was already used.
        """
        if self._built:
            raise RuntimeError("TreeBuilder instances are single-use")
        self._built = True

        first = self.find_best_split(self._root_leaf, 0, self.n_samples)

        if self._params.max_nodes is None:
            self._grow_depth_first(first)
        else:
            self._grow_best_first(first, self._params.max_nodes)

        result = BuildResult(root=self._root, importance=self._importance)
        self._clear()
        return result

    def find_best_split(self, leaf: LeafNode, lo: int, hi: int) -> Split | None:
        """Find the split of ``index[lo:hi]`` with the largest impurity reduction.

        Both sides of a split must hold at least ``node_size`` weighted
        samples. Ties keep the first candidate found (predictors in candidate
        order, thresholds ascending).

        Args:
            leaf (LeafNode): The leaf owning the range.
            lo (int): Start of the range.
            hi (int): End of the range (exclusive).

        Returns:
            Split | None: The best improving split, or `None` if no split
                improves the leaf's impurity.
        """
        node_size = self._params.node_size
        n = leaf.size
        parent_impurity = leaf.impurity(self._params.split_rule)
        if n < 2 * node_size or parent_impurity <= 0.0:
            logger.debug("No improving split", lo=lo, hi=hi, size=n, impurity=parent_impurity)
            return None

        rows = self._index[lo:hi]

        best: _Candidate | None = None
        best_feature = -1
        for j in self._candidate_features():
            if self._encoders[j].kind == "numeric":
                candidate = self._best_numeric_split(j, lo, hi, n, leaf.count, parent_impurity)
            else:
                candidate = self._best_nominal_split(j, rows, n, leaf.count, parent_impurity)
            if candidate is not None and (best is None or candidate.score > best.score):
                best, best_feature = candidate, int(j)

        if best is None or best.score <= _MIN_IMPURITY_REDUCTION:
            logger.debug("No improving split", lo=lo, hi=hi, size=n, impurity=parent_impurity)
            return None

        return Split(
            leaf=leaf,
            feature=best_feature,
            kind=self._encoders[best_feature].kind,
            value=best.value,
            score=best.score,
            lo=lo,
            hi=hi,
            true_size=best.true_size,
            false_size=n - best.true_size,
            sequence=next(self._sequence),
        )

    def split(self, candidate: Split) -> tuple[Split | None, Split | None]:
        """Apply a split: partition its index range and replace its leaf.

        Rows satisfying the split predicate are moved to the front of
        ``index[lo:hi]`` (stable within each side). The leaf is replaced by an
        internal node whose two new leaves have their outputs computed, so the
        partially grown tree can always predict.

        Args:
            candidate (Split): The split to apply.

        Returns:
            tuple[Split | None, Split | None]: Best splits of the new true and
                false leaves.
        """
        lo, hi = candidate.lo, candidate.hi
        rows = self._index[lo:hi]
        goes_true = candidate.predicate(self._x[rows, candidate.feature])
        self._goes_true[rows] = goes_true
        true_rows = rows[goes_true]
        false_rows = rows[~goes_true]
        mid = lo + len(true_rows)
        self._index[lo:mid] = true_rows
        self._index[mid:hi] = false_rows

        for column_order in self._sorted:
            if column_order is None:
                continue
            segment = column_order[lo:hi]
            on_true = self._goes_true[segment]
            column_order[lo:hi] = np.concatenate((segment[on_true], segment[~on_true]))

        true_leaf = self._new_leaf(true_rows)
        false_leaf = self._new_leaf(false_rows)
        node = candidate.to_node(true_leaf, false_leaf)

        parent, is_true_side = self._parents.pop(id(candidate.leaf))
        if parent is None:
            self._root = node
        elif is_true_side:
            parent.true_child = node
        else:
            parent.false_child = node
        self._parents[id(true_leaf)] = (node, True)
        self._parents[id(false_leaf)] = (node, False)
        self._importance[candidate.feature] += candidate.score

        logger.log(
            SPLIT_LEVEL,
            "Split applied",
            feature=self._encoders[candidate.feature].column_name,
            score=candidate.score,
            lo=lo,
            hi=hi,
            true_size=true_leaf.size,
            false_size=false_leaf.size,
        )

        return self.find_best_split(true_leaf, lo, mid), self.find_best_split(false_leaf, mid, hi)

    # ------------------------------------------------------------------
    # Growth policies
    # ------------------------------------------------------------------

    def _grow_depth_first(self, first: Split | None) -> None:
        """Split every node until none improves, true side before false side."""
        stack: list[Split] = [first] if first is not None else []
        while stack:
            true_split, false_split = self.split(stack.pop())
            if false_split is not None:
                stack.append(false_split)
            if true_split is not None:
                stack.append(true_split)

    def _grow_best_first(self, first: Split | None, max_nodes: int) -> None:
        """Apply the highest-scoring pending split until the leaf budget is reached."""
        queue: list[Split] = []
        if first is not None:
            heapq.heappush(queue, first)

        leaves = 1
        while leaves < max_nodes and queue:
            for child_split in self.split(heapq.heappop(queue)):
                if child_split is not None:
                    heapq.heappush(queue, child_split)
            leaves += 1

    # ------------------------------------------------------------------
    # Split search
    # ------------------------------------------------------------------

    def _candidate_features(self) -> np.ndarray:
        """Predictors to search at this node: all, or `mtry` sampled without replacement."""
        p = len(self._encoders)
        mtry = self._params.mtry
        if mtry is None or mtry >= p:
            return np.arange(p)
        return np.sort(self._rng.choice(p, size=mtry, replace=False))

    def _best_numeric_split(
        self,
        j: int,
        lo: int,
        hi: int,
        n: int,
        total_count: np.ndarray,
        parent_impurity: float,
    ) -> _Candidate | None:
        """Scan the boundaries between distinct values of a numeric predictor."""
        ordered = self._sorted[j][lo:hi]
        values = self._x[ordered, j]

        boundaries = np.flatnonzero(values[:-1] < values[1:])
        if boundaries.size == 0:
            return None

        weighted = np.zeros((len(ordered), self._k), dtype=np.float64)
        weighted[np.arange(len(ordered)), self._y[ordered]] = self._samples[ordered]
        true_counts = np.cumsum(weighted, axis=0)[boundaries]

        true_sizes = true_counts.sum(axis=1)
        node_size = self._params.node_size
        valid = (true_sizes >= node_size) & (n - true_sizes >= node_size)
        if not valid.any():
            return None

        boundaries = boundaries[valid]
        gains = impurity_reduction_scan(self._params.split_rule, parent_impurity, true_counts[valid], total_count)
        best = int(np.argmax(gains))

        below = float(values[boundaries[best]])
        above = float(values[boundaries[best] + 1])
        threshold = (below + above) / 2.0
        if not below <= threshold < above:
            threshold = below
        return _Candidate(score=float(gains[best]), value=threshold, true_size=int(true_sizes[valid][best]))

    def _best_nominal_split(
        self,
        j: int,
        rows: np.ndarray,
        n: int,
        total_count: np.ndarray,
        parent_impurity: float,
    ) -> _Candidate | None:
        """Evaluate one-vs-rest equality splits on each category present in the node."""
        mapping = self._encoders[j].category_mapping or {}
        codes = self._x[rows, j].astype(np.int64)
        table = np.zeros((len(mapping), self._k), dtype=np.float64)
        np.add.at(table, (codes, self._y[rows]), self._samples[rows])

        present = np.flatnonzero(table.sum(axis=1) > 0)
        if present.size < 2:
            return None

        true_counts = table[present]
        true_sizes = true_counts.sum(axis=1)
        node_size = self._params.node_size
        valid = (true_sizes >= node_size) & (n - true_sizes >= node_size)
        if not valid.any():
            return None

        gains = impurity_reduction_scan(self._params.split_rule, parent_impurity, true_counts[valid], total_count)
        best = int(np.argmax(gains))
        return _Candidate(
            score=float(gains[best]),
            value=float(present[valid][best]),
            true_size=int(true_sizes[valid][best]),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_leaf(self, rows: np.ndarray) -> LeafNode:
        """Create a leaf from the class counts of `rows` and compute its output."""
        leaf = LeafNode.empty(self._k)
        leaf.add_all(self._y[rows], self._samples[rows])
        leaf.calculate_output()
        return leaf

    def _clear(self) -> None:
        """Release construction-only buffers."""
        self._index = np.empty(0, dtype=np.int64)
        self._goes_true = np.empty(0, dtype=bool)
        self._samples = np.empty(0, dtype=np.int64)
        self._sorted = []
        self._parents.clear()
