"""Tree nodes: leaves holding class counts and internal nodes holding a split decision."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field

import numpy as np

from cartkit.decision_tree.impurity import impurity
from cartkit.decision_tree.models import SplitRule

type Node = LeafNode | InternalNode


@dataclass(eq=False)
class LeafNode:
    """A terminal node holding per-class sample counts and its predicted class.

    Counts are accumulated with `add` / `add_all` while the tree is being
    built; `calculate_output` caches the majority class. The node is not
    modified once the tree is fitted.

    Attributes:
        count (np.ndarray): Weighted sample count per class, length ``k``.
        output (int): Majority class; the lowest label wins ties.

    Examples:
        >>> leaf = LeafNode(np.array([3, 5, 5]))
        >>> leaf.output, leaf.size
        (1, 13)
    """

    count: np.ndarray
    output: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        self.count = np.asarray(self.count, dtype=np.int64)
        self.calculate_output()

    @classmethod
    def empty(cls, k: int) -> LeafNode:
        """Create a leaf with zero counts for `k` classes."""
        return cls(np.zeros(k, dtype=np.int64))

    @property
    def k(self) -> int:
        """Number of classes."""
        return int(self.count.shape[0])

    @property
    def size(self) -> int:
        """Total weighted number of samples in the leaf."""
        return int(self.count.sum())

    def add(self, label: int, weight: int = 1) -> None:
        """Add `weight` samples of class `label`."""
        self.count[label] += weight

    def add_all(self, labels: np.ndarray, weights: np.ndarray | None = None) -> None:
        """Add many samples at once; `weights` defaults to one per sample."""
        if weights is None:
            weights = np.ones(len(labels), dtype=np.int64)
        np.add.at(self.count, labels, weights)

    def calculate_output(self) -> int:
        """Cache and return the majority class (lowest label on ties)."""
        self.output = int(np.argmax(self.count))
        return self.output

    def impurity(self, rule: SplitRule) -> float:
        """Impurity of the leaf under the given splitting rule."""
        return impurity(self.count, rule)

    def posteriori(self, out: np.ndarray) -> np.ndarray:
        """Write add-one smoothed class probabilities into `out`.

        Leaves of a single tree are usually small, so raw frequencies would
        assign zero probability to classes the leaf never saw. Each class gets
        ``(count[c] + 1) / (size + k)``.

        Args:
            out (np.ndarray): Float buffer of length ``k``, filled in place.

        Returns:
            np.ndarray: `out`.
        """
        out[:] = (self.count + 1.0) / (self.size + self.k)
        return out

    def predict(self, x: np.ndarray) -> LeafNode:  # noqa: ARG002 - uniform node interface
        """A leaf is its own prediction."""
        return self


@dataclass(eq=False)
class InternalNode(ABC):
    """A split node routing samples to one of two children.

    Attributes:
        feature (int): Position of the predictor the split tests.
        score (float): Impurity reduction achieved by the split.
        true_child (Node): Child receiving samples for which `branch` is True.
        false_child (Node): Child receiving the remaining samples.
        count (np.ndarray): Per-class counts of the leaf this node replaced.
        output (int): Majority class of the leaf this node replaced.
    """

    feature: int
    score: float
    true_child: Node
    false_child: Node
    count: np.ndarray
    output: int

    @property
    def size(self) -> int:
        """Total weighted number of samples routed through this node."""
        return int(self.count.sum())

    @abstractmethod
    def branch(self, x: np.ndarray) -> bool:
        """Return True if `x` goes to the true child."""

    def predict(self, x: np.ndarray) -> LeafNode:
        """Walk down from this node to the leaf that `x` falls into."""
        node: Node = self
        while isinstance(node, InternalNode):
            node = node.true_child if node.branch(x) else node.false_child
        return node


@dataclass(eq=False)
class OrdinalNode(InternalNode):
    """Split on a numeric predictor: ``x[feature] <= threshold`` goes to the true child."""

    threshold: float = 0.0

    def branch(self, x: np.ndarray) -> bool:
        return bool(x[self.feature] <= self.threshold)


@dataclass(eq=False)
class NominalNode(InternalNode):
    """Split on a category code: ``x[feature] == value`` goes to the true child."""

    value: float = 0.0

    def branch(self, x: np.ndarray) -> bool:
        return bool(x[self.feature] == self.value)


def iter_leaves(node: Node) -> Iterator[LeafNode]:
    """Yield the leaves under `node`, true side first."""
    stack: list[Node] = [node]
    while stack:
        match stack.pop():
            case LeafNode() as leaf:
                yield leaf
            case InternalNode(true_child=true_child, false_child=false_child):
                stack.append(false_child)
                stack.append(true_child)


def leaf_count(node: Node) -> int:
    """Number of leaves under `node`."""
    return sum(1 for _ in iter_leaves(node))


def depth(node: Node) -> int:
    """Length of the longest root-to-leaf path; a single leaf has depth 0."""
    deepest = 0
    stack: list[tuple[Node, int]] = [(node, 0)]
    while stack:
        current, level = stack.pop()
        if isinstance(current, InternalNode):
            stack.append((current.true_child, level + 1))
            stack.append((current.false_child, level + 1))
        else:
            deepest = max(deepest, level)
    return deepest
