"""Split candidates proposed by the split search."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from cartkit.decision_tree.nodes import InternalNode, LeafNode, NominalNode, Node, OrdinalNode
from cartkit.decision_tree.preprocessing import ColumnKind


@dataclass(frozen=True, eq=False)
class Split:
    """A proposed binary split of the rows ``index[lo:hi]`` owned by `leaf`.

    Attributes:
        leaf (LeafNode): The leaf the split would replace.
        feature (int): Position of the predictor to split on.
        kind (ColumnKind): ``"numeric"`` splits by threshold, ``"nominal"`` by category.
        value (float): Threshold (numeric) or category code (nominal).
        score (float): Impurity reduction of the split.
        lo (int): Start of the leaf's range in the index buffer.
        hi (int): End (exclusive) of the leaf's range in the index buffer.
        true_size (int): Weighted number of samples routed to the true child.
        false_size (int): Weighted number of samples routed to the false child.
        sequence (int): Arrival order, used to break score ties.
    """

    leaf: LeafNode
    feature: int
    kind: ColumnKind
    value: float
    score: float
    lo: int
    hi: int
    true_size: int
    false_size: int
    sequence: int = 0

    @property
    def sort_key(self) -> tuple[float, int]:
        """Min-heap key: highest score first, then earliest arrival."""
        return (-self.score, self.sequence)

    def __lt__(self, other: Split) -> bool:
        return self.sort_key < other.sort_key

    def predicate(self, values: np.ndarray) -> np.ndarray:
        """Evaluate the split on a column slice; True marks rows for the true child."""
        if self.kind == "numeric":
            return values <= self.value
        return values == self.value

    def to_node(self, true_child: Node, false_child: Node) -> InternalNode:
        """Build the internal node that replaces `leaf` once the split is applied."""
        if self.kind == "numeric":
            return OrdinalNode(
                feature=self.feature,
                score=self.score,
                true_child=true_child,
                false_child=false_child,
                count=self.leaf.count,
                output=self.leaf.output,
                threshold=self.value,
            )
        return NominalNode(
            feature=self.feature,
            score=self.score,
            true_child=true_child,
            false_child=false_child,
            count=self.leaf.count,
            output=self.leaf.output,
            value=self.value,
        )
