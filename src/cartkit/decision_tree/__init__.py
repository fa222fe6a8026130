"""Decision tree sub-package: models, preprocessing, tree growth and fitting."""

from __future__ import annotations

from cartkit.decision_tree.builder import BuildResult, TreeBuilder
from cartkit.decision_tree.fitting import DecisionTree
from cartkit.decision_tree.models import (
    ClassificationRule,
    Formula,
    GrowthPolicy,
    Predicate,
    PredicateOp,
    SplitRule,
    TreeParams,
)
from cartkit.decision_tree.nodes import InternalNode, LeafNode, NominalNode, Node, OrdinalNode
from cartkit.decision_tree.preprocessing import ColumnKind, FeatureEncoder, compute_order
from cartkit.decision_tree.split import Split

__all__ = [
    "BuildResult",
    "ClassificationRule",
    "ColumnKind",
    "DecisionTree",
    "FeatureEncoder",
    "Formula",
    "GrowthPolicy",
    "InternalNode",
    "LeafNode",
    "Node",
    "NominalNode",
    "OrdinalNode",
    "Predicate",
    "PredicateOp",
    "Split",
    "SplitRule",
    "TreeBuilder",
    "TreeParams",
    "compute_order",
]
