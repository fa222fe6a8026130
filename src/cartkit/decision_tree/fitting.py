"""Classification tree fitting, prediction, rule extraction and metrics."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import numpy as np
import polars as pl
from loguru import logger
from sklearn.metrics import accuracy_score

from cartkit.decision_tree.builder import TreeBuilder
from cartkit.decision_tree.models import ClassificationRule, Formula, Predicate, SplitRule, TreeParams
from cartkit.decision_tree.nodes import InternalNode, LeafNode, NominalNode, Node, OrdinalNode, depth, leaf_count
from cartkit.decision_tree.preprocessing import (
    FeatureEncoder,
    encode_features,
    encode_frame,
    validate_labels,
)
from cartkit.exceptions import ColumnsNotFoundError, ShapeMismatchError
from cartkit.sparse import SparseArray

type Row = Mapping[str, Any] | SparseArray | Sequence[float] | np.ndarray

_IMPORTANCE_DECIMAL_PLACES: int = 4

# ---------------------------------------------------------------------------
# Public interface -- Classifier
# ---------------------------------------------------------------------------


class DecisionTree:
    """A fitted CART classification tree.

    Build instances with `DecisionTree.fit`. A fitted tree is never modified,
    so it can serve `predict` calls from several threads at once.

    Attributes:
        formula (Formula): Response and predictors the tree was fitted on.
        params (TreeParams): Hyper-parameters used for fitting.
        k (int): Number of classes.
        root (Node): Root node of the tree.
        encoders (list[FeatureEncoder]): Predictor encoders, in predictor order.

    Examples:
        >>> df = pl.DataFrame({"x": [1.0, 2.0, 3.0, 8.0, 9.0, 10.0], "label": [0, 0, 0, 1, 1, 1]})
        >>> tree = DecisionTree.fit("label ~ x", df, TreeParams(node_size=1, max_nodes=None))
        >>> tree.predict({"x": 2.5}), tree.predict({"x": 8.5})
        (0, 1)
    """

    def __init__(
        self,
        *,
        formula: Formula,
        params: TreeParams,
        k: int,
        root: Node,
        encoders: list[FeatureEncoder],
        importance: np.ndarray,
    ) -> None:
        self.formula = formula
        self.params = params
        self.k = k
        self.root = root
        self.encoders = encoders
        self._importance = importance

    @classmethod
    def fit(
        cls,
        formula: Formula | str,
        data: pl.DataFrame,
        params: TreeParams | Mapping[str, str] | None = None,
        *,
        samples: np.ndarray | None = None,
        order: list[np.ndarray | None] | None = None,
    ) -> DecisionTree:
        """Learn a classification tree.

        Every input is validated before the tree is grown; a rejected fit
        leaves nothing behind.

        Args:
            formula (Formula | str): Response and predictors, e.g. ``"label ~ ."``.
            data (pl.DataFrame): Training rows. The response must hold integer
                class labels ``0..k-1``.
            params (TreeParams | Mapping[str, str] | None): Hyper-parameters,
                or string properties for `TreeParams.from_properties`.
                Defaults to `TreeParams()`.
            samples (np.ndarray | None): Per-row sample counts, e.g. bootstrap
                draws from an ensemble. Rows with a zero count are not used.
            order (list[np.ndarray | None] | None): Precomputed ascending row
                order per predictor (see `compute_order`).

        Returns:
            DecisionTree: The fitted tree.

        Raises:
            ColumnsNotFoundError: If the formula names unknown columns.
            DuplicateColumnsError: If the formula repeats a column.
            NullValuesError: If the response or a predictor has nulls.
            LabelDomainError: If the labels are not exactly ``0..k-1`` with ``k >= 2``.
            ShapeMismatchError: If `samples` or `order` has the wrong length.
        """
        formula = Formula.parse(formula) if isinstance(formula, str) else formula
        if params is None:
            params = TreeParams()
        elif not isinstance(params, TreeParams):
            params = TreeParams.from_properties(params)

        try:
            predictors = formula.resolve(data.columns)
            y, k = validate_labels(data[formula.response])
            x, encoders = encode_features(data, predictors)
            builder = TreeBuilder(x, y, k, encoders, params, samples=samples, order=order)
        except ValueError as error:
            logger.warning(
                "Decision tree fit rejected",
                formula=str(formula),
                error_type=type(error).__name__,
                reason=str(error),
            )
            raise

        logger.info(
            "Fitting decision tree",
            formula=str(formula),
            rows=builder.n_samples,
            features=len(predictors),
            classes=k,
            rule=params.split_rule,
            growth=params.growth,
        )
        root, importance = builder.build()
        tree = cls(formula=formula, params=params, k=k, root=root, encoders=encoders, importance=importance)
        logger.info("Decision tree fitted", leaves=tree.leaf_count, depth=tree.depth)
        return tree

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def feature_names(self) -> list[str]:
        """Predictor names in encoded column order."""
        return [encoder.column_name for encoder in self.encoders]

    @property
    def split_rule(self) -> SplitRule:
        """Splitting rule the tree was grown with."""
        return self.params.split_rule

    @property
    def leaf_count(self) -> int:
        """Number of leaves."""
        return leaf_count(self.root)

    @property
    def depth(self) -> int:
        """Longest root-to-leaf path; 0 for a single-leaf tree."""
        return depth(self.root)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict(self, row: Row, posteriori: np.ndarray | None = None) -> int:
        """Predict the class of one row.

        Args:
            row (Row): Either a mapping of predictor name to raw value (as
                returned by ``df.row(i, named=True)``), a `SparseArray` keyed
                by predictor position, or a vector of encoded predictor values
                in predictor order. Absent `SparseArray` positions read as 0.0.
            posteriori (np.ndarray | None): Optional float buffer of length
                ``k``; receives the add-one smoothed class probabilities of the
                leaf. These are crude for a single tree and mainly meant for
                averaging across an ensemble.

        Returns:
            int: The predicted class label.

        Raises:
            ShapeMismatchError: If `posteriori` or a vector `row` has the wrong length.
            ColumnsNotFoundError: If a mapping `row` lacks a predictor.
            TypeError: If `posteriori` is not a floating-point array.
        """
        if posteriori is not None:
            if not np.issubdtype(posteriori.dtype, np.floating):
                raise TypeError(f"posteriori must be a floating-point array, got dtype {posteriori.dtype}")
            if len(posteriori) != self.k:
                raise ShapeMismatchError("posteriori", self.k, len(posteriori))
        leaf = self._leaf_for(self._encode_row(row))
        if posteriori is not None:
            leaf.posteriori(posteriori)
        return leaf.output

    def predict_frame(self, df: pl.DataFrame) -> np.ndarray:
        """Predict the class of every row of a DataFrame.

        Args:
            df (pl.DataFrame): Rows containing all predictor columns.

        Returns:
            np.ndarray: int64 array of predicted labels.
        """
        x = self._encode_frame(df)
        return np.array([self._leaf_for(row).output for row in x], dtype=np.int64)

    def predict_proba(self, df: pl.DataFrame) -> np.ndarray:
        """Smoothed posterior class probabilities for every row of a DataFrame.

        Args:
            df (pl.DataFrame): Rows containing all predictor columns.

        Returns:
            np.ndarray: ``(n_rows, k)`` array; each row sums to 1.
        """
        x = self._encode_frame(df)
        posteriori = np.empty((len(x), self.k), dtype=np.float64)
        for i, row in enumerate(x):
            self._leaf_for(row).posteriori(posteriori[i])
        return posteriori

    # ------------------------------------------------------------------
    # Interpretation
    # ------------------------------------------------------------------

    def importance(self) -> np.ndarray:
        """Sum of impurity reductions of the splits on each predictor."""
        return self._importance.copy()

    def feature_importance(self) -> dict[str, float]:
        """Normalized importance of the predictors the tree actually splits on.

        Returns:
            dict[str, float]: Predictor name to rounded importance, sorted in
                descending order. Values sum to 1.0; empty for a single-leaf tree.
        """
        total = float(self._importance.sum())
        if total <= 0.0:
            return {}
        paired = [
            (name, round(float(score) / total, _IMPORTANCE_DECIMAL_PLACES))
            for name, score in zip(self.feature_names, self._importance, strict=True)
        ]
        filtered = [(name, score) for name, score in paired if score > 0.0]
        filtered.sort(key=lambda item: item[1], reverse=True)
        if filtered:
            # Absorb rounding drift into the last entry so the values sum to exactly 1.
            others_sum = sum(score for _, score in filtered[:-1])
            filtered[-1] = (filtered[-1][0], round(1.0 - others_sum, _IMPORTANCE_DECIMAL_PLACES))
        return dict(filtered)

    def extract_rules(self) -> list[ClassificationRule]:
        """One rule per leaf, from the root down, true branches first.

        Returns:
            list[ClassificationRule]: Rules whose predicates use predictor
                names, thresholds and decoded category labels.
        """
        rules: list[ClassificationRule] = []
        stack: list[tuple[Node, list[Predicate]]] = [(self.root, [])]
        while stack:
            node, path = stack.pop()
            match node:
                case LeafNode():
                    rules.append(
                        ClassificationRule(
                            predicates=path,
                            prediction=node.output,
                            samples=node.size,
                            confidence=_confidence(node.count, node.output),
                        )
                    )
                case InternalNode():
                    true_predicate, false_predicate = self._predicates(node)
                    stack.append((node.false_child, [*path, false_predicate]))
                    stack.append((node.true_child, [*path, true_predicate]))
        return rules

    def compute_metrics(self, df: pl.DataFrame) -> dict[str, float]:
        """Evaluate the tree on labeled rows.

        Args:
            df (pl.DataFrame): Rows with the predictor and response columns.

        Returns:
            dict[str, float]: ``{"accuracy": <float>}``.
        """
        if self.formula.response not in df.columns:
            raise ColumnsNotFoundError(missing_columns=[self.formula.response], available_columns=df.columns)
        actual = df[self.formula.response].to_numpy(allow_copy=True)
        return {"accuracy": float(accuracy_score(actual, self.predict_frame(df)))}

    def __str__(self) -> str:
        """Indented rendering, one line per node: ``node), split, n, output, (class proportions)``."""
        lines = ["n=" + str(self.root.size), "node), split, n, output, (proportions)", "* denotes terminal node", ""]
        stack: list[tuple[Node, int, int, str]] = [(self.root, 1, 0, "root")]
        while stack:
            node, number, level, label = stack.pop()
            proportions = " ".join(f"{p:.4f}" for p in _proportions(node.count))
            terminal = " *" if isinstance(node, LeafNode) else ""
            lines.append(f"{'  ' * level}{number}) {label} {node.size} {node.output} ({proportions}){terminal}")
            if isinstance(node, InternalNode):
                true_predicate, false_predicate = self._predicates(node)
                stack.append((node.false_child, 2 * number + 1, level + 1, str(false_predicate)))
                stack.append((node.true_child, 2 * number, level + 1, str(true_predicate)))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return (
            f"DecisionTree(formula={str(self.formula)!r}, k={self.k}, "
            f"leaves={self.leaf_count}, depth={self.depth}, rule={self.split_rule!r})"
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _leaf_for(self, x: np.ndarray) -> LeafNode:
        return self.root.predict(x)

    def _encode_row(self, row: Row) -> np.ndarray:
        """Convert a single row to an encoded float vector in predictor order."""
        p = len(self.encoders)
        if isinstance(row, SparseArray):
            x = np.zeros(p, dtype=np.float64)
            for entry in row:
                if 0 <= entry.i < p:
                    x[entry.i] = entry.x
            return x
        if isinstance(row, Mapping):
            missing = [name for name in self.feature_names if name not in row]
            if missing:
                raise ColumnsNotFoundError(missing_columns=missing, available_columns=list(row))
            return np.array(
                [encoder.encode_value(row[encoder.column_name]) for encoder in self.encoders],
                dtype=np.float64,
            )
        x = np.asarray(row, dtype=np.float64)
        if x.shape != (p,):
            raise ShapeMismatchError("row", p, x.size)
        return x

    def _encode_frame(self, df: pl.DataFrame) -> np.ndarray:
        missing = [name for name in self.feature_names if name not in df.columns]
        if missing:
            raise ColumnsNotFoundError(missing_columns=missing, available_columns=df.columns)
        return encode_frame(df, self.encoders)

    def _predicates(self, node: InternalNode) -> tuple[Predicate, Predicate]:
        """Predicates describing the true and false branches of `node`."""
        encoder = self.encoders[node.feature]
        match node:
            case OrdinalNode(threshold=threshold):
                return (
                    Predicate(variable=encoder.column_name, operator="<=", value=threshold),
                    Predicate(variable=encoder.column_name, operator=">", value=threshold),
                )
            case NominalNode(value=value):
                label = encoder.decode_value(value)
                return (
                    Predicate(variable=encoder.column_name, operator="==", value=label),
                    Predicate(variable=encoder.column_name, operator="!=", value=label),
                )
        raise TypeError(f"Unexpected node type: {type(node).__name__}")


def _proportions(count: np.ndarray) -> np.ndarray:
    total = count.sum()
    return count / total if total > 0 else np.zeros(len(count), dtype=np.float64)


def _confidence(count: np.ndarray, output: int) -> float:
    total = int(count.sum())
    return float(count[output] / total) if total > 0 else 0.0
