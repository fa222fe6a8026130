"""Tests for TreeBuilder: split search, in-place partitioning and both growth policies."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from cartkit.decision_tree.builder import TreeBuilder
from cartkit.decision_tree.models import TreeParams
from cartkit.decision_tree.nodes import InternalNode, LeafNode, NominalNode, OrdinalNode, iter_leaves, leaf_count
from cartkit.decision_tree.preprocessing import compute_order, encode_features
from cartkit.decision_tree.split import Split
from cartkit.exceptions import LabelDomainError, ShapeMismatchError

UNBOUNDED = TreeParams(node_size=1, max_nodes=None)


def _builder(
    df: pl.DataFrame,
    params: TreeParams = UNBOUNDED,
    *,
    samples: np.ndarray | None = None,
    order: list[np.ndarray | None] | None = None,
) -> TreeBuilder:
    """Builder over every column except ``label``."""
    predictors = [name for name in df.columns if name != "label"]
    x, encoders = encode_features(df, predictors)
    y = df["label"].to_numpy()
    k = int(y.max()) + 1
    return TreeBuilder(x, y, k, encoders, params, samples=samples, order=order)


def _separable() -> pl.DataFrame:
    return pl.DataFrame({"x": [1.0, 2.0, 3.0, 8.0, 9.0, 10.0], "label": [0, 0, 0, 1, 1, 1]})


def _alternating(n: int = 8) -> pl.DataFrame:
    """Labels alternate along x, so every impure range can still be split until all leaves are pure."""
    return pl.DataFrame({"x": [float(i) for i in range(n)], "label": [i % 2 for i in range(n)]})


class TestSplitSearch:
    """Tests for find_best_split."""

    def test_threshold_is_midpoint_between_distinct_values(self) -> None:
        """The six-row example splits once between 3 and 8."""
        # Arrange
        builder = _builder(_separable())
        root = builder.root
        assert isinstance(root, LeafNode)

        # Act
        split = builder.find_best_split(root, 0, builder.n_samples)

        # Assert
        assert split is not None
        with check:
            assert split.feature == 0
        with check:
            assert split.kind == "numeric"
        with check:
            assert split.value == pytest.approx(5.5)
        with check:
            assert split.score == pytest.approx(0.5)
        with check:
            assert (split.true_size, split.false_size) == (3, 3)
        with check:
            assert (split.lo, split.hi) == (0, 6)

    def test_node_size_limits_candidate_splits(self) -> None:
        """No split is proposed when a side would hold fewer than node_size samples."""
        builder = _builder(_separable(), TreeParams(node_size=4, max_nodes=None))
        root = builder.root
        assert isinstance(root, LeafNode)

        assert builder.find_best_split(root, 0, builder.n_samples) is None

    def test_pure_node_is_not_split(self) -> None:
        """A node with zero impurity has no improving split."""
        df = pl.DataFrame({"x": [1.0, 2.0, 3.0, 4.0], "label": [0, 0, 0, 0]})
        x, encoders = encode_features(df, ["x"])
        builder = TreeBuilder(x, df["label"].to_numpy(), 2, encoders, UNBOUNDED)
        root = builder.root
        assert isinstance(root, LeafNode)

        assert builder.find_best_split(root, 0, 4) is None

    def test_constant_feature_offers_no_split(self) -> None:
        """A feature with a single distinct value has no boundary to split on."""
        df = pl.DataFrame({"x": [5.0, 5.0, 5.0, 5.0], "label": [0, 1, 0, 1]})
        builder = _builder(df)
        root = builder.root
        assert isinstance(root, LeafNode)

        assert builder.find_best_split(root, 0, 4) is None

    def test_nominal_split_is_one_vs_rest(self) -> None:
        """A nominal predictor splits off the single category that best separates the classes."""
        # Arrange
        df = pl.DataFrame({"plan": ["a", "a", "b", "b", "c", "c"], "label": [0, 0, 1, 1, 0, 0]})
        builder = _builder(df)
        root = builder.root
        assert isinstance(root, LeafNode)

        # Act
        split = builder.find_best_split(root, 0, 6)

        # Assert
        assert split is not None
        with check:
            assert split.kind == "nominal"
        with check:
            assert split.value == 1.0, "Category 'b' has code 1"
        with check:
            assert (split.true_size, split.false_size) == (2, 4)

    def test_best_feature_wins(self) -> None:
        """The predictor with the larger impurity reduction is chosen."""
        df = pl.DataFrame({
            "noise": [1.0, 2.0, 1.0, 2.0, 1.0, 2.0],
            "signal": [1.0, 2.0, 3.0, 8.0, 9.0, 10.0],
            "label": [0, 0, 0, 1, 1, 1],
        })
        builder = _builder(df)
        root = builder.root
        assert isinstance(root, LeafNode)

        split = builder.find_best_split(root, 0, 6)

        assert split is not None and split.feature == 1


class TestApplySplit:
    """Tests for split: in-place partitioning and leaf replacement."""

    def test_partition_is_lossless_and_ordered(self) -> None:
        """Rows satisfying the split move to the front of the range and no row is lost."""
        # Arrange - interleave the classes so the partition has to move rows
        df = pl.DataFrame({"x": [9.0, 1.0, 8.0, 2.0, 10.0, 3.0], "label": [1, 0, 1, 0, 1, 0]})
        builder = _builder(df)
        x = df["x"].to_numpy()
        root = builder.root
        assert isinstance(root, LeafNode)
        before = builder.index
        split = builder.find_best_split(root, 0, builder.n_samples)
        assert split is not None

        # Act
        true_split, false_split = builder.split(split)

        # Assert
        after = builder.index
        mid = split.lo + split.true_size
        with check:
            assert sorted(after.tolist()) == sorted(before.tolist()), "Partition must not drop or duplicate rows"
        with check:
            assert (x[after[:mid]] <= split.value).all()
        with check:
            assert (x[after[mid:]] > split.value).all()
        with check:
            assert after[:mid].tolist() == [1, 3, 5], "Each side keeps its original relative order"
        with check:
            assert true_split is None and false_split is None, "Both children are pure"

    def test_leaf_is_replaced_by_internal_node(self) -> None:
        """After a split the root is an internal node whose children are predictable leaves."""
        # Arrange
        builder = _builder(_separable())
        root = builder.root
        assert isinstance(root, LeafNode)
        split = builder.find_best_split(root, 0, 6)
        assert split is not None

        # Act
        builder.split(split)

        # Assert
        node = builder.root
        assert isinstance(node, OrdinalNode)
        with check:
            assert node.threshold == pytest.approx(5.5)
        with check:
            assert isinstance(node.true_child, LeafNode) and node.true_child.output == 0
        with check:
            assert isinstance(node.false_child, LeafNode) and node.false_child.output == 1
        with check:
            assert node.count.tolist() == [3, 3]


class TestBuild:
    """Tests for build and the growth policies."""

    def test_separable_example_grows_one_split(self) -> None:
        """Unbounded growth on the six-row example yields a stump with two pure leaves."""
        # Act
        root, importance = _builder(_separable()).build()

        # Assert
        assert isinstance(root, OrdinalNode)
        with check:
            assert root.threshold == pytest.approx(5.5)
        with check:
            assert [leaf.count.tolist() for leaf in iter_leaves(root)] == [[3, 0], [0, 3]]
        with check:
            assert importance.tolist() == pytest.approx([0.5])

    def test_depth_first_splits_until_pure(self) -> None:
        """Without a leaf budget every impure node is split."""
        root, _ = _builder(_alternating()).build()

        with check:
            assert leaf_count(root) == 8
        with check:
            assert all(leaf.impurity("gini") == 0.0 for leaf in iter_leaves(root))

    @pytest.mark.parametrize(("max_nodes", "expected_leaves"), [(2, 2), (3, 3), (5, 5), (8, 8), (50, 8)])
    def test_best_first_respects_leaf_budget(self, max_nodes: int, expected_leaves: int) -> None:
        """Best-first growth stops at ``min(max_nodes, reachable leaves)``.

        Args:
            max_nodes (int): Leaf budget.
            expected_leaves (int): Expected number of leaves.
        """
        root, _ = _builder(_alternating(), TreeParams(node_size=1, max_nodes=max_nodes)).build()

        assert leaf_count(root) == expected_leaves

    def test_best_first_applies_highest_reduction_first(self) -> None:
        """With a budget of two leaves, the single applied split is the globally best one."""
        # Arrange - splitting at 3.5 is perfect, any other boundary is not
        df = pl.DataFrame({"x": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0], "label": [0, 0, 0, 1, 1, 1, 1]})

        # Act
        root, _ = _builder(df, TreeParams(node_size=1, max_nodes=2)).build()

        # Assert
        assert isinstance(root, OrdinalNode)
        assert root.threshold == pytest.approx(3.5)

    def test_leaf_sizes_sum_to_weighted_sample_count(self) -> None:
        """Leaves partition the weighted samples; zero-count rows are left out."""
        # Arrange
        samples = np.array([2, 1, 0, 3, 1, 1, 0, 2])
        builder = _builder(_alternating(), samples=samples)

        # Act
        n_used = builder.n_samples
        root, _ = builder.build()

        # Assert
        with check:
            assert n_used == 6
        with check:
            assert sum(leaf.size for leaf in iter_leaves(root)) == int(samples.sum())
        with check:
            assert root.size == int(samples.sum())

    def test_every_leaf_respects_node_size(self) -> None:
        """No split creates a leaf with fewer than node_size samples."""
        rng = np.random.default_rng(7)
        df = pl.DataFrame({"a": rng.normal(size=60), "b": rng.normal(size=60), "label": rng.integers(0, 3, size=60)})

        root, _ = _builder(df, TreeParams(node_size=5, max_nodes=None)).build()

        assert all(leaf.size >= 5 for leaf in iter_leaves(root))

    def test_grown_leaves_are_irreducible_on_noisy_data(self) -> None:
        """After growth every leaf's range holds exactly its rows and admits no further split."""
        # Arrange - noisy labels over mixed predictors, so leaves stay impure
        rng = np.random.default_rng(19)
        n = 120
        df = pl.DataFrame({
            "a": rng.normal(size=n).round(1),
            "b": rng.integers(0, 6, size=n).astype(np.float64),
            "plan": rng.choice(["basic", "plus", "pro"], size=n).tolist(),
            "label": rng.integers(0, 3, size=n),
        })
        x, encoders = encode_features(df, ["a", "b", "plan"])
        builder = _builder(df, TreeParams(node_size=4, max_nodes=None))
        root_leaf = builder.root
        assert isinstance(root_leaf, LeafNode)

        # Act - depth-first growth driven through the public split API
        pending = [builder.find_best_split(root_leaf, 0, builder.n_samples)]
        while pending:
            candidate = pending.pop()
            if candidate is not None:
                true_split, false_split = builder.split(candidate)
                pending.extend([false_split, true_split])

        # Assert - leaves own consecutive ranges, true side first
        root = builder.root
        index = builder.index
        lo = 0
        for leaf in iter_leaves(root):
            hi = lo + leaf.size
            rows = index[lo:hi]
            with check:
                assert all(root.predict(x[row]) is leaf for row in rows), "Every row routes to its own leaf"
            with check:
                assert builder.find_best_split(leaf, lo, hi) is None, f"Leaf over [{lo}, {hi}) can still be split"
            lo = hi
        with check:
            assert lo == n
        with check:
            assert leaf_count(root) > 1, "The data should admit at least one split"

    def test_split_search_restricts_column_order_to_the_node(self) -> None:
        """Searching a child range only sees that child's rows, whatever the rest of the data holds."""
        # Arrange - the false side of the first split is pure, the true side
        # splits on b only among its own rows
        df = pl.DataFrame({
            "a": [1.0, 1.0, 1.0, 1.0, 9.0, 9.0, 9.0, 9.0],
            "b": [4.0, 1.0, 3.0, 2.0, 0.5, 5.0, 0.7, 6.0],
            "label": [1, 0, 1, 0, 2, 2, 2, 2],
        })
        builder = _builder(df)
        root_leaf = builder.root
        assert isinstance(root_leaf, LeafNode)
        first = builder.find_best_split(root_leaf, 0, builder.n_samples)
        assert first is not None and first.feature == 0

        # Act
        true_split, false_split = builder.split(first)

        # Assert
        assert true_split is not None
        with check:
            assert false_split is None
        with check:
            assert (true_split.lo, true_split.hi) == (0, 4)
        with check:
            assert true_split.feature == 1
        with check:
            assert true_split.value == pytest.approx(2.5), "Boundary between 2.0 and 3.0 within the node"
        with check:
            assert (true_split.true_size, true_split.false_size) == (2, 2)

    def test_precomputed_order_gives_the_same_tree(self) -> None:
        """Passing the column order computed up front does not change the result."""
        # Arrange
        rng = np.random.default_rng(3)
        df = pl.DataFrame({"a": rng.normal(size=40), "b": rng.normal(size=40), "label": rng.integers(0, 2, size=40)})
        x, encoders = encode_features(df, ["a", "b"])
        order = compute_order(x, encoders)

        # Act
        default_root, default_importance = _builder(df).build()
        ordered_root, ordered_importance = _builder(df, order=order).build()

        # Assert
        with check:
            assert [leaf.count.tolist() for leaf in iter_leaves(default_root)] == [
                leaf.count.tolist() for leaf in iter_leaves(ordered_root)
            ]
        with check:
            assert default_importance.tolist() == pytest.approx(ordered_importance.tolist())

    def test_mtry_with_seed_is_deterministic(self) -> None:
        """Feature subsampling is reproducible for a fixed seed."""
        rng = np.random.default_rng(11)
        df = pl.DataFrame({
            "a": rng.normal(size=50),
            "b": rng.normal(size=50),
            "c": rng.normal(size=50),
            "label": rng.integers(0, 2, size=50),
        })
        params = TreeParams(node_size=2, max_nodes=None, mtry=1, seed=42)

        first, _ = _builder(df, params).build()
        second, _ = _builder(df, params).build()

        assert [leaf.count.tolist() for leaf in iter_leaves(first)] == [
            leaf.count.tolist() for leaf in iter_leaves(second)
        ]

    def test_builder_is_single_use(self) -> None:
        """A second build call raises RuntimeError."""
        builder = _builder(_separable())
        builder.build()

        with pytest.raises(RuntimeError, match="single-use"):
            builder.build()

    def test_nominal_tree_structure(self) -> None:
        """A nominal predictor produces NominalNode splits."""
        df = pl.DataFrame({"plan": ["a", "a", "b", "b", "c", "c"], "label": [0, 0, 1, 1, 2, 2]})

        root, _ = _builder(df).build()

        with check:
            assert isinstance(root, NominalNode)
        with check:
            assert leaf_count(root) == 3
        with check:
            assert isinstance(root, InternalNode) and isinstance(root.false_child, InternalNode)


class TestBuilderValidation:
    """Tests for constructor argument validation."""

    @pytest.mark.parametrize(
        ("kwargs", "name"),
        [
            ({"samples": np.ones(5, dtype=np.int64)}, "samples"),
            ({"order": [None, None]}, "order"),
        ],
        ids=["samples", "order"],
    )
    def test_wrong_lengths_raise(self, kwargs: dict[str, object], name: str) -> None:
        """Caller-supplied arrays must match the training data.

        Args:
            kwargs (dict[str, object]): Constructor keyword overrides.
            name (str): Expected offending argument name.
        """
        with pytest.raises(ShapeMismatchError) as excinfo:
            _builder(_separable(), **kwargs)  # type: ignore[arg-type]

        assert excinfo.value.name == name

    def test_label_length_mismatch_raises(self) -> None:
        """Labels must have one entry per row."""
        x, encoders = encode_features(_separable(), ["x"])

        with pytest.raises(ShapeMismatchError):
            TreeBuilder(x, np.array([0, 1]), 2, encoders, UNBOUNDED)

    def test_all_zero_samples_raise(self) -> None:
        """At least one row must be used."""
        with pytest.raises(ValueError, match="positive count"):
            _builder(_separable(), samples=np.zeros(6, dtype=np.int64))

    @pytest.mark.parametrize(
        "labels",
        [[0, 0, 0, 1, 1, 2], [0, 0, -1, 1, 1, 1]],
        ids=["above-k", "negative"],
    )
    def test_labels_outside_class_range_raise(self, labels: list[int]) -> None:
        """Labels must lie in 0..k-1 for the declared k.

        Args:
            labels (list[int]): Labels with one entry outside ``0..1``.
        """
        x, encoders = encode_features(_separable(), ["x"])

        with pytest.raises(LabelDomainError, match=r"0\.\.1"):
            TreeBuilder(x, np.array(labels), 2, encoders, UNBOUNDED)


def test_split_ordering_prefers_score_then_arrival() -> None:
    """Splits order by descending score; equal scores keep arrival order."""
    leaf = LeafNode(np.array([1, 1]))

    def make(score: float, sequence: int) -> Split:
        return Split(
            leaf=leaf,
            feature=0,
            kind="numeric",
            value=0.0,
            score=score,
            lo=0,
            hi=2,
            true_size=1,
            false_size=1,
            sequence=sequence,
        )

    high, early_tie, late_tie = make(0.4, 5), make(0.2, 1), make(0.2, 3)

    assert sorted([late_tie, early_tie, high]) == [high, early_tie, late_tie]
