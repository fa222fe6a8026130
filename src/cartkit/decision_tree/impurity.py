"""Node impurity measures and impurity reduction for the supported splitting rules."""

from __future__ import annotations

import numpy as np

from cartkit.decision_tree.models import SplitRule


def gini(count: np.ndarray) -> float:
    """Gini impurity ``1 - sum(p_c ** 2)`` of a per-class count vector."""
    n = float(count.sum())
    if n <= 0.0:
        return 0.0
    p = count / n
    return float(1.0 - np.dot(p, p))


def entropy(count: np.ndarray) -> float:
    """Entropy ``-sum(p_c * log2(p_c))`` of a per-class count vector."""
    n = float(count.sum())
    if n <= 0.0:
        return 0.0
    p = count[count > 0] / n
    return float(-np.sum(p * np.log2(p)))


def classification_error(count: np.ndarray) -> float:
    """Misclassification rate ``1 - max(p_c)`` of a per-class count vector."""
    n = float(count.sum())
    if n <= 0.0:
        return 0.0
    return float(1.0 - count.max() / n)


def impurity(count: np.ndarray, rule: SplitRule) -> float:
    """Compute the impurity of a node from its per-class counts.

    ``"gain_ratio"`` scores nodes by entropy and normalizes the gain at split
    time (see `impurity_reduction`).

    Args:
        count (np.ndarray): Per-class (weighted) sample counts, length ``k``.
        rule (SplitRule): The splitting rule of the tree.

    Returns:
        float: The node impurity; 0.0 for an empty node.

    Raises:
        ValueError: If `rule` is not a recognized splitting rule.
    """
    if rule == "gini":
        return gini(count)
    if rule in {"entropy", "gain_ratio"}:
        return entropy(count)
    if rule == "classification_error":
        return classification_error(count)
    raise ValueError(f"Unexpected split rule: {rule!r}")


def split_info(true_size: float, false_size: float) -> float:
    """Entropy of the two-way partition sizes (the gain ratio denominator)."""
    return entropy(np.array([true_size, false_size], dtype=np.float64))


def impurity_reduction(
    rule: SplitRule,
    parent_impurity: float,
    true_count: np.ndarray,
    false_count: np.ndarray,
) -> float:
    """Impurity reduction achieved by splitting a node into two children.

    Args:
        rule (SplitRule): The splitting rule of the tree.
        parent_impurity (float): Impurity of the node being split.
        true_count (np.ndarray): Per-class counts routed to the true child.
        false_count (np.ndarray): Per-class counts routed to the false child.

    Returns:
        float: ``parent - (nt/n) * I(true) - (nf/n) * I(false)``, divided by
            the split information for ``"gain_ratio"``.
    """
    nt = float(true_count.sum())
    nf = float(false_count.sum())
    n = nt + nf
    if n <= 0.0:
        return 0.0
    gain = parent_impurity - (nt / n) * impurity(true_count, rule) - (nf / n) * impurity(false_count, rule)
    if rule == "gain_ratio":
        info = split_info(nt, nf)
        return gain / info if info > 0.0 else 0.0
    return gain


def impurity_reduction_scan(
    rule: SplitRule,
    parent_impurity: float,
    true_counts: np.ndarray,
    total_count: np.ndarray,
) -> np.ndarray:
    """Vectorized `impurity_reduction` over many candidate partitions at once.

    Args:
        rule (SplitRule): The splitting rule of the tree.
        parent_impurity (float): Impurity of the node being split.
        true_counts (np.ndarray): Shape ``(m, k)``; row ``j`` holds the per-class
            counts routed to the true child by candidate ``j``.
        total_count (np.ndarray): Shape ``(k,)``; per-class counts of the node.

    Returns:
        np.ndarray: Shape ``(m,)`` impurity reductions, one per candidate.
    """
    false_counts = total_count[np.newaxis, :] - true_counts
    nt = true_counts.sum(axis=1)
    nf = false_counts.sum(axis=1)
    n = nt + nf
    gain = (
        parent_impurity
        - _safe_divide(nt, n) * _impurity_rows(true_counts, nt, rule)
        - _safe_divide(nf, n) * _impurity_rows(false_counts, nf, rule)
    )
    if rule == "gain_ratio":
        info = _entropy_rows(np.column_stack([nt, nf]), n)
        gain = np.where(info > 0.0, _safe_divide(gain, info), 0.0)
    return gain


def _impurity_rows(counts: np.ndarray, sizes: np.ndarray, rule: SplitRule) -> np.ndarray:
    """Row-wise impurity of a ``(m, k)`` count matrix with row totals `sizes`."""
    if rule == "gini":
        p = _safe_divide(counts, sizes[:, np.newaxis])
        return np.where(sizes > 0, 1.0 - np.sum(p * p, axis=1), 0.0)
    if rule in {"entropy", "gain_ratio"}:
        return _entropy_rows(counts, sizes)
    if rule == "classification_error":
        return np.where(sizes > 0, 1.0 - _safe_divide(counts.max(axis=1), sizes), 0.0)
    raise ValueError(f"Unexpected split rule: {rule!r}")


def _entropy_rows(counts: np.ndarray, sizes: np.ndarray) -> np.ndarray:
    """Row-wise base-2 entropy of a ``(m, k)`` count matrix."""
    p = _safe_divide(counts, sizes[:, np.newaxis])
    with np.errstate(divide="ignore", invalid="ignore"):
        terms = np.where(p > 0.0, p * np.log2(np.where(p > 0.0, p, 1.0)), 0.0)
    return -np.sum(terms, axis=1)


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    """Element-wise division that yields 0 where the denominator is 0."""
    numerator = np.asarray(numerator, dtype=np.float64)
    denominator = np.asarray(denominator, dtype=np.float64)
    out = np.zeros(np.broadcast(numerator, denominator).shape, dtype=np.float64)
    np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out
