"""cartkit: CART classification trees on Polars DataFrames."""

from loguru import logger

from cartkit.decision_tree import DecisionTree, Formula, TreeParams
from cartkit.logging import PACKAGE_NAME, enable_logging
from cartkit.sparse import SparseArray

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the cartkit module by default

__all__ = [
    "DecisionTree",
    "Formula",
    "SparseArray",
    "TreeParams",
    "enable_logging",
]
