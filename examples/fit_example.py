"""Fits a small churn classifier and shows cartkit logging.

cartkit logging is disabled by default. ``enable_logging()`` returns a
``LoggingHandle`` usable as a context manager; the custom ``SPLIT`` level
(numeric value 15, between DEBUG and INFO) reports every applied split.

Key concepts shown here:

- Best-first growth under a leaf budget (``max_nodes``) versus depth-first
  growth when the budget is unbounded.
- Rule extraction, normalized feature importance and smoothed posteriors.
- Rejected fits are logged at WARNING before the exception propagates.
"""

import numpy as np
import polars as pl

from cartkit import DecisionTree, TreeParams, enable_logging
from cartkit.exceptions import LabelDomainError

rng = np.random.default_rng(0)
n = 200
tenure = rng.uniform(1, 60, n)
tickets = rng.integers(0, 12, n)
plan = rng.choice(["basic", "standard", "premium"], n)
churned = ((tenure < 12) & (tickets > 4)) | ((plan == "basic") & (tenure < 24))

df = pl.DataFrame({
    "tenure_months": tenure,
    "support_tickets": tickets,
    "plan": plan,
    "churned": churned.astype(np.int64),
})

with enable_logging(level="SPLIT", log_format="full"):
    tree = DecisionTree.fit("churned ~ .", df, TreeParams(node_size=5, max_nodes=6))

    print(f"\n{tree}\n")
    for rule in tree.extract_rules():
        print(rule)
    print(f"\nFeature importance: {tree.feature_importance()}")
    print(f"Training metrics: {tree.compute_metrics(df)}")

    posteriori = np.zeros(tree.k)
    label = tree.predict({"tenure_months": 3.0, "support_tickets": 9, "plan": "basic"}, posteriori)
    print(f"Prediction: {label}, posteriori: {posteriori.round(3)}\n")

    # Labels must be exactly 0..k-1; this fit is rejected and logged
    try:
        DecisionTree.fit("churned ~ .", df.with_columns(pl.col("churned") * 2))
    except LabelDomainError as error:
        print(f"Rejected: {error}")

# Logging automatically disabled here
