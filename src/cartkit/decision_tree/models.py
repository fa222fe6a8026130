"""Pydantic configuration models, formulas and rule models for the decision tree module."""

from __future__ import annotations

import operator
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cartkit.exceptions import ColumnsNotFoundError, DuplicateColumnsError

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

type SplitRule = Literal["gini", "entropy", "gain_ratio", "classification_error"]

type GrowthPolicy = Literal["depth_first", "best_first"]

type PredicateOp = Literal["<=", ">", "==", "!="]

# ---------------------------------------------------------------------------
# Hyper-parameters
# ---------------------------------------------------------------------------

_PROPERTY_PREFIX: str = "cart."
_UNBOUNDED_VALUES: frozenset[str] = frozenset({"unbounded", "inf", "infinity", "none", ""})


class TreeParams(BaseModel):
    """Hyper-parameters of a classification tree.

    Attributes:
        split_rule (SplitRule): Impurity measure used to score splits.
        node_size (int): Minimum weighted number of samples on each side of a
            split, i.e. the minimum leaf size.
        max_nodes (int | None): Maximum number of leaf nodes. `None` means
            unbounded and grows the tree depth-first; a finite budget grows
            it best-first.
        mtry (int | None): Number of predictors sampled as split candidates
            at each node. `None` considers every predictor. Values above the
            number of predictors are clamped.
        seed (int | None): Seed for predictor sampling when `mtry` is set.

    Examples:
        >>> params = TreeParams(split_rule="entropy", node_size=1, max_nodes=None)
        >>> params.growth
        'depth_first'
        >>> TreeParams.from_properties({"cart.split.rule": "GINI", "cart.max.nodes": "10"}).max_nodes
        10
    """

    model_config = ConfigDict(frozen=True)

    split_rule: SplitRule = Field(default="gini", description="Impurity measure used to score candidate splits.")
    node_size: int = Field(default=5, ge=1, description="Minimum weighted sample count on each side of a split.")
    max_nodes: int | None = Field(
        default=6,
        ge=2,
        description="Maximum number of leaves; None grows the tree depth-first without a budget.",
    )
    mtry: int | None = Field(default=None, ge=1, description="Predictors sampled per split; None uses all.")
    seed: int | None = Field(default=None, description="Seed of the predictor-sampling random generator.")

    @field_validator("split_rule", mode="before")
    @classmethod
    def _normalize_split_rule(cls, value: Any) -> Any:
        """Accept upper-case rule names such as ``"GINI"``.

        Args:
            value (Any): The raw split rule.

        Returns:
            Any: The lower-cased rule when `value` is a string, else `value` unchanged.
        """
        return value.strip().lower() if isinstance(value, str) else value

    @property
    def growth(self) -> GrowthPolicy:
        """Growth policy implied by `max_nodes`."""
        return "depth_first" if self.max_nodes is None else "best_first"

    @classmethod
    def from_properties(cls, props: Mapping[str, str]) -> TreeParams:
        """Build parameters from string properties.

        Recognized keys are ``cart.split.rule``, ``cart.node.size``,
        ``cart.max.nodes``, ``cart.mtry`` and ``cart.seed``. Missing keys take
        the field defaults. ``cart.max.nodes`` set to ``"unbounded"`` (or
        ``"inf"``, or a non-positive number) selects depth-first growth, and a
        non-positive ``cart.mtry`` means all predictors.

        Args:
            props (Mapping[str, str]): Property mapping, e.g. parsed from a file.

        Returns:
            TreeParams: The validated parameters.

        Raises:
            pydantic.ValidationError: If a value cannot be parsed or is out of range.
        """
        values: dict[str, Any] = {}
        if (rule := props.get(f"{_PROPERTY_PREFIX}split.rule")) is not None:
            values["split_rule"] = rule
        if (node_size := props.get(f"{_PROPERTY_PREFIX}node.size")) is not None:
            values["node_size"] = node_size
        if (max_nodes := props.get(f"{_PROPERTY_PREFIX}max.nodes")) is not None:
            values["max_nodes"] = _parse_optional_positive(max_nodes)
        if (mtry := props.get(f"{_PROPERTY_PREFIX}mtry")) is not None:
            values["mtry"] = _parse_optional_positive(mtry)
        if (seed := props.get(f"{_PROPERTY_PREFIX}seed")) is not None:
            values["seed"] = seed
        return cls.model_validate(values)


def _parse_optional_positive(raw: str) -> str | None:
    """Map unbounded markers and non-positive integers to `None`.

    Anything that is not an integer is passed through for pydantic to reject.
    """
    text = raw.strip().lower()
    if text in _UNBOUNDED_VALUES:
        return None
    try:
        return None if int(text) <= 0 else text
    except ValueError:
        return raw


# ---------------------------------------------------------------------------
# Formula
# ---------------------------------------------------------------------------

_FORMULA_PATTERN = re.compile(r"^\s*(?P<response>[^~]+?)\s*~\s*(?P<predictors>.+?)\s*$")


class Formula(BaseModel):
    """Symbolic description of the response and predictors of a model.

    Attributes:
        response (str): Name of the response (class label) column.
        predictors (list[str] | None): Ordered predictor column names. `None`
            uses every column except the response.

    Examples:
        >>> f = Formula.parse("churn ~ tenure + plan")
        >>> f.predictors
        ['tenure', 'plan']
        >>> str(Formula.parse("churn ~ ."))
        'churn ~ .'
    """

    model_config = ConfigDict(frozen=True)

    response: str = Field(min_length=1, description="Name of the response column.")
    predictors: list[str] | None = Field(
        default=None,
        description="Ordered predictor column names; None means all columns except the response.",
    )

    @classmethod
    def parse(cls, text: str) -> Formula:
        """Parse ``"response ~ x1 + x2"`` or ``"response ~ ."``.

        Args:
            text (str): The formula text.

        Returns:
            Formula: The parsed formula.

        Raises:
            ValueError: If `text` is not of the form ``response ~ terms``.
        """
        match = _FORMULA_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Formula must look like 'response ~ x1 + x2' or 'response ~ .', got {text!r}")
        terms = match.group("predictors")
        if terms.strip() == ".":
            return cls(response=match.group("response"))
        predictors = [term.strip() for term in terms.split("+")]
        if any(not term for term in predictors):
            raise ValueError(f"Formula has an empty predictor term: {text!r}")
        return cls(response=match.group("response"), predictors=predictors)

    def resolve(self, columns: Sequence[str]) -> list[str]:
        """Resolve the predictor names against the available columns.

        Args:
            columns (Sequence[str]): Column names of the dataset.

        Returns:
            list[str]: Ordered predictor names.

        Raises:
            DuplicateColumnsError: If a predictor is repeated or names the response.
            ColumnsNotFoundError: If the response or a predictor is not in `columns`.
        """
        if self.predictors is not None:
            requested_predictors = [self.response, *self.predictors]
            if len(set(requested_predictors)) != len(requested_predictors):
                raise DuplicateColumnsError(requested_predictors)
        available = list(columns)
        requested = [self.response, *(self.predictors or [])]
        missing = [name for name in requested if name not in available]
        if missing:
            raise ColumnsNotFoundError(missing_columns=missing, available_columns=available)
        if self.predictors is None:
            return [name for name in available if name != self.response]
        return list(self.predictors)

    def __str__(self) -> str:
        terms = "." if self.predictors is None else " + ".join(self.predictors)
        return f"{self.response} ~ {terms}"


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single boolean condition on one predictor along a root-to-leaf path.

    Attributes:
        variable (str): Predictor name, e.g. ``"tenure_months"``.
        operator (PredicateOp): ``"<="`` / ``">"`` for ordinal splits,
            ``"=="`` / ``"!="`` for nominal splits.
        value (float | str): Threshold or category label.

    Examples:
        >>> p = Predicate(variable="tenure_months", operator="<=", value=6.5)
        >>> str(p)
        'tenure_months <= 6.5'
        >>> p.eval(3.0)
        True
    """

    variable: str = Field(description="Predictor name the condition applies to.")
    operator: PredicateOp = Field(description="Comparison operator.")
    value: float | str = Field(description="Threshold for ordinal splits or category label for nominal splits.")

    def __str__(self) -> str:
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against a predictor value.

        Args:
            x (float | str): The predictor value to test.

        Returns:
            bool: `True` if the predicate holds for `x`.
        """
        return _SCALAR_OPS[self.operator](x, self.value)


_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<=": operator.le,
    ">": operator.gt,
    "==": operator.eq,
    "!=": operator.ne,
}


class ClassificationRule(BaseModel):
    """A decision rule describing one leaf of a fitted classification tree.

    Attributes:
        predicates (list[Predicate]): Conditions from the root to the leaf.
            Empty for a single-leaf tree.
        prediction (int): Class label predicted at the leaf.
        samples (int): Weighted number of training samples at the leaf.
        confidence (float): Fraction of leaf samples in the predicted class.
    """

    predicates: list[Predicate] = Field(description="Conditions along the path from the root to this leaf.")
    prediction: int = Field(ge=0, description="Class label predicted for samples reaching this leaf.")
    samples: int = Field(ge=0, description="Weighted number of training samples that reached this leaf.")
    confidence: float = Field(ge=0.0, le=1.0, description="Fraction of leaf samples in the predicted class.")

    def __str__(self) -> str:
        condition = " and ".join(str(p) for p in self.predicates) or "always"
        return f"if {condition} then {self.prediction} (n={self.samples}, confidence={self.confidence:.3f})"
