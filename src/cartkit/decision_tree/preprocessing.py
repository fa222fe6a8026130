"""Preprocessing: column classification, label validation, feature encoding and column ordering."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal

import numpy as np
import polars as pl
from sklearn.preprocessing import OrdinalEncoder

from cartkit.exceptions import (
    LabelDomainError,
    MissingClassLabelError,
    NegativeClassLabelError,
    NullValuesError,
    SingleClassError,
)

type ColumnKind = Literal["numeric", "nominal"]

# ---------------------------------------------------------------------------
# Column kind classification
# ---------------------------------------------------------------------------

_DTYPE_TO_COLUMN_KIND: dict[type[pl.DataType] | pl.DataType, ColumnKind] = {
    pl.Int8: "numeric",
    pl.Int16: "numeric",
    pl.Int32: "numeric",
    pl.Int64: "numeric",
    pl.UInt8: "numeric",
    pl.UInt16: "numeric",
    pl.UInt32: "numeric",
    pl.UInt64: "numeric",
    pl.Float32: "numeric",
    pl.Float64: "numeric",
    pl.Date: "numeric",
    pl.Datetime: "numeric",
    pl.Duration: "numeric",
    pl.Boolean: "nominal",
    pl.String: "nominal",
    pl.Categorical: "nominal",
    pl.Enum: "nominal",
}

_TEMPORAL_DTYPES: tuple[type[pl.DataType], ...] = (pl.Datetime, pl.Date, pl.Duration)

_INTEGER_DTYPES: frozenset[type[pl.DataType]] = frozenset({
    pl.Int8,
    pl.Int16,
    pl.Int32,
    pl.Int64,
    pl.UInt8,
    pl.UInt16,
    pl.UInt32,
    pl.UInt64,
})


def classify_column(dtype: pl.DataType) -> ColumnKind:
    """Classify a Polars dtype as an ordered (numeric) or unordered (nominal) predictor.

    Parameterized temporal and enum dtypes such as ``Datetime("us")`` hash
    differently from the bare class, so an `isinstance` fallback handles them.

    Args:
        dtype (pl.DataType): The Polars data type of the column.

    Returns:
        ColumnKind: ``"numeric"`` or ``"nominal"``.

    Raises:
        TypeError: If the dtype cannot be used as a predictor (e.g. lists, structs).
    """
    result = _DTYPE_TO_COLUMN_KIND.get(dtype)
    if result is not None:
        return result
    if isinstance(dtype, _TEMPORAL_DTYPES):
        return "numeric"
    if isinstance(dtype, (pl.Enum, pl.Categorical)):
        return "nominal"
    raise TypeError(f"Unsupported predictor dtype: {dtype}")


# ---------------------------------------------------------------------------
# Feature encoding
# ---------------------------------------------------------------------------


@dataclass
class FeatureEncoder:
    """Metadata describing how one predictor column was encoded to floats.

    Attributes:
        column_name (str): The source column name.
        kind (ColumnKind): Whether the column is split by threshold or by category.
        dtype (pl.DataType): The source Polars dtype.
        category_mapping (dict[int, str] | None): Maps integer codes back to
            category labels. `None` for numeric columns.
    """

    column_name: str
    kind: ColumnKind
    dtype: pl.DataType
    category_mapping: dict[int, str] | None = field(default=None)
    _codes: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.category_mapping is not None:
            self._codes = {label: code for code, label in self.category_mapping.items()}

    def encode_value(self, value: Any) -> float:
        """Encode a single raw value the same way the column was encoded.

        Args:
            value (Any): A raw predictor value, e.g. ``3.5`` or ``"premium"``.

        Returns:
            float: The encoded value. Unknown categories encode to ``nan``,
                which never equals a split category.

        Raises:
            NullValuesError: If `value` is `None`.
        """
        if value is None:
            raise NullValuesError([self.column_name])
        if self.kind == "nominal":
            return float(self._codes.get(_category_label(value), math.nan))
        if isinstance(self.dtype, _TEMPORAL_DTYPES):
            return float(_encode_temporal(pl.Series([value], dtype=self.dtype))[0])
        return float(value)

    def encode_series(self, series: pl.Series) -> np.ndarray:
        """Encode a whole column of new values; see `encode_value`."""
        if self.kind == "nominal":
            return np.array(
                [self._codes.get(_category_label(v), math.nan) for v in series.to_list()],
                dtype=np.float64,
            )
        return _encode_numeric(series)

    def decode_value(self, code: float) -> float | str:
        """Map an encoded split value back to its category label (numeric values pass through)."""
        if self.category_mapping is None:
            return float(code)
        return self.category_mapping[int(code)]


def encode_features(df: pl.DataFrame, columns: list[str]) -> tuple[np.ndarray, list[FeatureEncoder]]:
    """Encode predictor columns into a 2-D float64 matrix.

    - numeric columns are cast to ``float64``; dates and datetimes become epoch
      microseconds, durations total microseconds.
    - nominal columns (boolean, string, categorical, enum) are ordinal-encoded
      with `sklearn.preprocessing.OrdinalEncoder` into codes ``0..m-1``.

    Args:
        df (pl.DataFrame): The source DataFrame.
        columns (list[str]): Ordered predictor names.

    Returns:
        tuple[np.ndarray, list[FeatureEncoder]]: The ``(n_rows, n_columns)``
            matrix and a parallel list of encoders.

    Raises:
        NullValuesError: If any predictor contains nulls or NaN values.
        TypeError: If a predictor has an unsupported dtype.
    """
    null_columns = [name for name in columns if df[name].null_count() > 0]
    if null_columns:
        raise NullValuesError(null_columns)

    column_arrays: list[np.ndarray] = []
    encoders: list[FeatureEncoder] = []
    for name in columns:
        series = df[name]
        kind = classify_column(series.dtype)
        if kind == "nominal":
            column_array, mapping = _encode_nominal(series)
        else:
            column_array, mapping = _encode_numeric(series), None
        if np.isnan(column_array).any():
            raise NullValuesError([name])
        column_arrays.append(column_array)
        encoders.append(FeatureEncoder(column_name=name, kind=kind, dtype=series.dtype, category_mapping=mapping))

    matrix = np.column_stack(column_arrays) if column_arrays else np.empty((len(df), 0), dtype=np.float64)
    return matrix, encoders


def encode_frame(df: pl.DataFrame, encoders: list[FeatureEncoder]) -> np.ndarray:
    """Encode new rows with encoders fitted by `encode_features`.

    Args:
        df (pl.DataFrame): Rows to encode; must contain every encoder column.
        encoders (list[FeatureEncoder]): Encoders from the fitted model.

    Returns:
        np.ndarray: The ``(n_rows, n_columns)`` float64 matrix.

    Raises:
        NullValuesError: If any predictor contains nulls.
    """
    null_columns = [e.column_name for e in encoders if df[e.column_name].null_count() > 0]
    if null_columns:
        raise NullValuesError(null_columns)

    column_arrays = [encoder.encode_series(df[encoder.column_name]) for encoder in encoders]
    return np.column_stack(column_arrays) if column_arrays else np.empty((len(df), 0), dtype=np.float64)


def _encode_numeric(series: pl.Series) -> np.ndarray:
    """Convert a numeric or temporal Series to float64."""
    if isinstance(series.dtype, _TEMPORAL_DTYPES):
        return _encode_temporal(series)
    return series.to_numpy(allow_copy=True).astype(np.float64)


def _encode_temporal(series: pl.Series) -> np.ndarray:
    """Datetimes and dates become epoch microseconds; durations total microseconds."""
    if isinstance(series.dtype, pl.Duration):
        return series.cast(pl.Duration("us")).dt.total_microseconds().to_numpy(allow_copy=True).astype(np.float64)
    return series.cast(pl.Datetime("us")).dt.epoch("us").to_numpy(allow_copy=True).astype(np.float64)


def _encode_nominal(series: pl.Series) -> tuple[np.ndarray, dict[int, str]]:
    """Ordinal-encode a nominal Series into codes ``0..m-1`` plus a ``{code: label}`` mapping."""
    raw_column = np.array([_category_label(v) for v in series.to_list()], dtype=object).reshape(-1, 1)
    ordinal_encoder = OrdinalEncoder()
    encoded = ordinal_encoder.fit_transform(raw_column).astype(np.float64).ravel()
    mapping = dict(enumerate(str(label) for label in ordinal_encoder.categories_[0]))
    return encoded, mapping


def _category_label(value: Any) -> str:
    """Canonical string label of a nominal value; booleans render as ``"true"`` / ``"false"``."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# ---------------------------------------------------------------------------
# Label validation
# ---------------------------------------------------------------------------


def validate_labels(series: pl.Series) -> tuple[np.ndarray, int]:
    """Validate a response column of class labels and return it as int64.

    Labels must be integers forming exactly ``{0, 1, ..., k-1}`` with ``k >= 2``.

    Args:
        series (pl.Series): The response column.

    Returns:
        tuple[np.ndarray, int]: The int64 label array and the number of classes ``k``.

    Raises:
        NullValuesError: If the response contains nulls.
        LabelDomainError: If the response is not an integer column.
        NegativeClassLabelError: If a label is negative.
        MissingClassLabelError: If a label in ``0..k-1`` does not occur.
        SingleClassError: If fewer than two classes occur.
    """
    if series.null_count() > 0:
        raise NullValuesError([series.name])
    if series.dtype not in _INTEGER_DTYPES:
        raise LabelDomainError(f"Response column '{series.name}' must hold integer class labels, got {series.dtype}")

    y = series.to_numpy(allow_copy=True).astype(np.int64)
    labels = [int(label) for label in np.unique(y)]

    for expected, label in enumerate(labels):
        if label < 0:
            raise NegativeClassLabelError(label, labels)
        if label != expected:
            raise MissingClassLabelError(expected, labels)

    if len(labels) < 2:
        raise SingleClassError(labels)
    return y, len(labels)


# ---------------------------------------------------------------------------
# Column ordering
# ---------------------------------------------------------------------------


def compute_order(x: np.ndarray, encoders: list[FeatureEncoder]) -> list[np.ndarray | None]:
    """Row indices of each numeric column in ascending value order.

    Ensemble callers fitting many trees on the same data can compute this once
    and pass it to every fit.

    Args:
        x (np.ndarray): The ``(n_rows, n_columns)`` encoded matrix.
        encoders (list[FeatureEncoder]): Encoders parallel to the columns of `x`.

    Returns:
        list[np.ndarray | None]: One int64 index array per numeric column and
            `None` for nominal columns.
    """
    return [
        np.argsort(x[:, j], kind="stable").astype(np.int64) if encoder.kind == "numeric" else None
        for j, encoder in enumerate(encoders)
    ]
