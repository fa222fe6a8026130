"""Custom exceptions for cartkit.

All exceptions subclass ValueError so that callers can handle any rejected
fit with a single ``except ValueError``:

Column validation exceptions:
- ColumnsNotFoundError: Raised when a formula names columns that do not exist.
- DuplicateColumnsError: Raised when a formula repeats a column.
- NullValuesError: Raised when the response or a predictor contains nulls.

Label domain exceptions:
- LabelDomainError: Base class for invalid class labels. Catch this to handle
  any label failure.
- NegativeClassLabelError: Raised when a class label is negative.
- MissingClassLabelError: Raised when labels skip a value of ``0..k-1``.
- SingleClassError: Raised when fewer than two classes are present.

Shape exceptions:
- ShapeMismatchError: Raised when a caller-supplied array has the wrong length.
"""

from __future__ import annotations


class ColumnsNotFoundError(ValueError):
    """Raised when requested columns do not exist in a DataFrame.

    Attributes:
        missing_columns (list[str]): Column names that were not found.
        available_columns (list[str]): Column names present in the DataFrame.

    Examples:
        >>> err = ColumnsNotFoundError(missing_columns=["age"], available_columns=["x", "label"])
        >>> err.missing_columns
        ['age']
    """

    missing_columns: list[str]
    available_columns: list[str]

    def __init__(self, missing_columns: list[str], available_columns: list[str]) -> None:
        """Initialize ColumnsNotFoundError.

        Args:
            missing_columns (list[str]): Column names not found in the DataFrame.
            available_columns (list[str]): Column names present in the DataFrame.
        """
        super().__init__(f"Columns not found in DataFrame: {sorted(missing_columns)}")
        self.missing_columns = missing_columns
        self.available_columns = available_columns


class DuplicateColumnsError(ValueError):
    """Raised when duplicate column names are provided.

    Attributes:
        columns (list[str]): The column list that contains duplicates.
        duplicate_columns (list[str]): Column names that are duplicated (each listed once).

    Examples:
        >>> err = DuplicateColumnsError(columns=["x", "x", "y"])
        >>> err.duplicate_columns
        ['x']
    """

    columns: list[str]
    duplicate_columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize DuplicateColumnsError.

        Args:
            columns (list[str]): The column list containing duplicates.
        """
        seen: set[str] = set()
        duplicates: list[str] = []
        for col in columns:
            if col in seen and col not in duplicates:
                duplicates.append(col)
            seen.add(col)
        super().__init__(f"Duplicate column names are not allowed: {duplicates}")
        self.columns = columns
        self.duplicate_columns = duplicates


class NullValuesError(ValueError):
    """Raised when columns used for fitting or prediction contain null values.

    Attributes:
        columns (list[str]): Names of the columns that contain nulls.
    """

    columns: list[str]

    def __init__(self, columns: list[str]) -> None:
        """Initialize NullValuesError.

        Args:
            columns (list[str]): Names of the columns that contain nulls.
        """
        super().__init__(f"Columns contain null values: {columns}. Remove or impute nulls before fitting.")
        self.columns = columns


class LabelDomainError(ValueError):
    """Base exception for class labels outside the contiguous ``0..k-1`` domain.

    Attributes:
        labels (list[int]): Sorted distinct labels that were observed.
    """

    labels: list[int]

    def __init__(self, message: str, labels: list[int] | None = None) -> None:
        """Initialize LabelDomainError.

        Args:
            message (str): Description of the label problem.
            labels (list[int] | None): Sorted distinct labels observed, if known.
        """
        super().__init__(message)
        self.labels = labels if labels is not None else []

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Representation including message and observed labels.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, labels={self.labels!r})"


class NegativeClassLabelError(LabelDomainError):
    """Raised when a class label is negative.

    Attributes:
        label (int): The offending negative label.
    """

    label: int

    def __init__(self, label: int, labels: list[int]) -> None:
        """Initialize NegativeClassLabelError.

        Args:
            label (int): The offending negative label.
            labels (list[int]): Sorted distinct labels observed.
        """
        super().__init__(f"Negative class label: {label}", labels)
        self.label = label


class MissingClassLabelError(LabelDomainError):
    """Raised when the label set skips a value, e.g. ``{0, 2}``.

    Attributes:
        missing (int): The first label of ``0..k-1`` that does not occur.
    """

    missing: int

    def __init__(self, missing: int, labels: list[int]) -> None:
        """Initialize MissingClassLabelError.

        Args:
            missing (int): The first absent label.
            labels (list[int]): Sorted distinct labels observed.
        """
        super().__init__(f"Missing class: {missing}", labels)
        self.missing = missing


class SingleClassError(LabelDomainError):
    """Raised when the response holds fewer than two distinct classes."""

    def __init__(self, labels: list[int]) -> None:
        """Initialize SingleClassError.

        Args:
            labels (list[int]): Sorted distinct labels observed.
        """
        super().__init__("Only one class.", labels)


class ShapeMismatchError(ValueError):
    """Raised when a caller-supplied array does not have the expected length.

    Attributes:
        name (str): Name of the offending argument, e.g. ``"samples"``.
        expected (int): Required length.
        actual (int): Length that was supplied.
    """

    name: str
    expected: int
    actual: int

    def __init__(self, name: str, expected: int, actual: int) -> None:
        """Initialize ShapeMismatchError.

        Args:
            name (str): Name of the offending argument.
            expected (int): Required length.
            actual (int): Length that was supplied.
        """
        super().__init__(f"{name} must have length {expected}, got {actual}")
        self.name = name
        self.expected = expected
        self.actual = actual
