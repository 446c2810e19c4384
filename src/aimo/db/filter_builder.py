"""Filter builder for dynamic WHERE clause construction."""

from typing import Any


class FilterBuilder:
    """Build asyncpg WHERE clauses with automatic ``$n`` parameter indexing.

    Example:
        fb = FilterBuilder(start_idx=2)  # $1 reserved for the query vector
        fb.add_if(after, "memo_id > ${}", after)
        fb.add("embedding IS NOT NULL")

        where_clause = fb.build()
        all_values = [embedding] + fb.values
    """

    def __init__(self, start_idx: int = 1):
        self._conditions: list[str] = []
        self._values: list[Any] = []
        self._param_idx = start_idx

    @property
    def values(self) -> list[Any]:
        """Get the list of parameter values."""
        return self._values

    @property
    def next_idx(self) -> int:
        """Get the next parameter index."""
        return self._param_idx

    def add(self, condition: str) -> "FilterBuilder":
        """Add a condition without parameters."""
        self._conditions.append(condition)
        return self

    def add_param(self, condition_template: str, value: Any) -> "FilterBuilder":
        """Add a condition with a single parameter.

        Args:
            condition_template: SQL with a ``${}`` placeholder (e.g. "memo_id > ${}")
            value: Parameter value
        """
        condition = condition_template.replace("${}", f"${self._param_idx}")
        self._conditions.append(condition)
        self._values.append(value)
        self._param_idx += 1
        return self

    def add_if(self, condition_check: Any, condition_template: str, value: Any) -> "FilterBuilder":
        """Add a parameterized condition only if the check is truthy."""
        if condition_check:
            self.add_param(condition_template, value)
        return self

    def build(self, empty: str = "TRUE") -> str:
        """Join the conditions with AND."""
        if not self._conditions:
            return empty
        return " AND ".join(self._conditions)
