"""Pydantic result models returned by inspection operations.

- Filter listing: FilterInfo
- Key inspection: PkCandidate, FkInfo
- Constraint checking: ConstraintProblem, ConstraintReport
"""

from pydantic import BaseModel, Field


# ============================================================================
# Filter listing
# ============================================================================


class FilterInfo(BaseModel):
    """A pending filter as listed by ``get_filters()``."""

    table: str
    expression: str
    zoomed: bool = False


# ============================================================================
# Key inspection
# ============================================================================


class PkCandidate(BaseModel):
    """Whether a column could serve as primary key.

    Example:
        >>> PkCandidate(column="faa", candidate=True).why
        ''
    """

    column: str
    candidate: bool
    why: str = ""


class FkInfo(BaseModel):
    """A foreign key with both ends resolved."""

    child_table: str
    child_column: str
    parent_table: str
    parent_column: str


# ============================================================================
# Constraint checking
# ============================================================================


class ConstraintProblem(BaseModel):
    """A key constraint that does not hold on the current data."""

    kind: str  # PK, FK
    table: str
    column: str
    parent_table: str | None = None
    message: str = ""


class ConstraintReport(BaseModel):
    """Result of ``check_constraints()``.

    Example:
        >>> report = ConstraintReport(valid=True, checked=3)
        >>> report.format_report()
        'All 3 key constraints hold'
    """

    valid: bool
    checked: int = 0
    problems: list[ConstraintProblem] = Field(default_factory=list)

    @property
    def problem_count(self) -> int:
        return len(self.problems)

    def format_report(self) -> str:
        """Format the report as human-readable text."""
        if self.valid:
            return f"All {self.checked} key constraints hold"

        lines = [f"Key constraints violated ({self.problem_count} of {self.checked}):"]

        pk_problems = [p for p in self.problems if p.kind == "PK"]
        fk_problems = [p for p in self.problems if p.kind == "FK"]

        if pk_problems:
            lines.append(f"\n  Primary keys ({len(pk_problems)}):")
            for problem in pk_problems:
                lines.append(f"    - {problem.table}.{problem.column}: {problem.message}")

        if fk_problems:
            lines.append(f"\n  Foreign keys ({len(fk_problems)}):")
            for problem in fk_problems:
                lines.append(
                    f"    - {problem.table}.{problem.column} -> "
                    f"{problem.parent_table}: {problem.message}"
                )

        return "\n".join(lines)
