"""Exception taxonomy for data model operations.

Every validation failure raised by ``dm_core`` derives from
``DataModelError``.  Errors are raised at the point of the offending call
and leave the input model untouched -- operations return new model values,
so there is never anything to roll back.

Backend failures (pandas, SQLAlchemy) are not wrapped and propagate
unchanged.

Usage:
    from dm_core.errors import DataModelError, NoPrimaryKeyError

    try:
        model = add_fk(model, "flights", "origin", "airports")
    except NoPrimaryKeyError:
        model = add_pk(model, "airports", "faa")
        model = add_fk(model, "flights", "origin", "airports")
"""


class DataModelError(Exception):
    """Base class for all data model errors."""


class UnknownTableError(DataModelError, KeyError):
    """Raised when a referenced table is not part of the model."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Table '{table}' not in data model")

    def __str__(self) -> str:
        return self.args[0]


class UnknownColumnError(DataModelError, KeyError):
    """Raised when a referenced column does not exist in a table."""

    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(f"Column '{column}' not in table '{table}'")

    def __str__(self) -> str:
        return self.args[0]


class NotUniqueError(DataModelError):
    """Raised when a primary key candidate has duplicate or missing values."""

    def __init__(self, table: str, column: str) -> None:
        self.table = table
        self.column = column
        super().__init__(
            f"Column '{column}' of table '{table}' has duplicate or missing "
            f"values and cannot be a primary key"
        )


class PrimaryKeyExistsError(DataModelError):
    """Raised when adding a primary key to a table that already has one."""

    def __init__(self, table: str, existing: str) -> None:
        self.table = table
        self.existing = existing
        super().__init__(
            f"Table '{table}' already has primary key '{existing}'. "
            f"Use force=True to replace it."
        )


class NoPrimaryKeyError(DataModelError):
    """Raised when a foreign key targets a table without a primary key."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(f"Table '{table}' has no primary key")


class KeyInUseError(DataModelError):
    """Raised when changing a primary key that foreign keys still reference."""

    def __init__(self, table: str, referencing: list[str]) -> None:
        self.table = table
        self.referencing = referencing
        super().__init__(
            f"Primary key of table '{table}' is referenced by: "
            f"{', '.join(referencing)}"
        )


class DuplicateForeignKeyError(DataModelError):
    """Raised when the same (column, parent) foreign key is added twice."""

    def __init__(self, table: str, column: str, parent: str) -> None:
        self.table = table
        self.column = column
        self.parent = parent
        super().__init__(
            f"Foreign key '{table}.{column}' -> '{parent}' already exists"
        )


class UnknownForeignKeyError(DataModelError):
    """Raised when removing a foreign key that does not exist."""

    def __init__(self, table: str, column: str | None, parent: str) -> None:
        self.table = table
        self.column = column
        self.parent = parent
        target = f"{table}.{column}" if column else table
        super().__init__(f"No foreign key '{target}' -> '{parent}'")


class ReferentialIntegrityError(DataModelError):
    """Raised when child values are not a subset of the parent key values."""

    def __init__(self, table: str, column: str, parent: str) -> None:
        self.table = table
        self.column = column
        self.parent = parent
        super().__init__(
            f"Values of '{table}.{column}' are not a subset of the primary "
            f"key values of '{parent}'"
        )


class AlreadyZoomedError(DataModelError):
    """Raised when zooming into a model that is already zoomed."""

    def __init__(self, table: str) -> None:
        self.table = table
        super().__init__(
            f"Already zoomed to table '{table}'. Zoom out, update or insert "
            f"the zoomed table first."
        )


class NotZoomedError(DataModelError):
    """Raised when a zoom-only operation is called on a normal model."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"'{action}' requires a zoomed data model")


class NotAllowedWhileZoomedError(DataModelError):
    """Raised when an operation is called while a table is zoomed."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(f"'{action}' is not possible while a table is zoomed")


class FiltersPendingError(DataModelError):
    """Raised when an operation requires a model without pending filters."""

    def __init__(self, action: str, tables: list[str]) -> None:
        self.action = action
        self.tables = tables
        super().__init__(
            f"'{action}' is only possible without pending filters "
            f"(filtered: {', '.join(tables)}). Apply or reset filters first."
        )


class EmptyNameError(DataModelError):
    """Raised when a new table name is blank or already taken."""

    def __init__(self, name: str, taken: bool = False) -> None:
        self.name = name
        self.taken = taken
        if taken:
            message = f"Table name '{name}' is already taken"
        else:
            message = "New table needs a non-empty name"
        super().__init__(message)


class ExpressionError(DataModelError, ValueError):
    """Raised for expressions outside the supported grammar."""
