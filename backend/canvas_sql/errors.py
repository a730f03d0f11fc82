"""
Exceptions raised by Query Model mutations.

Parsing and generation never raise these past the transpiler; they are
reported as error strings instead. Mutations raise them so a rejected
change leaves the model untouched.
"""

from typing import List


class QueryModelError(Exception):
    """Base exception for rejected Query Model mutations."""
    pass


class DuplicateAliasError(QueryModelError):
    """A table with the same alias is already on the canvas."""
    def __init__(self, alias: str):
        super().__init__(f"Table alias '{alias}' is already in use")
        self.alias = alias


class UnknownTableReferenceError(QueryModelError):
    """A join, filter, aggregation or column references a missing table alias."""
    def __init__(self, alias: str, context: str = "reference"):
        super().__init__(f"Unknown table alias '{alias}' in {context}")
        self.alias = alias
        self.context = context


class UnknownItemError(QueryModelError):
    """An update targeted an id that does not exist."""
    def __init__(self, kind: str, item_id: str):
        super().__init__(f"No {kind} with id '{item_id}'")
        self.kind = kind
        self.item_id = item_id


class DuplicateItemError(QueryModelError):
    """An add targeted an id that already exists."""
    def __init__(self, kind: str, item_id: str):
        super().__init__(f"A {kind} with id '{item_id}' already exists")
        self.kind = kind
        self.item_id = item_id


class UnsupportedSQLError(Exception):
    """Raised inside a parser when SQL cannot be represented on the canvas."""
    def __init__(self, message: str, features: List[str] = None, hint: str = None):
        super().__init__(message)
        self.features = features or []
        self.hint = hint

    def describe(self) -> str:
        """Message with the hint appended, as shown in the editor."""
        message = str(self)
        return f"{message}. Hint: {self.hint}" if self.hint else message
