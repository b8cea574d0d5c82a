"""Database layer exceptions."""


class DatabaseError(Exception):
    """Base exception for database failures."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema files cannot be loaded or applied."""
    pass
