"""Database exceptions."""

class DatabaseError(Exception):
    """Base exception for database errors."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema files are invalid or migrations fail."""
    pass
