class ObjectNotFoundException(Exception):
    """Exception raised when a key or object with the specified identifier does not exist."""

    def __init__(self, message: str = "The requested object was not found."):
        super().__init__(message)


class QueryPlanException(Exception):
    """Exception raised when a query method cannot be matched to any supported query pattern."""

    def __init__(self, message: str = "Could not build a query plan for the method."):
        super().__init__(message)


class QuerySyntaxError(ValueError):
    """Raised when a query or aggregation expression cannot be parsed."""

    pass


# Validation errors (mirrors the model validator hierarchy)
class ValidationError(TypeError):
    """Base class for validation errors related to model types."""

    pass


class InvalidPathError(ValidationError, AttributeError):
    """Error raised when a property path does not resolve to an indexed field."""

    pass


class ValueTypeError(ValidationError, TypeError):
    """Error raised when a bound value's type is incompatible with its clause."""

    pass
