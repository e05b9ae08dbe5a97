class PersistenceError(Exception):
    """Raised by the user store when a query or transaction fails."""
    pass
