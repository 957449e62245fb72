"""
Domain errors raised by the streak accounter and the record store.
"""


class NotAuthenticated(Exception):
    """No resolvable user identity at call time."""


class PersistenceError(Exception):
    """A read or write against the record store did not succeed."""
