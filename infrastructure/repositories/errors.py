"""
Helpers for classifying database integrity errors
"""
from sqlalchemy.exc import IntegrityError


def violation_message(exc: IntegrityError) -> str:
    """
    Lower-cased driver message of an IntegrityError.

    str(exc) embeds the failed statement and its column list, so only the
    driver error names the constraint or column that was actually violated.
    """
    return str(exc.orig if exc.orig is not None else exc).lower()
