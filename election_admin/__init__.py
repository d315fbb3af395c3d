"""
Election administration service.

Admins create elections, attach questions and options, launch and end them;
voters cast ballots while an election is launched.
"""

from .errors import (
    ElectionAdminError,
    ValidationError,
    NotFoundError,
    OwnershipError,
    InvalidStateError,
    DuplicateBallotError,
    AuthenticationError,
)
from .lifecycle import ElectionManager
from .models import Election, ElectionState, Question, Option, RequestContext

__all__ = [
    'ElectionAdminError',
    'ValidationError',
    'NotFoundError',
    'OwnershipError',
    'InvalidStateError',
    'DuplicateBallotError',
    'AuthenticationError',
    'ElectionManager',
    'Election',
    'ElectionState',
    'Question',
    'Option',
    'RequestContext',
]

__version__ = '1.0.0'
