"""
Authentication states of a Pryv login flow.

The login flow itself lives outside this package; only the shared state
vocabulary is defined here so that callers and UI layers agree on it.
"""

from __future__ import annotations

from enum import Enum


class AuthState(str, Enum):
    """Possible states of an authentication request."""

    ERROR = 'error'
    LOADING = 'loading'
    INITIALIZED = 'initialized'
    AUTHORIZED = 'authorized'
    LOGOUT = 'logout'
