"""
KairOS -- Error Hierarchy

Only malformed input raises. Transport failures are absorbed at each
registry boundary and surface as "not found"; failed signature checks
surface as an unauthenticated AuthResult.

  InvalidInputError  -- malformed chipUID, PIN, key, challenge, or record
  LengthError        -- a public key that is not exactly 32 bytes
  TransportError     -- HTTP / network failure inside a registry backend
"""

from __future__ import annotations


class KairosError(RuntimeError):
    """Base for all KairOS errors."""


class InvalidInputError(KairosError, ValueError):
    """Caller supplied malformed input. Raised synchronously, never retried."""


InputValidationError = InvalidInputError


class LengthError(InvalidInputError):
    """A key or signature had the wrong byte length."""


class TransportError(KairosError):
    """
    A network call failed (connection error, timeout, non-2xx status).

    Registry backends may raise this internally; the coordinator and every
    lookup path convert it into a None result plus a logged warning.
    """
