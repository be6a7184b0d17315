"""Exception types raised by the signaling server."""
from __future__ import annotations


class SignalingServerError(Exception):
    """Base exception type for exceptions raised by the signaling server."""

    pass


class BadRequestError(SignalingServerError):
    """A runtime exception indicating a bad client request."""

    pass


class ForbiddenError(SignalingServerError):
    """Client does not have the permissions required for the request."""

    pass


class UnauthorizedError(SignalingServerError):
    """Client credentials are missing or invalid."""

    pass


class InviteJoinError(SignalingServerError):
    """An invite link join request cannot be satisfied."""

    pass


class MasterNotFoundError(InviteJoinError):
    """The master of an invite link is not currently registered."""

    pass
