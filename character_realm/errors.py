"""Error taxonomy shared by the controllers and the HTTP layer.

Every error that crosses the controller boundary is a RealmError. The
HTTP layer maps `status_code` to the response status and returns
`detail` as the body; `detail` never carries provider or store internals.
"""


class RealmError(Exception):
    status_code = 500
    detail = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.detail)
        if message is not None and self.status_code < 500:
            self.detail = message


class AuthError(RealmError):
    """Missing or invalid caller identity."""

    status_code = 401
    detail = "Authentication required"


class ForbiddenError(RealmError):
    """Caller is not the owner or a member of the session/group."""

    status_code = 403
    detail = "Forbidden"


class NotFoundError(RealmError):
    status_code = 404
    detail = "Not found"


class CharacterNotFound(NotFoundError):
    detail = "Character not found"


class SessionNotFound(NotFoundError):
    detail = "Chat session not found"


class GroupNotFound(NotFoundError):
    detail = "Group chat not found"


class ValidationError(RealmError):
    """Bad group composition, empty text, or other caller-fixable input."""

    status_code = 400
    detail = "Invalid request"


class ConflictError(RealmError):
    """The stored record changed since it was read."""

    status_code = 409
    detail = "Conversation was updated concurrently, retry"


class ProviderError(RealmError):
    """The language-model backend failed, timed out, or sent garbage."""

    status_code = 500
    detail = "Failed to generate a reply"


class EmptyResponseError(ProviderError):
    """The language-model backend answered with no usable text."""


class StoreError(RealmError):
    """The storage adapter could not read or write a record."""

    status_code = 500
    detail = "Storage failure"
