"""Error kinds raised by the authorization engine.

"No access" is never an error: resolution returns an empty or partial
PermissionSet. These exceptions cover malformed input, missing or
out-of-scope references, blocked mutations, and storage failures.
"""


class TollgateError(Exception):
    """Base exception for authorization engine operations."""


class ValidationError(TollgateError):
    """Malformed input: unknown permission code, empty name, invalid enum value."""


class NotFoundError(TollgateError):
    """A referenced role, group, member, or override does not exist in the workspace."""

    def __init__(self, kind: str, identifier: object, workspace_id: str | None = None) -> None:
        self.kind = kind
        self.identifier = identifier
        self.workspace_id = workspace_id
        where = f" in workspace {workspace_id}" if workspace_id else ""
        super().__init__(f"{kind} not found: {identifier}{where}")


class ConflictError(TollgateError):
    """The mutation would break an invariant (e.g. leave a workspace without an owner)."""


class PersistenceError(TollgateError):
    """Storage, transaction, or lock failure. Nothing was committed; safe to retry."""
