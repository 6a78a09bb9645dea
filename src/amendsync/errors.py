"""Exceptions raised by the amendment sync core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID


class AmendSyncError(Exception):
    """Base class for errors raised by this package."""


class DocumentNotFoundError(AmendSyncError):
    """Raised when a document id has no stored document."""

    def __init__(self, document_id: UUID) -> None:
        self.document_id = document_id
        super().__init__(f"Document {document_id} not found")


class VersionNotFoundError(AmendSyncError):
    """Raised when a version id has no stored version."""

    def __init__(self, version_id: UUID) -> None:
        self.version_id = version_id
        super().__init__(f"Document version {version_id} not found")


class ChangeRequestNotFoundError(AmendSyncError):
    """Raised when a change request id has no stored record."""

    def __init__(self, change_request_id: UUID) -> None:
        self.change_request_id = change_request_id
        super().__init__(f"Change request {change_request_id} not found")


class DuplicateVersionNumberError(AmendSyncError):
    """Raised when a version number is already taken for a document."""

    def __init__(self, document_id: UUID, version_number: int) -> None:
        self.document_id = document_id
        self.version_number = version_number
        super().__init__(
            f"Document {document_id} already has version {version_number}"
        )


class DuplicateVoteError(AmendSyncError):
    """Raised when a voter already has a vote on a change request."""

    def __init__(self, change_request_id: UUID, voter_id: UUID) -> None:
        self.change_request_id = change_request_id
        self.voter_id = voter_id
        super().__init__(
            f"User {voter_id} already voted on change request {change_request_id}"
        )


class InvalidFieldError(AmendSyncError):
    """Raised when a merge-write names fields a document does not have."""

    def __init__(self, fields: Iterable[str]) -> None:
        self.fields = sorted(fields)
        super().__init__(f"Unknown document fields: {', '.join(self.fields)}")

