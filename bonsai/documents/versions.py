"""Monotonic, gapless versioning of ticket documents."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, AsyncIterator, Sequence

from bonsai.audit.models import Actor, AuditEventName
from bonsai.errors import NoSuchDocument, TicketNotFoundError, VersionConflict

from .models import Document, DocumentType

if TYPE_CHECKING:
    from bonsai.audit.log import AuditLog
    from bonsai.store.base import EntityStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5


class DocumentVersionManager:
    """Assign version numbers and manage approval for ticket documents.

    Version allocation is serialised per ``(ticket, type)`` with an
    ``asyncio.Lock``. The store's uniqueness constraint backs that up across
    processes: a :class:`VersionConflict` on insert is retried with a freshly
    computed version, up to ``max_attempts`` times.
    """

    def __init__(
        self,
        store: EntityStore,
        audit: AuditLog,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._audit = audit
        self._max_attempts = max_attempts
        self._locks: dict[tuple[str, DocumentType], asyncio.Lock] = {}
        self._lock_users: dict[tuple[str, DocumentType], int] = {}

    async def create_version(
        self,
        ticket_id: str,
        doc_type: DocumentType,
        content: str,
        author: Actor,
    ) -> Document:
        await self._require_ticket(ticket_id)
        attempt = 0
        async with self._serialised(ticket_id, doc_type):
            while True:
                attempt += 1
                version = await self._store.max_document_version(ticket_id, doc_type) + 1
                now = datetime.now(timezone.utc)
                document = Document(
                    id=str(uuid.uuid4()),
                    ticket_id=ticket_id,
                    type=doc_type,
                    version=version,
                    content=content,
                    author_id=author.id,
                    created_at=now,
                    updated_at=now,
                )
                try:
                    await self._store.insert_document(document)
                except VersionConflict:
                    if attempt >= self._max_attempts:
                        raise
                    logger.debug(
                        "Version %d of %s for ticket %s taken, retrying (attempt %d)",
                        version,
                        doc_type.value,
                        ticket_id,
                        attempt,
                    )
                    continue
                break

        logger.info("Created %s v%d for ticket %s", doc_type.value, version, ticket_id)
        await self._audit.record(
            ticket_id,
            AuditEventName.DOCUMENT_CREATED,
            author,
            f"Created {doc_type.value} v{version}",
            {"documentId": document.id, "documentType": doc_type.value, "version": version},
        )
        return document

    async def approve(self, ticket_id: str, doc_type: DocumentType, actor: Actor) -> Document:
        """Approve the latest version of ``doc_type``; a no-op when already approved."""

        latest = await self._store.latest_document(ticket_id, doc_type)
        if latest is None:
            raise NoSuchDocument(ticket_id, doc_type)
        if latest.approved:
            return latest

        approved = await self._store.approve_document(
            latest.id,
            approved_at=datetime.now(timezone.utc),
            approved_by=actor.id,
        )
        if approved is None:
            # Deleted between the lookup and the update.
            raise NoSuchDocument(ticket_id, doc_type, latest.version)

        logger.info("Approved %s v%d for ticket %s", doc_type.value, approved.version, ticket_id)
        await self._audit.record(
            ticket_id,
            AuditEventName.DOCUMENT_APPROVED,
            actor,
            f"Approved {doc_type.value} v{approved.version}",
            {"documentId": approved.id, "documentType": doc_type.value, "version": approved.version},
        )
        return approved

    async def revoke_approval(self, ticket_id: str, doc_type: DocumentType, actor: Actor) -> int:
        cleared = await self._store.clear_document_approval(ticket_id, doc_type)
        if cleared:
            logger.info("Revoked %s approval for ticket %s", doc_type.value, ticket_id)
            await self._audit.record(
                ticket_id,
                AuditEventName.APPROVAL_REVOKED,
                actor,
                f"Revoked {doc_type.value} approval",
                {"documentType": doc_type.value},
            )
        return cleared

    async def latest(self, ticket_id: str, doc_type: DocumentType) -> Document | None:
        return await self._store.latest_document(ticket_id, doc_type)

    async def by_version(self, ticket_id: str, doc_type: DocumentType, version: int) -> Document:
        document = await self._store.get_document(ticket_id, doc_type, version)
        if document is None:
            raise NoSuchDocument(ticket_id, doc_type, version)
        return document

    async def list_versions(self, ticket_id: str, doc_type: DocumentType | None = None) -> Sequence[Document]:
        return await self._store.list_documents(ticket_id, doc_type)

    async def delete(self, ticket_id: str, doc_type: DocumentType, actor: Actor) -> int:
        """Remove every version of ``doc_type`` and with it any approval."""

        async with self._serialised(ticket_id, doc_type):
            removed = await self._store.delete_documents_of_type(ticket_id, doc_type)
        if removed:
            logger.info("Deleted %d %s versions for ticket %s", removed, doc_type.value, ticket_id)
            await self._audit.record(
                ticket_id,
                AuditEventName.DOCUMENT_DELETED,
                actor,
                f"Deleted all {doc_type.value} versions",
                {"documentType": doc_type.value, "removed": removed},
            )
        return removed

    @asynccontextmanager
    async def _serialised(self, ticket_id: str, doc_type: DocumentType) -> AsyncIterator[None]:
        key = (ticket_id, doc_type)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def _require_ticket(self, ticket_id: str) -> None:
        if await self._store.get_ticket(ticket_id) is None:
            raise TicketNotFoundError(ticket_id)
