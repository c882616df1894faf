"""Attachment storage in the hosted object store.

Objects are uploaded to ``{bucket}/{user_id}/{millis}-{uuid}.{ext}`` and
recorded in ``ai_knowledge_uploads``. Daily counts are derived from those
records rather than kept separately.
"""

import logging
import time
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import httpx
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..chat.types import UploadCounters, UploadRecord
from ..models.knowledge_upload import KnowledgeUpload, UploadKind, UploadStatus
from .exceptions import (
    CollaboratorAPIError,
    CollaboratorAuthError,
    CollaboratorError,
    CollaboratorNotFoundError,
    CollaboratorTimeoutError,
)
from .session_store import as_utc

logger = logging.getLogger(__name__)

COLLABORATOR = "storage"


def to_upload_record(row: KnowledgeUpload) -> UploadRecord:
    return UploadRecord(
        id=row.id,
        session_id=row.session_id,
        file_name=row.file_name,
        file_type=row.file_type,
        file_size=row.file_size,
        storage_path=row.storage_path,
        status=row.status.value,
        created_at=as_utc(row.created_at),
    )


def build_object_path(user_id: uuid.UUID, file_name: str) -> str:
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else "bin"
    return f"{user_id}/{int(time.time() * 1000)}-{uuid.uuid4()}.{extension}"


class UploadStorage:
    """Stores attachments for one user and answers daily count queries."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
        user_id: uuid.UUID,
        storage_url: str,
        bucket: str,
        service_key: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self._session_factory = session_factory
        self._http = http_client
        self.user_id = user_id
        self._storage_url = storage_url.rstrip("/")
        self.bucket = bucket
        self._service_key = service_key
        self._timeout = timeout

    def _headers(self, content_type: Optional[str] = None) -> dict:
        headers = {}
        if self._service_key:
            headers["Authorization"] = f"Bearer {self._service_key}"
            headers["apikey"] = self._service_key
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def count_today(self, day: date) -> UploadCounters:
        """Count the user's stored uploads per kind for ``day`` (UTC)."""
        start = datetime.combine(day, datetime.min.time(), tzinfo=timezone.utc)
        end = start + timedelta(days=1)
        try:
            async with self._session_factory() as db:
                rows = (
                    await db.execute(
                        select(KnowledgeUpload.file_type, func.count())
                        .where(
                            KnowledgeUpload.user_id == self.user_id,
                            KnowledgeUpload.created_at >= start,
                            KnowledgeUpload.created_at < end,
                        )
                        .group_by(KnowledgeUpload.file_type)
                    )
                ).all()
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Failed to count uploads: {exc}", collaborator=COLLABORATOR
            ) from exc

        counters = UploadCounters(day=day)
        for kind, count in rows:
            counters.counts[UploadKind(kind)] = count
        return counters

    async def _put_object(self, path: str, content: bytes, content_type: str):
        url = f"{self._storage_url}/object/{self.bucket}/{path}"
        headers = self._headers(content_type)
        headers["x-upsert"] = "false"
        try:
            response = await self._http.post(
                url, content=content, headers=headers, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            raise CollaboratorTimeoutError(
                "Storage upload timed out", collaborator=COLLABORATOR
            ) from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError(
                f"Storage upload failed: {exc}", collaborator=COLLABORATOR
            ) from exc

        if response.status_code in (401, 403):
            raise CollaboratorAuthError(
                f"Storage authentication failed: HTTP {response.status_code}",
                collaborator=COLLABORATOR,
            )
        if response.status_code >= 400:
            raise CollaboratorAPIError(
                f"Storage upload failed: HTTP {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
                collaborator=COLLABORATOR,
            )

    async def _remove_object(self, path: str):
        url = f"{self._storage_url}/object/{self.bucket}"
        try:
            response = await self._http.request(
                "DELETE",
                url,
                json={"prefixes": [path]},
                headers=self._headers("application/json"),
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorError(
                f"Storage removal failed: {exc}", collaborator=COLLABORATOR
            ) from exc

    async def store(
        self,
        kind: UploadKind,
        file_name: str,
        content: bytes,
        content_type: str,
        session_id: Optional[uuid.UUID] = None,
    ) -> UploadRecord:
        """Upload the object, then record it. Raises on any failure."""
        path = build_object_path(self.user_id, file_name)
        await self._put_object(path, content, content_type)

        try:
            async with self._session_factory() as db:
                row = KnowledgeUpload(
                    user_id=self.user_id,
                    session_id=session_id,
                    file_name=file_name,
                    file_type=kind,
                    file_size=len(content),
                    storage_path=f"{self.bucket}/{path}",
                    status=UploadStatus.UPLOADED,
                )
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as exc:
            try:
                await self._remove_object(path)
            except CollaboratorError as cleanup_exc:
                logger.error("Failed to remove orphaned object %s: %s", path, cleanup_exc)
            raise CollaboratorError(
                f"Failed to record upload: {exc}", collaborator=COLLABORATOR
            ) from exc

        logger.info("Stored %s upload %s (%d bytes)", kind.value, row.id, len(content))
        return to_upload_record(row)

    async def list_session_uploads(self, session_id: uuid.UUID) -> List[UploadRecord]:
        try:
            async with self._session_factory() as db:
                rows = (
                    await db.execute(
                        select(KnowledgeUpload)
                        .where(
                            KnowledgeUpload.user_id == self.user_id,
                            KnowledgeUpload.session_id == session_id,
                        )
                        .order_by(KnowledgeUpload.created_at.desc())
                    )
                ).scalars().all()
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Failed to list uploads: {exc}", collaborator=COLLABORATOR
            ) from exc
        return [to_upload_record(row) for row in rows]

    async def delete_upload(self, upload_id: uuid.UUID):
        """Remove the stored object and its record.

        A failed object removal is logged; the record is deleted regardless.
        """
        try:
            async with self._session_factory() as db:
                row = (
                    await db.execute(
                        select(KnowledgeUpload).where(
                            KnowledgeUpload.id == upload_id,
                            KnowledgeUpload.user_id == self.user_id,
                        )
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise CollaboratorNotFoundError(
                        f"Upload {upload_id} not found", collaborator=COLLABORATOR
                    )

                object_path = row.storage_path
                if object_path.startswith(f"{self.bucket}/"):
                    object_path = object_path[len(self.bucket) + 1:]
                try:
                    await self._remove_object(object_path)
                except CollaboratorError as exc:
                    logger.error("Storage deletion error for upload %s: %s", upload_id, exc)

                await db.execute(delete(KnowledgeUpload).where(KnowledgeUpload.id == upload_id))
                await db.commit()
        except SQLAlchemyError as exc:
            raise CollaboratorError(
                f"Failed to delete upload: {exc}", collaborator=COLLABORATOR
            ) from exc
