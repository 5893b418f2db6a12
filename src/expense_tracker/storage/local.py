"""Filesystem-backed blob store with signed upload targets and download URLs."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from urllib.parse import urlencode
from uuid import UUID, uuid4

import aiofiles
import aiofiles.os
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from expense_tracker.config import settings
from expense_tracker.errors import BlobStoreUnavailable, UploadTargetInvalid
from expense_tracker.models.base import utcnow
from expense_tracker.models.blob import StoredBlob
from expense_tracker.storage.base import BlobCursor, BlobDeleteOutcome, BlobInfo, UploadTarget

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; every stored timestamp is UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class LocalBlobStore:
    """Blob store keeping bytes on disk and metadata in the ``blobs`` table.

    Blob ids are minted together with the upload target, so a target can be
    used exactly once: the second upload finds the row already present.

    Usage:
        store = LocalBlobStore.from_settings(async_session_factory)
        target = await store.create_upload_target()
        blob_id = await store.store_upload(target.token, data, "image/png")
        url = await store.get_signed_url(blob_id)
    """

    def __init__(
        self,
        root: Path | str,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        secret: str,
        base_url: str,
        url_ttl_seconds: int = 3600,
        upload_ttl_seconds: int = 900,
        max_upload_bytes: int = 10 * 1024 * 1024,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._root = Path(root)
        self._session_factory = session_factory
        self._secret = secret.encode("utf-8")
        self._base_url = base_url.rstrip("/")
        self._url_ttl = timedelta(seconds=url_ttl_seconds)
        self._upload_ttl = timedelta(seconds=upload_ttl_seconds)
        self._max_upload_bytes = max_upload_bytes
        self._clock = clock

    @classmethod
    def from_settings(cls, session_factory: async_sessionmaker[AsyncSession]) -> LocalBlobStore:
        return cls(
            settings.blob_storage_path,
            session_factory,
            secret=settings.signing_secret,
            base_url=settings.public_base_url,
            url_ttl_seconds=settings.signed_url_ttl_seconds,
            upload_ttl_seconds=settings.upload_target_ttl_seconds,
            max_upload_bytes=settings.max_upload_bytes,
        )

    # ── Signing ──────────────────────────────────────────────────────────────

    def _sign(self, message: str) -> str:
        return hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def _expiry(self, ttl: timedelta) -> int:
        return int((self._clock() + ttl).timestamp())

    def _expired(self, expires: int) -> bool:
        return expires < int(self._clock().timestamp())

    def _parse_upload_token(self, token: str) -> UUID:
        try:
            blob_hex, expires_str, signature = token.split(".")
            blob_id = UUID(hex=blob_hex)
            expires = int(expires_str)
        except ValueError:
            raise UploadTargetInvalid() from None

        expected = self._sign(f"upload:{blob_id.hex}:{expires}")
        if not hmac.compare_digest(expected, signature) or self._expired(expires):
            raise UploadTargetInvalid()
        return blob_id

    def verify_signature(self, blob_id: UUID, expires: int, signature: str) -> bool:
        """Check a download URL's signature and expiry."""
        expected = self._sign(f"download:{blob_id.hex}:{expires}")
        return hmac.compare_digest(expected, signature) and not self._expired(expires)

    # ── Paths ────────────────────────────────────────────────────────────────

    def _path_for(self, blob_id: UUID) -> Path:
        return self._root / blob_id.hex[:2] / blob_id.hex

    # ── BlobStore interface ──────────────────────────────────────────────────

    async def create_upload_target(self) -> UploadTarget:
        blob_id = uuid4()
        expires = self._expiry(self._upload_ttl)
        signature = self._sign(f"upload:{blob_id.hex}:{expires}")
        token = f"{blob_id.hex}.{expires}.{signature}"
        return UploadTarget(
            upload_url=f"{self._base_url}/storage/upload/{token}",
            token=token,
            expires_at=datetime.fromtimestamp(expires, UTC),
        )

    async def get_signed_url(self, blob_id: UUID) -> str | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredBlob, blob_id)
        except SQLAlchemyError as e:
            raise BlobStoreUnavailable() from e

        if row is None:
            return None

        expires = self._expiry(self._url_ttl)
        query = urlencode({"expires": expires, "signature": self._sign(f"download:{blob_id.hex}:{expires}")})
        return f"{self._base_url}/blobs/{blob_id}?{query}"

    async def get_blob_info(self, blob_id: UUID) -> BlobInfo | None:
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredBlob, blob_id)
        except SQLAlchemyError as e:
            raise BlobStoreUnavailable() from e

        if row is None:
            return None
        return BlobInfo(blob_id=row.blob_id, created_at=_as_utc(row.created_at))

    async def delete_blob(self, blob_id: UUID) -> BlobDeleteOutcome:
        path = self._path_for(blob_id)
        found = False
        try:
            async with self._session_factory() as session:
                row = await session.get(StoredBlob, blob_id)
                try:
                    await aiofiles.os.remove(path)
                    found = True
                except FileNotFoundError:
                    pass
                if row is not None:
                    await session.delete(row)
                    await session.commit()
                    found = True
        except (OSError, SQLAlchemyError) as e:
            logger.warning("Failed to delete blob %s: %s", blob_id, e)
            return BlobDeleteOutcome.TRANSIENT_FAILURE

        return BlobDeleteOutcome.DELETED if found else BlobDeleteOutcome.ALREADY_ABSENT

    async def list_blobs_older_than(
        self,
        cutoff: datetime,
        limit: int,
        *,
        after: BlobCursor | None = None,
    ) -> list[BlobInfo]:
        stmt = select(StoredBlob.blob_id, StoredBlob.created_at).where(StoredBlob.created_at < cutoff)
        if after is not None:
            stmt = stmt.where(
                or_(
                    StoredBlob.created_at > after.created_at,
                    and_(
                        StoredBlob.created_at == after.created_at,
                        StoredBlob.blob_id > after.blob_id,
                    ),
                )
            )
        stmt = stmt.order_by(StoredBlob.created_at, StoredBlob.blob_id).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [BlobInfo(blob_id=row.blob_id, created_at=_as_utc(row.created_at)) for row in result]

    # ── Upload / download (local transport only) ─────────────────────────────

    async def store_upload(self, token: str, content: bytes, content_type: str) -> UUID:
        """Consume an upload target and persist its bytes.

        Returns the blob id the client must then register.

        Raises:
            UploadTargetInvalid: Token is malformed, expired or already used,
                or the content exceeds the size limit.
        """
        blob_id = self._parse_upload_token(token)
        if len(content) > self._max_upload_bytes:
            raise UploadTargetInvalid(f"File exceeds the {self._max_upload_bytes} byte limit")

        path = self._path_for(blob_id)
        async with self._session_factory() as session:
            if await session.get(StoredBlob, blob_id) is not None:
                raise UploadTargetInvalid()

            session.add(
                StoredBlob(
                    blob_id=blob_id,
                    content_type=content_type or "application/octet-stream",
                    size_bytes=len(content),
                    storage_path=str(path),
                    created_at=self._clock(),
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                raise UploadTargetInvalid() from None

            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as fh:
                await fh.write(content)
            await session.commit()

        logger.debug("Stored blob %s (%d bytes)", blob_id, len(content))
        return blob_id

    async def open_blob(self, blob_id: UUID) -> tuple[Path, str] | None:
        """Path and content type of a stored blob, or None if absent."""
        async with self._session_factory() as session:
            row = await session.get(StoredBlob, blob_id)
        if row is None:
            return None
        path = self._path_for(blob_id)
        if not await aiofiles.os.path.exists(path):
            return None
        return path, row.content_type
