"""Table-scoped document repository for s3odm."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import secrets
import time
from typing import TYPE_CHECKING, Any

from s3odm.errors import RecordExistsError, RecordNotFoundError

if TYPE_CHECKING:
    from s3odm.client import S3ODM

logger = logging.getLogger(__name__)

# S3 multi-object delete accepts at most this many keys per request
DELETE_BATCH_SIZE = 1000

_UUID_RE = re.compile(r"^(.{8})(.{4})(.{4})(.{4})(.{12}).+$")


def to_uuid(value: str) -> str:
    """Shape the SHA-1 digest of ``value`` like a UUID (8-4-4-4-12)."""
    digest = hashlib.sha1(value.encode("utf-8")).hexdigest()
    return _UUID_RE.sub(r"\1-\2-\3-\4-\5", digest)


class Repository:
    """CRUD operations on the documents of one table.

    Attributes:
        driver: The client every call goes through.
        table_name: The table (key prefix) this repository manages.
    """

    def __init__(self, driver: S3ODM, table_name: str) -> None:
        self.driver = driver
        self.table_name = table_name

    async def insert(self, document: dict[str, Any]) -> dict[str, Any]:
        """Create a record, generating an ``_id`` if none is set.

        Raises:
            RecordExistsError: If a record with the same id is stored.
        """
        if not document.get("_id"):
            document["_id"] = to_uuid(f"{time.time_ns()}:{secrets.token_hex(8)}")

        if await self.driver.head(self.table_name, document["_id"]):
            raise RecordExistsError(document["_id"])

        return await self.driver.put(self.table_name, document)

    async def update(self, document: dict[str, Any]) -> dict[str, Any]:
        """Replace an existing record.

        Raises:
            RecordNotFoundError: If no record with the id is stored.
        """
        if not await self.driver.head(self.table_name, document.get("_id", "")):
            raise RecordNotFoundError(document.get("_id", ""))

        return await self.driver.put(self.table_name, document)

    async def find_by_id(self, _id: str) -> dict[str, Any] | None:
        """Return the record, or None if it does not exist."""
        return await self.driver.get(self.table_name, _id)

    async def find_all(self) -> list[dict[str, Any]]:
        """Fetch every record of the table concurrently.

        Records deleted between listing and fetching are left out.
        """
        ids = await self.driver.list_ids(self.table_name)
        documents = await asyncio.gather(*(self.find_by_id(_id) for _id in ids))
        return [document for document in documents if document is not None]

    async def delete_by_id(self, _id: str) -> None:
        """Delete one record."""
        await self.driver.delete(self.table_name, _id)

    async def delete_all(self) -> list[str]:
        """Delete every record of the table.

        Returns:
            The ids that were deleted.
        """
        ids = await self.driver.list_ids(self.table_name)

        for start in range(0, len(ids), DELETE_BATCH_SIZE):
            await self.driver.delete_batch(self.table_name, ids[start : start + DELETE_BATCH_SIZE])

        logger.info("Deleted %d records from table %s", len(ids), self.table_name)
        return ids
