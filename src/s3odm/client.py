"""S3-compatible object store client for s3odm.

Treats a single bucket as a document store. Documents are JSON objects
stored at ``<table>/<id>.json``; a table is nothing more than a key prefix.

Every request is signed by ``RequestSigner`` and sent over an
``httpx.AsyncClient``. The response status is checked against the one
success code of each call site and mapped onto the error kinds in
``s3odm.errors``. Nothing is retried here; transport errors surface as is.
"""

import base64
import hashlib
import json
import logging
import time
import urllib.parse
from collections.abc import AsyncIterator, Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

import httpx

from s3odm import metrics
from s3odm.auth import RequestSigner, SignedRequest
from s3odm.config import S3ODMConfig
from s3odm.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    UnhandledStatusError,
)
from s3odm.repository import Repository
from s3odm.xml_utils import (
    COMMON_PREFIX,
    KEY,
    ListPage,
    Target,
    parse_list_page,
    render_delete_objects,
)

logger = logging.getLogger(__name__)

Document = dict[str, Any]

# Largest page ListObjectsV2 will return
MAX_PAGE_SIZE = 1000


def object_key(table: str, _id: str) -> str:
    """Map a table and document id to its object key."""
    return f"{table}/{_id}.json"


def content_md5(body: bytes) -> str:
    """Base64 MD5 digest, as expected in the Content-MD5 header."""
    return base64.b64encode(hashlib.md5(body).digest()).decode("ascii")


def check_status(response: httpx.Response, ok_code: int, key: str = "") -> httpx.Response:
    """Map a response status onto success or a typed error.

    Args:
        response: The store's response (body already read).
        ok_code: The one status code that means success for this call.
        key: The object key addressed, for error messages.

    Returns:
        The response, if its status is ``ok_code``.

    Raises:
        AuthenticationError: On 403.
        NotFoundError: On 404.
        ConflictError: On 409, with the response body as message.
        UnhandledStatusError: On any other status.
    """
    status = response.status_code
    if status == ok_code:
        return response
    if status == 403:
        raise AuthenticationError()
    if status == 404:
        raise NotFoundError(key)
    if status == 409:
        raise ConflictError(response.text)
    raise UnhandledStatusError(status)


class S3ODM:
    """Document store on top of one S3-compatible bucket.

    Attributes:
        hostname: Host of the S3 API, without scheme.
        bucket: The bucket holding every table.
        region: Signing region, ``auto`` unless the provider needs a real one.
        page_size: Keys requested per listing page.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        hostname: str,
        bucket: str,
        region: str = "auto",
        *,
        timeout: float = 30.0,
        page_size: int = MAX_PAGE_SIZE,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            access_key: Access key ID.
            secret_key: Secret access key.
            hostname: Host of the S3 API, without scheme.
            bucket: Bucket name.
            region: Signing region.
            timeout: Transport timeout in seconds, used only when this client
                creates its own ``httpx.AsyncClient``.
            page_size: Keys requested per listing page (1-1000).
            http_client: An existing client to send requests through. The
                caller keeps ownership of it.
            clock: Clock override for the signer.
        """
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValueError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        self.hostname = hostname
        self.bucket = bucket
        self.region = region
        self.page_size = page_size
        self._signer = RequestSigner(access_key, secret_key, region=region, clock=clock)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(
        cls, config: S3ODMConfig, http_client: httpx.AsyncClient | None = None
    ) -> "S3ODM":
        """Build a client from a loaded configuration."""
        return cls(
            config.credentials.access_key,
            config.credentials.secret_key,
            config.endpoint.hostname,
            config.endpoint.bucket,
            region=config.endpoint.region,
            timeout=config.endpoint.timeout,
            page_size=config.endpoint.page_size,
            http_client=http_client,
        )

    @property
    def signer(self) -> RequestSigner:
        return self._signer

    async def close(self) -> None:
        """Close the HTTP client, if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "S3ODM":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def create_repository(self, table: str) -> Repository:
        """Return a repository bound to ``table``."""
        return Repository(self, table)

    # -- Transport -------------------------------------------------------------

    def _url(self, path: str = "", query: str = "") -> str:
        """Build the request URL in the form httpx will put on the wire.

        httpx lowercases and IDNA-encodes the host, drops a default port
        and resolves dot segments; the signature must cover that form.
        """
        url = f"https://{self.hostname}/{self.bucket}/{urllib.parse.quote(path, safe='/')}"
        return str(httpx.URL(f"{url}?{query}" if query else url))

    async def execute(
        self,
        operation: str,
        ok_code: int,
        method: str,
        path: str = "",
        query: str = "",
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Sign and send one request, then check its status.

        Args:
            operation: Facade operation name, for logs and metrics.
            ok_code: The status code that means success.
            method: HTTP method.
            path: Object key relative to the bucket.
            query: Encoded query string, without ``?``.
            body: Optional request body.
            headers: Optional extra headers.

        Returns:
            The successful response.

        Raises:
            S3ODMError subclass: On a non-success status or signing failure.
            httpx.HTTPError: On transport failure.
        """
        signed = self._signer.sign(method, self._url(path, query), headers, body)

        started = time.perf_counter()
        response: httpx.Response | None = None
        try:
            response = await self._send(signed)
        finally:
            duration = time.perf_counter() - started
            status: int | str = response.status_code if response is not None else "error"
            logger.debug(
                "%s %s -> %s",
                method,
                signed.url,
                status,
                extra={
                    "operation": operation,
                    "method": method,
                    "key": path,
                    "status": status,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
            metrics.observe_request(
                operation,
                status,
                duration,
                sent=_body_size(signed.body),
                received=len(response.content) if response is not None else 0,
            )

        return check_status(response, ok_code, path)

    async def _send(self, signed: SignedRequest) -> httpx.Response:
        return await self._http.request(
            signed.method,
            signed.url,
            headers=signed.headers,
            content=signed.body,
        )

    # -- Documents -------------------------------------------------------------

    async def get(self, table: str, _id: str) -> Document | None:
        """Fetch a document.

        A body without ``_id`` gets the id from its key; the stored object
        is left as it is.

        Returns:
            The document, or None if no object exists under the id.
        """
        try:
            response = await self.execute("get", 200, "GET", object_key(table, _id))
        except NotFoundError:
            return None

        document = response.json()
        if isinstance(document, dict) and not document.get("_id"):
            document["_id"] = _id
        return document

    async def head(self, table: str, _id: str) -> bool:
        """Check whether a document exists.

        Any failure, not only a 404, is reported as False.
        """
        try:
            await self.execute("head", 200, "HEAD", object_key(table, _id))
        except Exception as exc:
            logger.debug("Existence check for %s failed: %r", object_key(table, _id), exc)
            return False
        return True

    async def put(self, table: str, document: Document, _id: str | None = None) -> Document:
        """Store a document, replacing any previous body.

        Args:
            table: The table to store into.
            document: The JSON object to store, sent as is.
            _id: Document id; defaults to the document's ``_id``.

        Returns:
            The document as sent.

        Raises:
            ValueError: If neither ``_id`` nor the document gives an id.
        """
        _id = _id or document.get("_id")
        if not _id:
            raise ValueError("document has no _id")

        await self.execute(
            "put",
            200,
            "PUT",
            object_key(table, str(_id)),
            body=json.dumps(document, separators=(",", ":")),
            headers={"content-type": "application/json"},
        )
        return document

    async def delete(self, table: str, _id: str) -> None:
        """Delete one document."""
        await self.execute("delete", 204, "DELETE", object_key(table, _id))

    async def delete_batch(self, table: str, ids: Iterable[str]) -> None:
        """Delete several documents with one multi-object delete request.

        At most 1000 ids are accepted by the store per request.
        """
        keys = [object_key(table, _id) for _id in ids]
        if not keys:
            return

        body = render_delete_objects(keys).encode("utf-8")
        await self.execute(
            "delete_batch",
            200,
            "POST",
            query="delete",
            body=body,
            headers={"content-md5": content_md5(body)},
        )

    # -- Listing ---------------------------------------------------------------

    async def iter_ids(self, table: str) -> AsyncIterator[str]:
        """Yield the id of every document in ``table``, in key order."""
        prefix = table if table.endswith("/") else table + "/"
        params = {
            "list-type": "2",
            "max-keys": str(self.page_size),
            "prefix": prefix,
        }
        async for key in self._scan("list_ids", params, KEY):
            yield key[len(prefix) :].removesuffix(".json")

    async def list_ids(self, table: str) -> list[str]:
        """Return the id of every document in ``table``."""
        return [_id async for _id in self.iter_ids(table)]

    async def iter_tables(self) -> AsyncIterator[str]:
        """Yield every top-level table name in the bucket."""
        params = {
            "list-type": "2",
            "max-keys": str(self.page_size),
            "prefix": "",
            "delimiter": "/",
        }
        async for prefix in self._scan("list_tables", params, COMMON_PREFIX):
            yield prefix.removesuffix("/")

    async def list_tables(self) -> list[str]:
        """Return every top-level table name in the bucket."""
        return [table async for table in self.iter_tables()]

    async def _scan(
        self, operation: str, params: dict[str, str], element: Target
    ) -> AsyncIterator[str]:
        """Yield the entries of a paginated listing in first-seen order.

        The listed prefix itself (a directory marker object) is skipped.
        A failed page aborts the whole scan.
        """
        prefix = params["prefix"]
        cursor: dict[str, str] = {}

        while True:
            query = urllib.parse.urlencode({**params, **cursor}, quote_via=urllib.parse.quote)
            response = await self.execute(operation, 200, "GET", query=query)
            page = parse_list_page(response.content, element)

            marker = None
            for entry in page.entries:
                if entry == prefix:
                    continue
                marker = entry
                yield entry

            if not self._has_more(page):
                return

            if page.next_continuation_token:
                cursor = {"continuation-token": page.next_continuation_token}
            elif marker is not None and marker != cursor.get("start-after"):
                cursor = {"start-after": marker}
            else:
                logger.warning(
                    "Listing of %r reported more data without an advancing cursor; stopping",
                    prefix,
                )
                return

    def _has_more(self, page: ListPage) -> bool:
        """Decide whether another page follows.

        The provider's IsTruncated flag wins; without it a full page is
        taken to mean more data.
        """
        if page.is_truncated is not None:
            return page.is_truncated
        return len(page.entries) == self.page_size


def _body_size(body: Any) -> int:
    if isinstance(body, (bytes, bytearray, memoryview)):
        return len(body)
    return 0
