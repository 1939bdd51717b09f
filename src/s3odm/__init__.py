"""s3odm - a JSON document store on S3-compatible object storage."""

__version__ = "0.1.0"

from s3odm.auth import RequestSigner, SignedRequest, SigningKeyCache
from s3odm.client import S3ODM, Document
from s3odm.errors import (
    AuthenticationError,
    ConflictError,
    InvalidBodyType,
    MalformedResponseError,
    NotFoundError,
    RecordExistsError,
    RecordNotFoundError,
    S3ODMError,
    UnhandledStatusError,
)
from s3odm.repository import Repository, to_uuid

__all__ = [
    "AuthenticationError",
    "ConflictError",
    "Document",
    "InvalidBodyType",
    "MalformedResponseError",
    "NotFoundError",
    "RecordExistsError",
    "RecordNotFoundError",
    "Repository",
    "RequestSigner",
    "S3ODM",
    "S3ODMError",
    "SignedRequest",
    "SigningKeyCache",
    "UnhandledStatusError",
    "to_uuid",
]
