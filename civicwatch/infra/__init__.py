from civicwatch.infra.ai_oracle import GroqOracle, OracleError, Suggestion, TextOracle
from civicwatch.infra.identity import (
    IdentityError,
    IdentityProvider,
    IdentityUnavailable,
    InMemoryIdentityProvider,
)
from civicwatch.infra.repositories import InMemoryRepository, PortalRepository, RepositoryError
from civicwatch.infra.storage import BlobStore, InMemoryBlobStore, StorageError

__all__ = [
    "BlobStore",
    "GroqOracle",
    "IdentityError",
    "IdentityProvider",
    "IdentityUnavailable",
    "InMemoryBlobStore",
    "InMemoryIdentityProvider",
    "InMemoryRepository",
    "OracleError",
    "PortalRepository",
    "RepositoryError",
    "StorageError",
    "Suggestion",
    "TextOracle",
]
