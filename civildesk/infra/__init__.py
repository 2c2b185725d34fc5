from civildesk.infra.repositories import (
    ComplaintRepository,
    InMemoryRepository,
    RepositoryError,
    StaleRecordError,
    UniqueViolationError,
)

__all__ = [
    "ComplaintRepository",
    "InMemoryRepository",
    "RepositoryError",
    "StaleRecordError",
    "UniqueViolationError",
]
