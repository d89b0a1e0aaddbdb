from dataclasses import dataclass
from typing import Protocol


class MetadataStore(Protocol):
    def put(self, owner_id: str, fragment_id: str, record: dict[str, object]) -> None:
        ...

    def get(self, owner_id: str, fragment_id: str) -> dict[str, object] | None:
        ...

    def delete(self, owner_id: str, fragment_id: str) -> None:
        """Remove a record. Raises NotFound when there is nothing to remove."""

    def list_by_owner(self, owner_id: str) -> list[dict[str, object]]:
        """Return the owner's records in insertion order, or [] if none."""


class ByteStore(Protocol):
    def write(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        """Replace the whole object. There are no partial or append writes."""

    def read(self, owner_id: str, fragment_id: str) -> bytes:
        """Return the stored bytes. Raises NotFound if nothing was written."""

    def delete(self, owner_id: str, fragment_id: str) -> None:
        ...


class SecurityGateway(Protocol):
    def authenticate(self, username: str, password: str) -> str | None:
        """Return the owner id for valid credentials, None otherwise."""


@dataclass(frozen=True)
class ConversionResult:
    data: bytes
    content_type: str
