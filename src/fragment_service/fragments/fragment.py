import logging
import uuid
from datetime import datetime, timezone

from . import converters
from .errors import DeleteFailed, FragmentError, NotFound, UnsupportedType
from .interfaces import ByteStore, ConversionResult, MetadataStore
from .media_types import base_type, is_supported_type

logger = logging.getLogger(__name__)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Fragment:
    """A stored fragment's metadata, bound to the service that persists it.

    ``id``, ``owner_id``, ``type`` and ``created`` are fixed for the life of the
    fragment. ``size`` and ``updated`` change only through ``set_data`` and
    ``save``.
    """

    def __init__(
        self,
        service: "FragmentService",
        *,
        id: str,
        owner_id: str,
        type: str,
        size: int = 0,
        created: str | None = None,
        updated: str | None = None,
    ) -> None:
        if not owner_id or not isinstance(owner_id, str):
            raise ValueError("owner_id is required")
        if not type or not isinstance(type, str):
            raise ValueError("type is required")
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            raise ValueError("size must be a non-negative integer")
        now = _utcnow()
        self._service = service
        self._id = id
        self._owner_id = owner_id
        self._type = type
        self.size = size
        self._created = created or now
        self.updated = updated or self._created

    @property
    def id(self) -> str:
        return self._id

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def type(self) -> str:
        return self._type

    @property
    def created(self) -> str:
        return self._created

    @property
    def mime_type(self) -> str:
        return base_type(self._type)

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/")

    @property
    def formats(self) -> list[str]:
        return converters.formats_for(self._type)

    def save(self) -> None:
        # ISO strings with fixed millisecond precision compare chronologically
        self.updated = max(self.updated, _utcnow())
        self._service.metadata.put(self._owner_id, self._id, self.to_dict())

    def set_data(self, data: bytes | bytearray | memoryview) -> None:
        """Replace the fragment's data and persist the new size with it."""
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError("fragment data must be bytes")
        data = bytes(data)
        self._service.data.write(self._owner_id, self._id, data)
        self.size = len(data)
        self.save()

    def get_data(self) -> bytes:
        return self._service.data.read(self._owner_id, self._id)

    def convert(self, extension: str | None) -> ConversionResult:
        return converters.convert(self._type, self.get_data(), extension)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self._id,
            "ownerId": self._owner_id,
            "created": self._created,
            "updated": self.updated,
            "type": self._type,
            "size": self.size,
        }

    def __repr__(self) -> str:
        return f"Fragment(id={self._id!r}, owner_id={self._owner_id!r}, type={self._type!r}, size={self.size})"


class FragmentService:
    """Entry point for fragment lifecycle operations.

    The service owns the two stores that back every fragment: a metadata
    store for the small, frequently listed records and a byte store for the
    opaque content. They share nothing but the ``(owner_id, id)`` key.
    """

    def __init__(self, metadata: MetadataStore, data: ByteStore) -> None:
        self.metadata = metadata
        self.data = data

    @staticmethod
    def is_supported_type(media_type: str) -> bool:
        return is_supported_type(media_type)

    def create(self, owner_id: str, type: str, size: int = 0) -> Fragment:
        """Build a new, unsaved fragment with a fresh id."""
        if not is_supported_type(type):
            raise UnsupportedType(f"unsupported type: {type}")
        return Fragment(self, id=str(uuid.uuid4()), owner_id=owner_id, type=type, size=size)

    def _from_record(self, record: dict[str, object]) -> Fragment:
        return Fragment(
            self,
            id=str(record["id"]),
            owner_id=str(record["ownerId"]),
            type=str(record["type"]),
            size=int(record["size"]),  # type: ignore[call-overload]
            created=str(record["created"]),
            updated=str(record["updated"]),
        )

    def by_id(self, owner_id: str, fragment_id: str) -> Fragment:
        record = self.metadata.get(owner_id, fragment_id)
        if record is None:
            raise NotFound(f"fragment {fragment_id} not found")
        return self._from_record(record)

    def by_user(self, owner_id: str, expand: bool = False) -> list[str] | list[Fragment]:
        records = self.metadata.list_by_owner(owner_id)
        if expand:
            return [self._from_record(r) for r in records]
        return [str(r["id"]) for r in records]

    def delete(self, owner_id: str, fragment_id: str) -> None:
        """Remove a fragment's data and then its metadata.

        Data goes first so that a failure part-way leaves metadata without
        data, never data without metadata. Nothing is rolled back.
        """
        self.by_id(owner_id, fragment_id)
        try:
            self.data.delete(owner_id, fragment_id)
            self.metadata.delete(owner_id, fragment_id)
        except FragmentError as e:
            logger.error("delete of fragment %s for %s failed: %s", fragment_id, owner_id, e)
            raise DeleteFailed(f"unable to delete fragment {fragment_id}") from e
        logger.info("deleted fragment %s for %s", fragment_id, owner_id)
