import hashlib
import json
import logging
from pathlib import Path

from .errors import InvalidKey, IOFailure, NotFound
from .interfaces import ByteStore, MetadataStore, SecurityGateway

logger = logging.getLogger(__name__)


def validate_key(*keys: object) -> None:
    for key in keys:
        if not isinstance(key, str) or not key:
            raise InvalidKey(f"store keys must be non-empty strings, got {key!r}")


class MemoryMetadataStore(MetadataStore):
    """Two-level in-memory key/value store: owner -> id -> JSON text.

    Records are serialized on the way in and parsed on the way out so callers
    never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._db: dict[str, dict[str, str]] = {}

    def put(self, owner_id: str, fragment_id: str, record: dict[str, object]) -> None:
        validate_key(owner_id, fragment_id)
        self._db.setdefault(owner_id, {})[fragment_id] = json.dumps(record)

    def get(self, owner_id: str, fragment_id: str) -> dict[str, object] | None:
        validate_key(owner_id, fragment_id)
        raw = self._db.get(owner_id, {}).get(fragment_id)
        return json.loads(raw) if raw is not None else None

    def delete(self, owner_id: str, fragment_id: str) -> None:
        validate_key(owner_id, fragment_id)
        records = self._db.get(owner_id)
        if records is None or fragment_id not in records:
            raise NotFound(f"no metadata for {owner_id}/{fragment_id}")
        del records[fragment_id]

    def list_by_owner(self, owner_id: str) -> list[dict[str, object]]:
        validate_key(owner_id)
        return [json.loads(raw) for raw in list(self._db.get(owner_id, {}).values())]


class MemoryByteStore(ByteStore):
    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], bytes] = {}

    def write(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        validate_key(owner_id, fragment_id)
        self._objects[(owner_id, fragment_id)] = bytes(data)

    def read(self, owner_id: str, fragment_id: str) -> bytes:
        validate_key(owner_id, fragment_id)
        try:
            return self._objects[(owner_id, fragment_id)]
        except KeyError:
            raise NotFound(f"no data for {owner_id}/{fragment_id}") from None

    def delete(self, owner_id: str, fragment_id: str) -> None:
        validate_key(owner_id, fragment_id)
        self._objects.pop((owner_id, fragment_id), None)


class LocalByteStore(ByteStore):
    """Stores each fragment as a file under ``<data_dir>/fragments``.

    The owner id is hashed into the directory name so arbitrary owner strings
    cannot escape the data directory.
    """

    def __init__(self, data_dir: str) -> None:
        self._base = Path(data_dir).resolve() / "fragments"

    def _path(self, owner_id: str, fragment_id: str) -> Path:
        validate_key(owner_id, fragment_id)
        owner_dir = hashlib.sha256(owner_id.encode("utf-8")).hexdigest()
        name = hashlib.sha256(fragment_id.encode("utf-8")).hexdigest()
        return self._base / owner_dir / name

    def write(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        p = self._path(owner_id, fragment_id)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_suffix(".tmp")
            tmp.write_bytes(data)
            tmp.replace(p)
        except OSError as e:
            logger.exception("failed to write fragment data: %s", p)
            raise IOFailure(f"unable to write fragment data: {e}") from e

    def read(self, owner_id: str, fragment_id: str) -> bytes:
        p = self._path(owner_id, fragment_id)
        try:
            return p.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"no data for fragment {fragment_id}") from None
        except OSError as e:
            logger.exception("failed to read fragment data: %s", p)
            raise IOFailure(f"unable to read fragment data: {e}") from e

    def delete(self, owner_id: str, fragment_id: str) -> None:
        p = self._path(owner_id, fragment_id)
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            logger.exception("failed to delete fragment data: %s", p)
            raise IOFailure(f"unable to delete fragment data: {e}") from e


class S3ByteStore(ByteStore):
    """Fragment data in an S3 (or S3-compatible) bucket, keyed ``<owner>/<id>``."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        client: object | None = None,
    ) -> None:
        if client is None:
            import boto3

            client = boto3.client("s3", endpoint_url=endpoint_url, region_name=region_name)
        self._client = client
        self._bucket = bucket

    def _key(self, owner_id: str, fragment_id: str) -> str:
        validate_key(owner_id, fragment_id)
        return f"{owner_id}/{fragment_id}"

    def write(self, owner_id: str, fragment_id: str, data: bytes) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        key = self._key(owner_id, fragment_id)
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=data)  # type: ignore[attr-defined]
        except (BotoCoreError, ClientError) as e:
            logger.exception("S3 upload failed: bucket=%s key=%s", self._bucket, key)
            raise IOFailure(f"S3 upload failed: {e}") from e

    def read(self, owner_id: str, fragment_id: str) -> bytes:
        from botocore.exceptions import BotoCoreError, ClientError

        key = self._key(owner_id, fragment_id)
        try:
            resp = self._client.get_object(Bucket=self._bucket, Key=key)  # type: ignore[attr-defined]
            return resp["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise NotFound(f"no data for fragment {fragment_id}") from e
            logger.exception("S3 read failed: bucket=%s key=%s", self._bucket, key)
            raise IOFailure(f"unable to read fragment data: {e}") from e
        except BotoCoreError as e:
            logger.exception("S3 read failed: bucket=%s key=%s", self._bucket, key)
            raise IOFailure(f"unable to read fragment data: {e}") from e

    def delete(self, owner_id: str, fragment_id: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        key = self._key(owner_id, fragment_id)
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)  # type: ignore[attr-defined]
        except (BotoCoreError, ClientError) as e:
            logger.exception("S3 delete failed: bucket=%s key=%s", self._bucket, key)
            raise IOFailure(f"unable to delete fragment data: {e}") from e


class Argon2BasicAuth(SecurityGateway):
    """Verifies HTTP Basic credentials against a users file of argon2 hashes.

    Each non-empty, non-comment line is ``email:<argon2 PHC string>``. The
    owner id handed to the domain layer is the SHA-256 hex digest of the
    lower-cased email, so raw emails never reach the stores.
    """

    def __init__(self, users: dict[str, str]) -> None:
        self._users = {email.strip().lower(): phc for email, phc in users.items()}

    @classmethod
    def from_file(cls, path: str) -> "Argon2BasicAuth":
        users: dict[str, str] = {}
        p = Path(path)
        if not p.exists():
            logger.warning("users file %s not found; all credentials will be rejected", p)
            return cls(users)
        for line in p.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            email, sep, phc = line.partition(":")
            if not sep or not phc:
                logger.warning("skipping malformed users file entry for %r", email)
                continue
            users[email] = phc.strip()
        return cls(users)

    @staticmethod
    def owner_id(email: str) -> str:
        return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()

    def authenticate(self, username: str, password: str) -> str | None:
        from argon2.exceptions import VerificationError
        from argon2.low_level import Type, verify_secret

        phc = self._users.get(username.strip().lower())
        if phc is None:
            return None
        try:
            ok = verify_secret(phc.encode("utf-8"), password.encode("utf-8"), Type.ID)
        except VerificationError:
            ok = False
        return self.owner_id(username) if ok else None
