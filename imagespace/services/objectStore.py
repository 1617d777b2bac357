import time
from dataclasses import dataclass
from datetime import datetime, timezone

import oss2
from oss2.exceptions import NoSuchKey, OssError

from ..errors import ConsistencyRollbackError, NotFoundError, StoreReadError, StoreWriteError
from ..utils.logging import logger
from .imageProcessing import is_thumbnail

WORKSPACE_MARKER = ".keep"
DEFAULT_PREFIX = "image"
BATCH_DELETE_LIMIT = 1000
LIST_PAGE_SIZE = 1000


@dataclass
class ObjectEntry:
    key: str
    size: int
    last_modified: datetime


def normalize_key(key):
    return key.replace("\\", "/")


def _strip_scheme(endpoint):
    for scheme in ("https://", "http://"):
        if endpoint.startswith(scheme):
            return endpoint[len(scheme):]
    return endpoint


class ObjectStore:
    """Blob namespace partitioned as {prefix}/{workspace}/{filename}.

    There is no rename primitive. `rename` copies then deletes, so for a
    short time both keys exist.
    """

    def __init__(self, bucket, base_url, image_prefix=DEFAULT_PREFIX):
        self.bucket = bucket
        self.base_url = base_url.rstrip("/")
        self.prefix = (image_prefix or "").strip("/") or DEFAULT_PREFIX

    @classmethod
    def from_config(cls, config):
        auth = oss2.Auth(config["OSS_ACCESS_KEY_ID"], config["OSS_ACCESS_KEY_SECRET"])
        bucket = oss2.Bucket(auth, config["OSS_ENDPOINT"], config["OSS_BUCKET"])
        base_url = config.get("OSS_PUBLIC_BASE_URL") or (
            f"https://{config['OSS_BUCKET']}.{_strip_scheme(config['OSS_ENDPOINT'])}"
        )
        return cls(bucket, base_url, config.get("OSS_IMAGE_PREFIX"))

    # -- keys ---------------------------------------------------------------

    def workspace_prefix(self, workspace):
        return normalize_key(f"{self.prefix}/{workspace}/")

    def object_key(self, workspace, filename):
        return normalize_key(f"{self.prefix}/{workspace}/{filename}")

    def url_for(self, key):
        return f"{self.base_url}/{key}"

    # -- primitives ---------------------------------------------------------

    def put(self, key, data):
        key = normalize_key(key)
        try:
            self.bucket.put_object(key, data)
        except OssError as e:
            raise StoreWriteError(f"upload of {key} failed: {e}") from e
        return key

    def get(self, key):
        try:
            return self.bucket.get_object(key).read()
        except NoSuchKey as e:
            raise NotFoundError(f"object {key} does not exist") from e
        except OssError as e:
            raise StoreReadError(f"download of {key} failed: {e}") from e

    def exists(self, key):
        try:
            return self.bucket.object_exists(key)
        except OssError as e:
            raise StoreReadError(f"lookup of {key} failed: {e}") from e

    def delete(self, key):
        """Deleting a missing key is not an error."""
        try:
            self.bucket.delete_object(key)
        except NoSuchKey:
            pass
        except OssError as e:
            raise StoreWriteError(f"delete of {key} failed: {e}") from e

    def delete_many(self, keys):
        keys = list(keys)
        for start in range(0, len(keys), BATCH_DELETE_LIMIT):
            batch = keys[start:start + BATCH_DELETE_LIMIT]
            try:
                self.bucket.batch_delete_objects(batch)
            except OssError as e:
                raise StoreWriteError(f"batch delete of {len(batch)} objects failed: {e}") from e

    def copy(self, src_key, dst_key):
        dst_key = normalize_key(dst_key)
        try:
            self.bucket.copy_object(self.bucket.bucket_name, src_key, dst_key)
        except NoSuchKey as e:
            raise NotFoundError(f"object {src_key} does not exist") from e
        except OssError as e:
            raise StoreWriteError(f"copy {src_key} -> {dst_key} failed: {e}") from e
        return dst_key

    def _list(self, prefix, delimiter=""):
        marker = ""
        while True:
            try:
                result = self.bucket.list_objects(
                    prefix=prefix, delimiter=delimiter, marker=marker, max_keys=LIST_PAGE_SIZE
                )
            except OssError as e:
                raise StoreReadError(f"listing {prefix} failed: {e}") from e
            yield result
            if not result.is_truncated:
                break
            marker = result.next_marker

    def list_by_prefix(self, prefix):
        entries = []
        for page in self._list(normalize_key(prefix)):
            for obj in page.object_list:
                entries.append(
                    ObjectEntry(
                        key=obj.key,
                        size=obj.size,
                        last_modified=datetime.fromtimestamp(obj.last_modified, timezone.utc),
                    )
                )
        return sorted(entries, key=lambda e: e.key)

    # -- image level ---------------------------------------------------------

    def put_image(self, data, filename, workspace):
        if not filename:
            filename = f"{time.time_ns()}.jpg"
        key = self.put(self.object_key(workspace, filename), data)
        logger.info(f"Uploaded {key} ({len(data)} bytes)")
        return key

    def move(self, src_key, dst_key):
        dst_key = self.copy(src_key, dst_key)
        try:
            self.delete(src_key)
        except StoreWriteError as e:
            # leave the source as the only copy
            try:
                self.delete(dst_key)
            except StoreWriteError as cleanup:
                raise ConsistencyRollbackError(
                    f"{e}; removing copy {dst_key} also failed: {cleanup}",
                    original=e,
                    compensation=cleanup,
                ) from e
            raise
        logger.info(f"Moved {src_key} -> {dst_key}")
        return dst_key

    def restore(self, src_key, dst_key):
        """Move used when undoing. Once dst_key is written it is never removed again.

        If the source cannot be deleted afterwards both keys are kept.
        """
        dst_key = self.copy(src_key, dst_key)
        try:
            self.delete(src_key)
        except StoreWriteError as e:
            logger.warning(f"Restored {dst_key} but {src_key} is left behind: {e}")
            return dst_key
        logger.info(f"Restored {src_key} -> {dst_key}")
        return dst_key

    def rename(self, old_key, new_name, workspace):
        return self.move(old_key, self.object_key(workspace, new_name))

    def list_workspace_images(self, workspace, originals_only=False):
        prefix = self.workspace_prefix(workspace)
        images = []
        for entry in self.list_by_prefix(prefix):
            name = entry.key[len(prefix):]
            if not name or name == WORKSPACE_MARKER:
                continue
            if originals_only and is_thumbnail(name):
                continue
            images.append({
                "path": entry.key,
                "url": self.url_for(entry.key),
                "name": name,
                "size": entry.size,
                "updated": entry.last_modified.isoformat(),
            })
        return images

    # -- workspace level -----------------------------------------------------

    def create_workspace(self, name):
        return self.put(self.object_key(name, WORKSPACE_MARKER), b"")

    def delete_workspace(self, name):
        keys = [e.key for e in self.list_by_prefix(self.workspace_prefix(name))]
        if keys:
            self.delete_many(keys)
        logger.info(f"Removed {len(keys)} objects of workspace {name}")
        return len(keys)

    def list_workspaces(self):
        search = f"{self.prefix}/"
        names = []
        for page in self._list(search, delimiter="/"):
            for common in page.prefix_list:
                name = common[len(search):].rstrip("/")
                if name:
                    names.append(name)
        return sorted(names)
