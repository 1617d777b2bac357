import time
from dataclasses import dataclass
from typing import Any, Optional

from ..errors import (
    ConsistencyRollbackError,
    ExternalCapabilityError,
    ImageSpaceError,
    NotFoundError,
    StoreWriteError,
    ValidationError,
)
from ..models.imageModel import SOURCE_GENERATE, SOURCE_UPLOAD
from ..utils.logging import logger
from .generation import InlineImage
from .imageProcessing import (
    ThumbnailError,
    derive_thumbnail,
    detect_mime_type,
    extension_for_mime,
    is_thumbnail,
    thumbnail_name,
)
from .metadataStore import ImageRecord
from .responseSplitter import split_fragments


@dataclass
class Attempt:
    """Outcome of a best-effort step. The error is logged, never raised."""

    value: Any = None
    error: Optional[Exception] = None

    @property
    def ok(self):
        return self.error is None


def best_effort(description, func, *args):
    try:
        return Attempt(value=func(*args))
    except (ImageSpaceError, ThumbnailError) as e:
        logger.warning(f"{description} failed, continuing without it: {e}")
        return Attempt(error=e)


class RenameSaga:
    """Copy-then-delete moves with recorded undo steps.

    Between the copy and the delete both keys exist. Undo runs each recorded
    move backwards exactly once, newest first, and never deletes a key it
    has restored.
    """

    def __init__(self, store):
        self.store = store
        self._undo = []

    def move(self, src_key, dst_key):
        dst_key = self.store.move(src_key, dst_key)
        self._undo.append((dst_key, src_key))
        return dst_key

    def compensate(self, cause):
        failures = []
        while self._undo:
            current, original = self._undo.pop()
            try:
                self.store.restore(current, original)
                logger.warning(f"Rolled back {current} -> {original}")
            except ImageSpaceError as e:
                logger.exception(f"Rollback of {current} -> {original} failed: {e}")
                failures.append(e)
        if failures:
            raise ConsistencyRollbackError(
                f"{cause}; rollback also failed: {failures[0]}",
                original=cause,
                compensation=failures[0],
            ) from cause


def format_timestamp(value):
    return value.isoformat() if value else None


def image_info(image, detail=False):
    info = {
        "id": image.id,
        "path": image.object_path,
        "url": image.object_url,
        "thumbnail_url": image.thumbnail_url,
        "name": image.name,
        "size": image.size,
        "mime_type": image.mime_type,
        "updated": format_timestamp(image.updated_at),
        "source_type": image.source_type,
    }
    if detail:
        info["prompt"] = image.prompt
        info["ref_images"] = list(image.ref_images or [])
        info["message_list"] = list(image.message_list or [])
    return info


def generated_filename(mime_type, position=0):
    return f"generated-{time.time_ns()}-{position}{extension_for_mime(mime_type)}"


class AssetPipeline:
    """Keeps the object store and the metadata store consistent for images.

    Objects are written before metadata. When a metadata write fails the
    objects written for it are deleted again before the error surfaces.
    """

    def __init__(self, store, images, workspaces, generator, default_workspace="default"):
        self.store = store
        self.images = images
        self.workspaces = workspaces
        self.generator = generator
        self.default_workspace = default_workspace

    # -- helpers -------------------------------------------------------------

    def _put_thumbnail(self, data, filename, mime_type, workspace):
        thumb = derive_thumbnail(data, mime_type)
        path = self.store.put_image(thumb, thumbnail_name(filename), workspace)
        return path, self.store.url_for(path)

    def _store_thumbnail(self, data, filename, mime_type, workspace):
        return best_effort(
            f"thumbnail for {filename}", self._put_thumbnail, data, filename, mime_type, workspace
        )

    def _rollback_objects(self, keys, cause):
        failures = []
        for key in keys:
            try:
                self.store.delete(key)
                logger.warning(f"Removed {key} after failed write")
            except ImageSpaceError as e:
                logger.exception(f"Could not remove {key}: {e}")
                failures.append(e)
        if failures:
            raise ConsistencyRollbackError(
                f"{cause}; {len(failures)} objects could not be removed",
                original=cause,
                compensation=failures[0],
            ) from cause

    def _ensure_free(self, path):
        if self.images.get_by_path(path) is not None:
            raise ValidationError(f"an image already exists at {path}")

    def _check_target(self, workspace, filename):
        """Both keys a new image will occupy must be unused by other images."""
        if is_thumbnail(filename):
            raise ValidationError(f"{filename} is reserved for thumbnails")
        path = self.store.object_key(workspace, filename)
        self._ensure_free(path)
        self._ensure_free(self.store.object_key(workspace, thumbnail_name(filename)))
        return path

    # -- operations ----------------------------------------------------------

    def upload_image(self, workspace, filename, data):
        if not filename:
            filename = f"{time.time_ns()}.jpg"
        ws = self.workspaces.resolve(workspace)
        self._check_target(ws.name, filename)

        mime_type = detect_mime_type(filename)
        path = self.store.put_image(data, filename, ws.name)
        thumb = self._store_thumbnail(data, filename, mime_type, ws.name)
        thumb_path, thumb_url = thumb.value if thumb.ok else ("", "")

        record = ImageRecord(
            id=None,
            workspace_id=ws.id,
            name=filename,
            object_path=path,
            object_url=self.store.url_for(path),
            thumbnail_path=thumb_path,
            thumbnail_url=thumb_url,
            size=len(data),
            mime_type=mime_type,
            source_type=SOURCE_UPLOAD,
        )
        try:
            saved = self.images.create(record)
        except ImageSpaceError as e:
            self._rollback_objects([k for k in (path, thumb_path) if k], e)
            raise
        logger.info(f"Stored upload {saved.object_path} as image {saved.id}")
        return {"path": saved.object_path, "url": saved.object_url}

    def generate_image(self, prompt, ref_paths=None, workspace="", enable_web_search=False):
        if not prompt or not prompt.strip():
            raise ValidationError("prompt must not be empty")
        ref_paths = list(ref_paths or [])
        ws = self.workspaces.resolve(workspace or self.default_workspace)

        references = []
        for ref in ref_paths:
            # the model only accepts inline bytes, never URLs
            references.append(InlineImage(self.store.get(ref), detect_mime_type(ref)))

        response = self.generator.generate(prompt, references, enable_web_search=enable_web_search)
        if not response.candidates:
            raise ExternalCapabilityError("empty model output: no candidates returned")
        if not response.candidates[0]:
            raise ExternalCapabilityError("empty model output: no content fragments returned")

        split = split_fragments(response.candidates[0])
        staged = []
        records = []
        try:
            for position, pending in enumerate(split.pending):
                filename = generated_filename(pending.mime_type, position)
                path = self.store.put_image(pending.data, filename, ws.name)
                staged.append(path)
                thumb = self._store_thumbnail(pending.data, filename, pending.mime_type, ws.name)
                thumb_path, thumb_url = thumb.value if thumb.ok else ("", "")
                if thumb_path:
                    staged.append(thumb_path)

                url = self.store.url_for(path)
                records.append(ImageRecord(
                    id=None,
                    workspace_id=ws.id,
                    name=filename,
                    object_path=path,
                    object_url=url,
                    thumbnail_path=thumb_path,
                    thumbnail_url=thumb_url,
                    size=len(pending.data),
                    mime_type=pending.mime_type,
                    source_type=SOURCE_GENERATE,
                    prompt=prompt,
                    ref_images=list(ref_paths),
                    message_list=[dict(m) for m in split.messages],
                ))
                split.resolve(pending, path, url)
            if records:
                self.images.create_many(records)
        except ImageSpaceError as e:
            self._rollback_objects(staged, e)
            raise

        logger.info(f"Generation stored {len(records)} images in workspace {ws.name}")
        return {"parts": split.parts}

    def list_workspace_images(self, workspace):
        return [image_info(image) for image in self.images.list_by_workspace_name(workspace)]

    def get_image_detail(self, image_id):
        image = self.images.get_by_id(image_id)
        if image is None:
            raise NotFoundError(f"image {image_id} does not exist")
        return image_info(image, detail=True)

    def delete_image(self, path):
        image = self.images.get_by_path(path)
        if image is None:
            raise NotFoundError(f"image {path} does not exist")

        self.store.delete(image.object_path)
        if image.thumbnail_path:
            best_effort(f"removing thumbnail {image.thumbnail_path}", self.store.delete, image.thumbnail_path)

        try:
            self.images.delete(image.id)
        except ImageSpaceError as e:
            # objects are gone already; the row is stale until removed by hand
            logger.error(f"Image {image.id} objects removed but row delete failed: {e}")
            raise
        logger.info(f"Deleted image {image.id} ({path})")

    def rename_image(self, path, new_name, workspace):
        new_name = (new_name or "").strip()
        if not new_name:
            raise ValidationError("new name must not be empty")
        if "/" in new_name or "\\" in new_name:
            raise ValidationError("new name must not contain path separators")

        image = self.images.get_by_path(path)
        if image is None:
            raise NotFoundError(f"image {path} does not exist")
        ws = self.workspaces.resolve(workspace)
        if image.workspace_id != ws.id:
            raise ValidationError(f"image {path} does not belong to workspace {ws.name}")
        if new_name == image.name:
            return image_info(image, detail=True)

        new_path = self._check_target(ws.name, new_name)

        saga = RenameSaga(self.store)
        try:
            saga.move(image.object_path, new_path)
        except ConsistencyRollbackError:
            raise
        except ImageSpaceError as e:
            raise StoreWriteError(f"renaming {path} failed: {e}") from e
        updates = {"name": new_name, "object_path": new_path, "object_url": self.store.url_for(new_path)}

        if image.thumbnail_path:
            new_thumb = self.store.object_key(ws.name, thumbnail_name(new_name))
            try:
                saga.move(image.thumbnail_path, new_thumb)
            except ImageSpaceError as e:
                saga.compensate(e)
                if isinstance(e, ConsistencyRollbackError):
                    raise
                raise StoreWriteError(f"renaming thumbnail {image.thumbnail_path} failed: {e}") from e
            updates["thumbnail_path"] = new_thumb
            updates["thumbnail_url"] = self.store.url_for(new_thumb)

        try:
            updated = self.images.update(image.id, **updates)
        except ImageSpaceError as e:
            saga.compensate(e)
            raise
        logger.info(f"Renamed image {image.id} to {new_name}")
        return image_info(updated, detail=True)
