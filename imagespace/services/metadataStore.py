from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import defer

from ..errors import NotFoundError, StoreReadError, StoreWriteError, ValidationError
from ..models.database import as_utc, utcnow
from ..models.imageModel import SOURCE_UPLOAD, Image
from ..models.workspaceModel import Workspace
from ..utils.logging import logger

UPDATABLE_IMAGE_FIELDS = {"name", "object_path", "object_url", "thumbnail_path", "thumbnail_url"}


@dataclass
class WorkspaceRecord:
    id: int
    name: str
    is_current: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class ImageRecord:
    id: Optional[int]
    workspace_id: int
    name: str
    object_path: str
    object_url: str
    thumbnail_path: str = ""
    thumbnail_url: str = ""
    size: int = 0
    mime_type: str = ""
    source_type: str = SOURCE_UPLOAD
    # None on records that came from a list query
    prompt: Optional[str] = ""
    ref_images: Optional[List[str]] = field(default_factory=list)
    message_list: Optional[List[dict]] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _workspace_record(row):
    return WorkspaceRecord(
        id=row.id,
        name=row.name,
        is_current=bool(row.is_current),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _image_record(row, full=True):
    return ImageRecord(
        id=row.id,
        workspace_id=row.workspace_id,
        name=row.name,
        object_path=row.object_path,
        object_url=row.object_url,
        thumbnail_path=row.thumbnail_path or "",
        thumbnail_url=row.thumbnail_url or "",
        size=row.size,
        mime_type=row.mime_type,
        source_type=row.source_type,
        prompt=row.prompt if full else None,
        ref_images=list(row.ref_images or []) if full else None,
        message_list=list(row.message_list or []) if full else None,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _image_row(record):
    now = utcnow()
    return Image(
        workspace_id=record.workspace_id,
        name=record.name,
        object_path=record.object_path,
        object_url=record.object_url,
        thumbnail_path=record.thumbnail_path or "",
        thumbnail_url=record.thumbnail_url or "",
        size=record.size,
        mime_type=record.mime_type,
        source_type=record.source_type or SOURCE_UPLOAD,
        prompt=record.prompt or "",
        ref_images=list(record.ref_images or []),
        message_list=list(record.message_list or []),
        created_at=now,
        updated_at=now,
    )


class ImageRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, record):
        return self.create_many([record])[0]

    def create_many(self, records):
        """Insert all rows in a single transaction; either all land or none."""
        with self.session_factory() as db:
            try:
                rows = [_image_row(r) for r in records]
                db.add_all(rows)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"saving image record failed: {e}") from e
            return [_image_record(row) for row in rows]

    def get_by_id(self, image_id):
        with self.session_factory() as db:
            try:
                row = db.get(Image, image_id)
            except SQLAlchemyError as e:
                raise StoreReadError(f"loading image {image_id} failed: {e}") from e
            return _image_record(row) if row else None

    def get_by_path(self, object_path):
        with self.session_factory() as db:
            try:
                row = db.query(Image).filter(Image.object_path == object_path).first()
            except SQLAlchemyError as e:
                raise StoreReadError(f"loading image {object_path} failed: {e}") from e
            return _image_record(row) if row else None

    def _list(self, query):
        # prompt, ref_images and message_list stay out of list payloads
        query = query.options(
            defer(Image.prompt), defer(Image.ref_images), defer(Image.message_list)
        ).order_by(Image.created_at.desc(), Image.id.desc())
        try:
            return [_image_record(row, full=False) for row in query.all()]
        except SQLAlchemyError as e:
            raise StoreReadError(f"listing images failed: {e}") from e

    def list_by_workspace(self, workspace_id):
        with self.session_factory() as db:
            return self._list(db.query(Image).filter(Image.workspace_id == workspace_id))

    def list_by_workspace_name(self, workspace_name):
        with self.session_factory() as db:
            return self._list(
                db.query(Image).join(Workspace, Image.workspace_id == Workspace.id)
                .filter(Workspace.name == workspace_name)
            )

    def update(self, image_id, **fields):
        unknown = set(fields) - UPDATABLE_IMAGE_FIELDS
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        with self.session_factory() as db:
            try:
                row = db.get(Image, image_id)
                if row is None:
                    raise NotFoundError(f"image {image_id} does not exist")
                for key, value in fields.items():
                    setattr(row, key, value)
                row.updated_at = utcnow()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"updating image {image_id} failed: {e}") from e
            return _image_record(row)

    def _delete(self, criterion, label):
        with self.session_factory() as db:
            try:
                affected = db.query(Image).filter(criterion).delete(synchronize_session=False)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"deleting image {label} failed: {e}") from e
        if affected == 0:
            raise NotFoundError(f"image {label} does not exist")

    def delete(self, image_id):
        self._delete(Image.id == image_id, image_id)

    def delete_by_path(self, object_path):
        self._delete(Image.object_path == object_path, object_path)


class WorkspaceRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def create(self, name):
        with self.session_factory() as db:
            now = utcnow()
            row = Workspace(name=name, is_current=False, created_at=now, updated_at=now)
            try:
                db.add(row)
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ValidationError(f"workspace {name} already exists") from e
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"creating workspace {name} failed: {e}") from e
            return _workspace_record(row)

    def _first(self, criterion, label):
        with self.session_factory() as db:
            try:
                row = db.query(Workspace).filter(criterion).first()
            except SQLAlchemyError as e:
                raise StoreReadError(f"loading workspace {label} failed: {e}") from e
            return _workspace_record(row) if row else None

    def get_by_name(self, name):
        return self._first(Workspace.name == name, name)

    def get_by_id(self, workspace_id):
        return self._first(Workspace.id == workspace_id, workspace_id)

    def get_current(self):
        return self._first(Workspace.is_current.is_(True), "current")

    def list(self):
        with self.session_factory() as db:
            try:
                rows = db.query(Workspace).order_by(
                    Workspace.is_current.desc(), Workspace.created_at.desc(), Workspace.id.desc()
                ).all()
            except SQLAlchemyError as e:
                raise StoreReadError(f"listing workspaces failed: {e}") from e
            return [_workspace_record(row) for row in rows]

    def set_current(self, workspace_id):
        """Clear every flag, then set the target, inside one transaction."""
        with self.session_factory() as db:
            try:
                # row locks serialise concurrent switches (no-op on SQLite)
                db.query(Workspace.id).with_for_update().all()
                now = utcnow()
                db.query(Workspace).filter(Workspace.is_current.is_(True)).update(
                    {Workspace.is_current: False, Workspace.updated_at: now},
                    synchronize_session=False,
                )
                affected = db.query(Workspace).filter(Workspace.id == workspace_id).update(
                    {Workspace.is_current: True, Workspace.updated_at: now},
                    synchronize_session=False,
                )
                if affected == 0:
                    db.rollback()
                    raise NotFoundError(f"workspace {workspace_id} does not exist")
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"switching current workspace failed: {e}") from e
        logger.info(f"Current workspace is now {workspace_id}")

    def set_current_by_name(self, name):
        ws = self.get_by_name(name)
        if ws is None:
            raise NotFoundError(f"workspace {name} does not exist")
        self.set_current(ws.id)
        return self.get_by_id(ws.id)

    def delete(self, workspace_id):
        """Delete the workspace row and its image rows in one transaction."""
        with self.session_factory() as db:
            try:
                db.query(Image).filter(Image.workspace_id == workspace_id).delete(
                    synchronize_session=False
                )
                affected = db.query(Workspace).filter(Workspace.id == workspace_id).delete(
                    synchronize_session=False
                )
                if affected == 0:
                    db.rollback()
                    raise NotFoundError(f"workspace {workspace_id} does not exist")
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StoreWriteError(f"deleting workspace {workspace_id} failed: {e}") from e

    def delete_by_name(self, name):
        ws = self.get_by_name(name)
        if ws is None:
            raise NotFoundError(f"workspace {name} does not exist")
        self.delete(ws.id)
