from ..errors import ConsistencyRollbackError, ImageSpaceError, NotFoundError, ValidationError
from ..utils.logging import logger


def workspace_info(ws):
    return {
        "name": ws.name,
        "is_current": ws.is_current,
        "created_at": ws.created_at.isoformat() if ws.created_at else None,
    }


def _validate_name(name):
    name = (name or "").strip()
    if not name:
        raise ValidationError("workspace name must not be empty")
    if "/" in name or "\\" in name:
        raise ValidationError("workspace name must not contain path separators")
    return name


class WorkspaceService:
    def __init__(self, store, repo):
        self.store = store
        self.repo = repo

    def resolve(self, name):
        ws = self.repo.get_by_name(name)
        if ws is None:
            raise NotFoundError(f"workspace {name} does not exist")
        return ws

    def list_workspaces(self):
        return [workspace_info(ws) for ws in self.repo.list()]

    def create_workspace(self, name):
        name = _validate_name(name)
        if self.repo.get_by_name(name) is not None:
            raise ValidationError(f"workspace {name} already exists")

        ws = self.repo.create(name)
        try:
            self.store.create_workspace(name)
        except ImageSpaceError as e:
            try:
                self.repo.delete(ws.id)
            except ImageSpaceError as undo_error:
                logger.exception(f"Could not remove workspace row {ws.id}: {undo_error}")
                raise ConsistencyRollbackError(
                    f"{e}; workspace row could not be removed",
                    original=e,
                    compensation=undo_error,
                ) from e
            raise
        logger.info(f"Created workspace {name}")
        return workspace_info(ws)

    def set_current(self, name):
        name = _validate_name(name)
        return workspace_info(self.repo.set_current_by_name(name))

    def get_current(self):
        ws = self.repo.get_current()
        return workspace_info(ws) if ws else None

    def delete_workspace(self, name):
        ws = self.resolve(_validate_name(name))
        # objects first; the row delete cascades to image rows
        self.store.delete_workspace(ws.name)
        self.repo.delete(ws.id)
        logger.info(f"Deleted workspace {ws.name}")
