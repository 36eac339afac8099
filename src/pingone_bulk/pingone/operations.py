"""Single-record PingOne operations used by bulk jobs."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from ..batch.executor import Operation, OperationResult
from ..batch.jobs import OPERATIONS
from ..core.errors import InvalidInput, RecordError
from .client import PingOneClient
from .mapping import has_changes, import_payload, modify_payload

logger = logging.getLogger(__name__)


def _text(record: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = record.get(key)
        if value is not None and str(value).strip():
            return str(value).strip()
    return None


class ImportOperation:
    """Create one user from a CSV row."""

    def __init__(self, client: PingOneClient):
        self.client = client

    async def __call__(self, record: Mapping[str, Any]) -> OperationResult:
        if not _text(record, "username", "email"):
            raise RecordError("Missing username or email")

        population_id = None
        if not _text(record, "populationId"):
            population_id = await self.client.get_default_population_id()

        created = await self.client.create_user(import_payload(record, population_id))
        return OperationResult(message="User created successfully", user_id=created.get("id"))


class ModifyOperation:
    """Patch one user, located by ``userId`` or ``username``. Unchanged users are skipped."""

    def __init__(self, client: PingOneClient):
        self.client = client

    async def _current_user(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        user_id = _text(record, "userId", "id")
        if user_id:
            return await self.client.get_user(user_id)

        username = _text(record, "username")
        if not username:
            raise RecordError("Missing userId or username")
        user = await self.client.find_user(username=username)
        if user is None:
            raise RecordError(f"User not found with username: {username}", record_id=username, status_code=404)
        return user

    async def __call__(self, record: Mapping[str, Any]) -> OperationResult:
        update = modify_payload(record)
        if not update:
            raise RecordError("Missing userData")

        current = await self._current_user(record)
        user_id = current["id"]

        if not has_changes(update, current):
            return OperationResult(message="No changes detected (skipped)", user_id=user_id, skipped=True)

        await self.client.update_user(user_id, update)
        return OperationResult(message="User modified successfully", user_id=user_id)


class DeleteOperation:
    """Delete one user, located by id, username or email."""

    def __init__(self, client: PingOneClient):
        self.client = client

    async def __call__(self, record: Mapping[str, Any]) -> OperationResult:
        user_id = _text(record, "userId", "id")
        if not user_id:
            username = _text(record, "username")
            email = _text(record, "email")
            if not (username or email):
                raise RecordError("Missing userId, username or email")
            user = await self.client.find_user(username=username, email=email)
            if user is None:
                raise RecordError(f"User not found: {username or email}", record_id=username or email, status_code=404)
            user_id = user["id"]

        await self.client.delete_user(user_id)
        return OperationResult(message="User deleted successfully", user_id=user_id)


_OPERATION_TYPES = {
    "import": ImportOperation,
    "modify": ModifyOperation,
    "delete": DeleteOperation,
}


def build_operation(name: str, client: PingOneClient) -> Operation:
    """Return the single-record operation for ``name`` bound to ``client``."""
    if name not in OPERATIONS:
        raise InvalidInput(f"Unknown operation {name!r}; expected one of {', '.join(OPERATIONS)}")
    return _OPERATION_TYPES[name](client)
