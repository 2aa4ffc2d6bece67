from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from .indexer.export_task import export_json_task as indexer__export_json_task
from .indexer.sync_task import sync_once_task as indexer__sync_once_task
from .indexer.sync_task import watch_task as indexer__watch_task

TaskFn = Callable[..., Awaitable[Any]]

TASKS: dict[str, TaskFn] = {
    "once": indexer__sync_once_task,
    "watch": indexer__watch_task,
    "export_json": indexer__export_json_task,
}
