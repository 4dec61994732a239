"""
TaskService - to-do items with stat rewards
===========================================

Handles:
- Task creation with `xp_rewards` (stat id -> XP)
- Completion: every reward granted with `source_type="task"`,
  `source_id=<task id>` and the status flip, in one transaction
- Reopening and deletion: the task's grants are reversed first

All operations follow the ledger rules:
- A task is rewarded at most once per completion
- Reversal recomputes stat totals from the ledger; levels are kept
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from sqlalchemy.orm.attributes import flag_modified

from questlog.core.database.base import utc_now
from questlog.core.database.service import DatabaseService
from questlog.core.validation.input_validator import InputValidator
from questlog.database.models import SourceType, Task, TaskStatus
from questlog.modules.shared.base_repository import BaseRepository
from questlog.modules.shared.base_service import BaseService
from questlog.modules.shared.exceptions import (
    AlreadyCompletedError,
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)
from questlog.modules.stats.service import stat_award
from questlog.modules.xp.grant_service import GrantResult
from questlog.modules.xp.recalculation_service import ReversalResult

if TYPE_CHECKING:
    from logging import Logger

    from questlog.core.config.manager import ConfigManager
    from questlog.core.event.bus import EventBus
    from questlog.modules.xp.grant_service import XpGrantService
    from questlog.modules.xp.recalculation_service import XpRecalculationService


class TaskService(BaseService):
    """
    TaskService handles task completion rewards.

    Public Methods
    --------------
    - create_task(), get_task(), list_tasks(), update_rewards()
    - complete_task() -> Grant rewards, mark completed
    - reopen_task() -> Reverse rewards, back to pending
    - delete_task() -> Reverse rewards, delete
    """

    def __init__(
        self,
        grant_service: XpGrantService,
        recalculation_service: XpRecalculationService,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self.grants = grant_service
        self.recalculation = recalculation_service
        self._task_repo = BaseRepository[Task](Task, self.log)

    # -------------------------------------------------------------------------
    # Core Operations
    # -------------------------------------------------------------------------

    async def create_task(
        self,
        user_id: str,
        title: str,
        xp_rewards: Optional[Mapping[str, int]] = None,
        description: Optional[str] = None,
    ) -> Task:
        """
        Raises:
            ValidationError: Empty title or malformed stat id
            InvalidAmountError: Non-positive reward
        """
        user_id = self.validate_user_id(user_id)
        title = self.validate_name(title, "title")
        rewards = self._normalize_rewards(xp_rewards)

        async with DatabaseService.get_transaction() as session:
            task = self._task_repo.add(
                session,
                Task(
                    user_id=user_id,
                    title=title,
                    description=description,
                    status=TaskStatus.PENDING.value,
                    xp_rewards=rewards,
                ),
            )
            await session.flush()

        self.log_operation(
            "create_task", user_id=user_id, task_id=task.id, reward_count=len(rewards)
        )
        return task

    async def get_task(self, user_id: str, task_id: str) -> Task:
        user_id = self.validate_user_id(user_id)
        task_id = self.validate_entity_id(task_id, "task_id")

        async with DatabaseService.get_session() as session:
            return await self._load_task(session, user_id, task_id)

    async def list_tasks(self, user_id: str, status: Optional[str] = None) -> List[Task]:
        user_id = self.validate_user_id(user_id)
        conditions = [Task.user_id == user_id]
        if status is not None:
            conditions.append(
                Task.status
                == InputValidator.validate_choice(status, "status", [s.value for s in TaskStatus])
            )

        async with DatabaseService.get_session() as session:
            return await self._task_repo.find_many_where(
                session, *conditions, order_by=[Task.created_at, Task.id]
            )

    async def update_rewards(
        self, user_id: str, task_id: str, xp_rewards: Mapping[str, int]
    ) -> Task:
        """Replace a pending task's rewards. Completed tasks must be reopened first."""
        user_id = self.validate_user_id(user_id)
        task_id = self.validate_entity_id(task_id, "task_id")
        rewards = self._normalize_rewards(xp_rewards)

        async with DatabaseService.get_transaction() as session:
            task = await self._load_task(session, user_id, task_id, for_update=True)
            if task.status == TaskStatus.COMPLETED.value:
                raise InvalidOperationError(
                    "update_rewards", "Completed tasks must be reopened before editing rewards"
                )
            task.xp_rewards = rewards
            flag_modified(task, "xp_rewards")
            await session.flush()

        return task

    async def complete_task(self, user_id: str, task_id: str) -> List[GrantResult]:
        """
        Grant the task's rewards and mark it completed.

        This is a **write operation** using get_transaction() with pessimistic locking.

        Raises:
            AlreadyCompletedError: Task is already completed
            NotFoundError: Task, or a rewarded stat, is missing
        """
        user_id = self.validate_user_id(user_id)
        task_id = self.validate_entity_id(task_id, "task_id")

        async with DatabaseService.get_transaction() as session:
            task = await self._load_task(session, user_id, task_id, for_update=True)
            if task.status == TaskStatus.COMPLETED.value:
                raise AlreadyCompletedError("Task", task_id)

            results = await self.grants.apply_grants(
                session,
                user_id,
                [
                    stat_award(stat_id, amount, f"Completed task: {task.title}")
                    for stat_id, amount in (task.xp_rewards or {}).items()
                ],
                SourceType.TASK.value,
                task_id,
            )
            task.status = TaskStatus.COMPLETED.value
            task.completed_at = utc_now()
            await session.flush()

        total_xp = sum(r.grant.xp_amount for r in results)
        self.log_operation(
            "complete_task",
            user_id=user_id,
            task_id=task_id,
            grant_count=len(results),
            total_xp=total_xp,
        )
        await self.grants.publish_granted(results)
        await self.emit_event(
            "task.completed",
            {"user_id": user_id, "task_id": task_id, "total_xp": total_xp},
        )
        return results

    async def reopen_task(self, user_id: str, task_id: str) -> ReversalResult:
        """
        Reverse a completed task's rewards and move it back to pending.

        Raises:
            InvalidOperationError: Task is not completed
        """
        user_id = self.validate_user_id(user_id)
        task_id = self.validate_entity_id(task_id, "task_id")

        async with DatabaseService.get_transaction() as session:
            task = await self._load_task(session, user_id, task_id, for_update=True)
            if task.status != TaskStatus.COMPLETED.value:
                raise InvalidOperationError("reopen_task", "Task is not completed")

            reversal = await self.recalculation.reverse_in_session(
                session, user_id, SourceType.TASK.value, task_id
            )
            task.status = TaskStatus.PENDING.value
            task.completed_at = None
            await session.flush()

        self.log_operation(
            "reopen_task", user_id=user_id, task_id=task_id, reversed_count=reversal.deleted_count
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return reversal

    async def delete_task(self, user_id: str, task_id: str) -> ReversalResult:
        user_id = self.validate_user_id(user_id)
        task_id = self.validate_entity_id(task_id, "task_id")

        async with DatabaseService.get_transaction() as session:
            task = await self._load_task(session, user_id, task_id, for_update=True)
            reversal = await self.recalculation.reverse_in_session(
                session, user_id, SourceType.TASK.value, task_id
            )
            await self._task_repo.delete(session, task)

        self.log_operation(
            "delete_task", user_id=user_id, task_id=task_id, reversed_count=reversal.deleted_count
        )
        await self.recalculation.publish_reversed(user_id, reversal)
        return reversal

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _load_task(
        self, session: Any, user_id: str, task_id: str, for_update: bool = False
    ) -> Task:
        task = await self._task_repo.get_owned(session, user_id, task_id, for_update=for_update)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    def _normalize_rewards(self, xp_rewards: Optional[Mapping[str, int]]) -> Dict[str, int]:
        if xp_rewards is None:
            return {}
        if not isinstance(xp_rewards, Mapping):
            raise ValidationError("xp_rewards", "Must map stat ids to XP amounts")
        return {
            self.validate_entity_id(stat_id, "stat_id"): self.grants.validate_amount(amount)
            for stat_id, amount in xp_rewards.items()
        }
