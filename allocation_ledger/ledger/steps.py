"""
Write Intent Step Runner

DESIGN DECISION: The gateway has no transactions. A ledger operation is
therefore a list of independent writes (insert a row, delete rows, adjust
a bank, adjust an allocation) described up front as a WriteIntent.

The runner:
1. Persists the intent before the first write
2. Applies each step and records progress after it
3. Deletes the intent after the last step

If anything fails in between, the intent stays behind and `resume()`
finishes it later. A new operation whose first write never landed is
abandoned instead: its intent is deleted and nothing is recovered. Every step is safe to apply twice:
- inserts use an id chosen before the first attempt (existing row = done)
- deletes are by id list (missing rows = done)
- adjustments stamp the row's `last_op` with "<intent id>:<step index>"
  and skip a row already carrying that stamp

Adjustments are compare-and-swap writes on the row `version`. A stale
write is retried with a fresh read; when retries run out the step fails
with ConcurrencyConflictError.
"""

from decimal import Decimal
from typing import Optional

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from allocation_ledger.ledger.errors import (
    ConcurrencyConflictError,
    LedgerOperationError,
    StaleWriteError,
)
from allocation_ledger.models.ledger import IntentStep, StepKind, WriteIntent
from allocation_ledger.services.storage import (
    Collection,
    Filters,
    NotFoundError,
    PersistenceGateway,
    StorageError,
)


logger = structlog.get_logger(__name__)


class StepRunner:
    """Applies the steps of a WriteIntent against a gateway."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        max_write_retries: int = 3,
        use_intent_log: bool = True,
    ):
        self._gateway = gateway
        self._max_write_retries = max_write_retries
        self._use_intent_log = use_intent_log

    async def run(self, intent: WriteIntent) -> WriteIntent:
        """
        Execute a new intent from its first step.

        Raises:
            LedgerOperationError: If a step fails. `intent_id` is set when
                the intent is still pending and recovery will finish it;
                a first step that left no trace drops the intent instead.
        """
        if self._use_intent_log:
            try:
                await self._gateway.insert(Collection.WRITE_INTENTS, intent)
            except StorageError as e:
                # Nothing has been written yet
                raise LedgerOperationError(str(e)) from e

        try:
            return await self._execute(intent, logged=self._use_intent_log)
        except LedgerOperationError as e:
            if not self._use_intent_log or e.completed_steps > 0:
                raise
            if not await self._discard_untouched(intent):
                raise
            # The first write never landed: nothing to recover
            raise type(e)(e.message) from e

    async def resume(self, intent: WriteIntent) -> WriteIntent:
        """Finish a persisted intent from its first incomplete step."""
        return await self._execute(intent, logged=True)

    async def _discard_untouched(self, intent: WriteIntent) -> bool:
        """
        Delete a new intent whose first step left no trace.

        Returns:
            True if the intent was deleted, False if it must stay pending
        """
        step = intent.steps[0]
        try:
            if step.kind == StepKind.INSERT_TRANSACTION:
                landed = await self._gateway.get_by_id(
                    Collection.TRANSACTIONS, step.transaction.id
                ) is not None
            elif step.kind == StepKind.DELETE_TRANSACTIONS:
                remaining = await self._gateway.count(
                    Collection.TRANSACTIONS,
                    {"id__in": step.transaction_ids},
                )
                landed = remaining < len(step.transaction_ids)
            else:
                return False

            if landed:
                return False
            await self._gateway.delete(Collection.WRITE_INTENTS, {"id": intent.id})
        except StorageError as e:
            logger.warning(
                "intent_discard_failed",
                intent_id=str(intent.id),
                error=str(e),
            )
            return False

        logger.info(
            "intent_discarded",
            intent_id=str(intent.id),
            operation=intent.operation.value,
        )
        return True

    async def _execute(self, intent: WriteIntent, logged: bool) -> WriteIntent:
        intent_id = intent.id if logged else None

        for index in range(intent.completed_steps, len(intent.steps)):
            try:
                await self._apply(intent, index)
            except ConcurrencyConflictError as e:
                raise ConcurrencyConflictError(e.message, intent_id, index) from e
            except StorageError as e:
                logger.warning(
                    "intent_step_failed",
                    intent_id=str(intent.id),
                    operation=intent.operation.value,
                    step=index,
                    error=str(e),
                )
                raise LedgerOperationError(str(e), intent_id, index) from e

            intent.completed_steps = index + 1
            if logged and not intent.is_complete:
                try:
                    await self._gateway.update(
                        Collection.WRITE_INTENTS,
                        {"id": intent.id},
                        {"completed_steps": intent.completed_steps},
                    )
                except StorageError as e:
                    raise LedgerOperationError(
                        str(e), intent_id, intent.completed_steps
                    ) from e

        if logged:
            try:
                await self._gateway.delete(Collection.WRITE_INTENTS, {"id": intent.id})
            except StorageError as e:
                # All writes landed; a leftover intent only replays no-ops
                logger.warning(
                    "intent_cleanup_failed",
                    intent_id=str(intent.id),
                    error=str(e),
                )

        return intent

    async def _apply(self, intent: WriteIntent, index: int) -> None:
        step = intent.steps[index]
        marker = intent.op_key(index)

        if step.kind == StepKind.INSERT_TRANSACTION:
            await self._insert_transaction(step)
        elif step.kind == StepKind.DELETE_TRANSACTIONS:
            await self._gateway.delete(
                Collection.TRANSACTIONS,
                {"id__in": step.transaction_ids},
            )
        elif step.kind == StepKind.ADJUST_BANK:
            await self.adjust(
                Collection.BANKS,
                {"id": step.bank_id},
                "balance",
                step.delta,
                marker,
            )
        elif step.kind == StepKind.ADJUST_ALLOCATION:
            await self.adjust(
                Collection.ALLOCATIONS,
                {"goal_id": step.goal_id, "bank_id": step.bank_id},
                "amount",
                step.delta,
                marker,
            )
        else:
            raise StorageError(f"Unknown step kind: {step.kind}")

        logger.debug(
            "intent_step_applied",
            intent_id=str(intent.id),
            step=index,
            kind=step.kind.value,
        )

    async def _insert_transaction(self, step: IntentStep) -> None:
        existing = await self._gateway.get_by_id(
            Collection.TRANSACTIONS, step.transaction.id
        )
        if existing is None:
            await self._gateway.insert(Collection.TRANSACTIONS, step.transaction)

    async def adjust(
        self,
        collection: Collection,
        locate: Filters,
        field: str,
        delta: Decimal,
        marker: Optional[str] = None,
    ) -> None:
        """
        Add `delta` to a numeric field with a versioned read-modify-write.

        Raises:
            NotFoundError: If no row matches `locate`
            ConcurrencyConflictError: If every attempt hit a stale version
            StorageError: If the new value is rejected or the gateway fails
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_write_retries),
                wait=wait_exponential(multiplier=0.01, max=0.2),
                retry=retry_if_exception_type(StaleWriteError),
                reraise=True,
            ):
                with attempt:
                    await self._compare_and_swap(collection, locate, field, delta, marker)
        except StaleWriteError as e:
            raise ConcurrencyConflictError(
                f"{collection.value} row kept changing during update: {e}"
            ) from e

    async def _compare_and_swap(
        self,
        collection: Collection,
        locate: Filters,
        field: str,
        delta: Decimal,
        marker: Optional[str],
    ) -> None:
        row = await self._gateway.get_one(collection, locate)
        if row is None:
            raise NotFoundError(f"No {collection.value} row matches {locate}")

        if marker is not None and row.last_op == marker:
            # Already applied by an earlier attempt
            return

        matched = await self._gateway.update(
            collection,
            {"id": row.id, "version": row.version},
            {
                field: getattr(row, field) + delta,
                "version": row.version + 1,
                "last_op": marker,
            },
        )
        if matched == 0:
            logger.info(
                "stale_write_retry",
                collection=collection.value,
                row_id=str(row.id),
                version=row.version,
            )
            raise StaleWriteError(f"version {row.version} of {row.id} is stale")
