"""
Allocation Ledger

Keeps three views of the same money moving together:
- Bank.balance
- Allocation.amount for each (goal, bank) pair
- the Transaction rows recording withdrawals

Every operation follows the same shape:
1. Load the rows it touches
2. Validate (nothing is written if this fails)
3. Describe the writes as a WriteIntent
4. Hand the intent to the StepRunner

A withdrawal moves money out of a goal's allocation and the bank at the
same time. A return deletes the withdrawal row and puts the money back in
both places; it never adds an offsetting credit row.
"""

from decimal import Decimal
from typing import Iterable, Optional, Union
from uuid import UUID

import structlog

from allocation_ledger.config import LedgerSettings, get_settings
from allocation_ledger.ledger.errors import LedgerOperationError, raise_for_result
from allocation_ledger.ledger.steps import StepRunner
from allocation_ledger.models.ledger import (
    Allocation,
    Bank,
    BatchReturnResult,
    FailedReturnGroup,
    IntentStep,
    OperationKind,
    RecoveryReport,
    ReturnGroup,
    StepKind,
    Transaction,
    ValidationResult,
    WriteIntent,
    to_amount,
)
from allocation_ledger.services.storage import (
    Collection,
    PersistenceGateway,
    StorageError,
)
from allocation_ledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)

AmountLike = Union[Decimal, int, float, str]


def _adjust_bank(bank_id: UUID, delta: Decimal) -> IntentStep:
    return IntentStep(kind=StepKind.ADJUST_BANK, bank_id=bank_id, delta=delta)


def _adjust_allocation(bank_id: UUID, goal_id: UUID, delta: Decimal) -> IntentStep:
    return IntentStep(
        kind=StepKind.ADJUST_ALLOCATION,
        bank_id=bank_id,
        goal_id=goal_id,
        delta=delta,
    )


class AllocationLedger:
    """
    Withdraw, return and batch return against a persistence gateway.

    Usage:
        ledger = AllocationLedger(InMemoryGateway())
        txn = await ledger.withdraw(goal_id, bank_id, Decimal("150"))
        await ledger.return_money(txn)
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        validator: Optional[LedgerValidator] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._gateway = gateway
        self._settings = settings or get_settings().ledger
        self._validator = validator or LedgerValidator(self._settings)
        self._runner = StepRunner(
            gateway,
            max_write_retries=self._settings.max_write_retries,
            use_intent_log=self._settings.write_intent_log,
        )

    @property
    def gateway(self) -> PersistenceGateway:
        return self._gateway

    @property
    def validator(self) -> LedgerValidator:
        return self._validator

    # =========================================================================
    # LOADING
    # =========================================================================

    async def _load_pair(
        self,
        bank_id: UUID,
        goal_id: UUID,
    ) -> tuple[Optional[Bank], Optional[Allocation]]:
        """Bank and allocation rows of a (bank, goal) pair, None if missing."""
        try:
            bank = await self._gateway.get_by_id(Collection.BANKS, bank_id)
            allocation = await self._gateway.get_one(
                Collection.ALLOCATIONS,
                {"goal_id": goal_id, "bank_id": bank_id},
            )
        except StorageError as e:
            raise LedgerOperationError(str(e)) from e
        return bank, allocation

    async def _run(self, intent: WriteIntent) -> None:
        await self._runner.run(intent)
        logger.info(
            "ledger_operation_completed",
            operation=intent.operation.value,
            intent_id=str(intent.id),
            steps=len(intent.steps),
        )

    # =========================================================================
    # WITHDRAW
    # =========================================================================

    async def validate_withdraw(
        self,
        goal_id: UUID,
        bank_id: UUID,
        amount: AmountLike,
    ) -> ValidationResult:
        """Check a withdrawal against the current rows without writing."""
        bank, allocation = await self._load_pair(bank_id, goal_id)
        return self._validator.check_withdraw(bank, allocation, to_amount(amount))

    async def withdraw(
        self,
        goal_id: UUID,
        bank_id: UUID,
        amount: AmountLike,
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Withdraw `amount` from a goal's allocation in a bank.

        Writes, in order: the withdrawal row (negative amount), the bank
        decrement, the allocation decrement.

        Raises:
            LedgerValidationError: Precondition failed, nothing written
            LedgerOperationError: A write failed partway
        """
        amount = to_amount(amount)
        bank, allocation = await self._load_pair(bank_id, goal_id)
        raise_for_result(self._validator.check_withdraw(bank, allocation, amount))

        transaction = Transaction(
            owner_id=bank.owner_id,
            goal_id=goal_id,
            bank_id=bank_id,
            amount=-amount,
            description=description,
        )
        await self._run(WriteIntent(
            operation=OperationKind.WITHDRAW,
            correlation_id=correlation_id,
            steps=[
                IntentStep(kind=StepKind.INSERT_TRANSACTION, transaction=transaction),
                _adjust_bank(bank_id, -amount),
                _adjust_allocation(bank_id, goal_id, -amount),
            ],
        ))
        return transaction

    async def withdraw_split(
        self,
        bank_id: UUID,
        shares: dict[UUID, AmountLike],
        description: str = "",
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Withdraw from several goals held in one bank in a single operation.

        One withdrawal row per goal, one bank decrement for the total and
        one allocation decrement per goal.
        """
        amounts = {goal_id: to_amount(value) for goal_id, value in shares.items()}

        try:
            bank = await self._gateway.get_by_id(Collection.BANKS, bank_id)
            allocations = {
                allocation.goal_id: allocation
                for allocation in await self._gateway.get(
                    Collection.ALLOCATIONS,
                    {"bank_id": bank_id, "goal_id__in": list(amounts)},
                )
            }
            goal_names = {
                goal.id: goal.name
                for goal in await self._gateway.get(
                    Collection.GOALS, {"id__in": list(amounts)}
                )
            }
        except StorageError as e:
            raise LedgerOperationError(str(e)) from e

        raise_for_result(self._validator.check_split_withdraw(
            bank, amounts, allocations, goal_names
        ))

        transactions = [
            Transaction(
                owner_id=bank.owner_id,
                goal_id=goal_id,
                bank_id=bank_id,
                amount=-amount,
                description=description,
            )
            for goal_id, amount in amounts.items()
        ]
        total = sum(amounts.values(), Decimal("0"))

        steps = [
            IntentStep(kind=StepKind.INSERT_TRANSACTION, transaction=transaction)
            for transaction in transactions
        ]
        steps.append(_adjust_bank(bank_id, -total))
        steps.extend(
            _adjust_allocation(bank_id, goal_id, -amount)
            for goal_id, amount in amounts.items()
        )

        await self._run(WriteIntent(
            operation=OperationKind.SPLIT_WITHDRAW,
            correlation_id=correlation_id,
            steps=steps,
        ))
        return transactions

    # =========================================================================
    # RETURN
    # =========================================================================

    async def return_money(
        self,
        transaction: Transaction,
        return_amount: Optional[AmountLike] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Return (part of) a withdrawal to its bank and goal allocation.

        The withdrawal row is always deleted. On a partial return with
        `preserve_partial_remainder` enabled, a remainder withdrawal for the
        outstanding amount replaces it and is returned; otherwise None.

        Raises:
            LedgerValidationError: Precondition failed, nothing written
            LedgerOperationError: A write failed partway
        """
        try:
            stored = await self._gateway.get_by_id(Collection.TRANSACTIONS, transaction.id)
        except StorageError as e:
            raise LedgerOperationError(str(e)) from e

        source = stored or transaction
        amount = source.magnitude if return_amount is None else to_amount(return_amount)
        bank, allocation = await self._load_pair(source.bank_id, source.goal_id)
        raise_for_result(self._validator.check_return(
            transaction, stored, bank, allocation, amount
        ))

        steps = [IntentStep(
            kind=StepKind.DELETE_TRANSACTIONS,
            transaction_ids=[stored.id],
        )]

        remainder = None
        outstanding = stored.magnitude - amount
        if outstanding > 0 and self._settings.preserve_partial_remainder:
            remainder = Transaction(
                owner_id=stored.owner_id,
                goal_id=stored.goal_id,
                bank_id=stored.bank_id,
                amount=-outstanding,
                description=stored.description,
                created_at=stored.created_at,
                parent_id=stored.id,
            )
            steps.append(IntentStep(
                kind=StepKind.INSERT_TRANSACTION,
                transaction=remainder,
            ))

        steps.append(_adjust_bank(stored.bank_id, amount))
        steps.append(_adjust_allocation(stored.bank_id, stored.goal_id, amount))

        await self._run(WriteIntent(
            operation=OperationKind.RETURN,
            correlation_id=correlation_id,
            steps=steps,
        ))
        return remainder

    async def return_batch(
        self,
        transactions: Iterable[Transaction],
        correlation_id: Optional[UUID] = None,
    ) -> BatchReturnResult:
        """
        Return many withdrawals at once.

        Non-withdrawals and rows no longer recorded are skipped. The rest
        are grouped by (bank, goal) in first-seen order; each group is one
        delete plus one bank and one allocation increment, run under its
        own write intent. A failing group does not stop later groups.

        Raises:
            LedgerOperationError: If the selected rows cannot be read
                (nothing written)
        """
        result = BatchReturnResult()

        candidates: list[UUID] = []
        for transaction in transactions:
            if not transaction.is_withdrawal:
                result.skipped_ids.append(transaction.id)
            elif transaction.id not in candidates:
                candidates.append(transaction.id)

        if not candidates:
            return result

        try:
            stored = {
                row.id: row
                for row in await self._gateway.get(
                    Collection.TRANSACTIONS, {"id__in": candidates}
                )
            }
        except StorageError as e:
            raise LedgerOperationError(str(e)) from e

        groups: dict[tuple[UUID, UUID], ReturnGroup] = {}
        for transaction_id in candidates:
            row = stored.get(transaction_id)
            if row is None or not row.is_withdrawal:
                result.skipped_ids.append(transaction_id)
                continue
            group = groups.setdefault(
                (row.bank_id, row.goal_id),
                ReturnGroup(bank_id=row.bank_id, goal_id=row.goal_id),
            )
            group.transaction_ids.append(row.id)
            group.total += row.magnitude

        for group in groups.values():
            try:
                await self._return_group(group, correlation_id)
            except LedgerOperationError as e:
                logger.warning(
                    "return_group_failed",
                    bank_id=str(group.bank_id),
                    goal_id=str(group.goal_id),
                    error=e.message,
                )
                result.failed.append(FailedReturnGroup(
                    group=group,
                    error_message=e.message,
                    intent_id=e.intent_id,
                ))
            else:
                result.completed.append(group)

        return result

    async def _return_group(
        self,
        group: ReturnGroup,
        correlation_id: Optional[UUID],
    ) -> None:
        bank, allocation = await self._load_pair(group.bank_id, group.goal_id)
        if bank is None or allocation is None:
            missing = "bank" if bank is None else "allocation"
            raise LedgerOperationError(f"The {missing} of these withdrawals no longer exists")

        await self._run(WriteIntent(
            operation=OperationKind.BATCH_RETURN_GROUP,
            correlation_id=correlation_id,
            steps=[
                IntentStep(
                    kind=StepKind.DELETE_TRANSACTIONS,
                    transaction_ids=group.transaction_ids,
                ),
                _adjust_bank(group.bank_id, group.total),
                _adjust_allocation(group.bank_id, group.goal_id, group.total),
            ],
        ))

    # =========================================================================
    # RECOVERY
    # =========================================================================

    async def pending_intents(self) -> list[WriteIntent]:
        """Write intents left behind by interrupted operations, oldest first."""
        try:
            return await self._gateway.get(
                Collection.WRITE_INTENTS,
                order_by=["created_at"],
            )
        except StorageError as e:
            raise LedgerOperationError(str(e)) from e

    async def recover_pending(self) -> RecoveryReport:
        """
        Roll every pending write intent forward.

        Safe to call at any time no operation is running; intents that
        fail again stay pending and are listed in the report.
        """
        report = RecoveryReport()

        for intent in await self.pending_intents():
            try:
                await self._runner.resume(intent)
            except LedgerOperationError as e:
                report.failed[str(intent.id)] = e.message
                continue

            report.recovered.append(intent.id)
            logger.info(
                "intent_recovered",
                intent_id=str(intent.id),
                operation=intent.operation.value,
            )

        return report
