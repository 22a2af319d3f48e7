"""Treasury — the protocol-owned escrow balance for collected fees.

Credited by:
    submission fees       (owner → treasury)
    recovery fees         (new owner → treasury)
Debited by:
    refunds               (treasury → owner, the record's fee_paid)
    admin withdrawals     (treasury → recipient, above the reserve minimum)

Withdrawals can never dip into the configured reserve minimum. Refunds
are owed to owners and may draw on the whole balance.
"""

from __future__ import annotations

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.persistence.ledger_store import (
    KIND_TREASURY,
    PROTOCOL_OWNER,
    InsufficientFundsError,
    LedgerStore,
)


class Treasury:
    """View over the treasury account in a ledger store.

    Usage:
        treasury = Treasury(store, state.treasury_address, reserve_minimum=0)
        treasury.collect(owner, fee)
        treasury.pay_out(owner, record.fee_paid)
    """

    def __init__(self, ledger: LedgerStore, address: str, reserve_minimum: int = 0) -> None:
        self._ledger = ledger
        self._address = address
        self._reserve_minimum = reserve_minimum

    @property
    def address(self) -> str:
        return self._address

    @property
    def balance(self) -> int:
        return self._ledger.balance(self._address)

    @property
    def withdrawable(self) -> int:
        return max(self.balance - self._reserve_minimum, 0)

    def assert_protocol_owned(self) -> None:
        """Fail unless the treasury account exists and belongs to the protocol."""
        account = self._ledger.get_account(self._address)
        if account is None or account.kind != KIND_TREASURY or account.owner != PROTOCOL_OWNER:
            raise RegistryError(
                ErrorCode.INVALID_TREASURY_ACCOUNT,
                f"Treasury account {self._address} is missing or not protocol-owned",
            )

    def collect(self, payer: str, amount: int) -> None:
        """Move a fee from ``payer`` into the treasury."""
        self.assert_protocol_owned()
        if amount <= 0:
            raise RegistryError(ErrorCode.INSUFFICIENT_FEE, "Fee must be positive")
        try:
            self._ledger.transfer(payer, self._address, amount)
        except InsufficientFundsError as e:
            raise RegistryError(ErrorCode.INSUFFICIENT_FEE, str(e)) from e

    def pay_out(self, recipient: str, amount: int, respect_reserve: bool = False) -> None:
        """Move ``amount`` from the treasury to ``recipient``."""
        self.assert_protocol_owned()
        if recipient == self._address:
            raise RegistryError(
                ErrorCode.INVALID_TREASURY_ACCOUNT, "Treasury cannot pay itself",
            )
        available = self.withdrawable if respect_reserve else self.balance
        if amount > available:
            raise RegistryError(
                ErrorCode.INSUFFICIENT_TREASURY_BALANCE,
                f"Treasury can release {available}, requested {amount}",
            )
        self._ledger.transfer(self._address, recipient, amount)
