"""A small bank-account domain used by the framework tests."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel

from cqrs_ddd_persistence_dynamo import (
    Aggregate,
    DomainEvent,
    EventEnvelope,
    PendingEvent,
    View,
)


def pending(event_type: str = "Updated", **payload: object) -> PendingEvent:
    return PendingEvent(event_type=event_type, payload=dict(payload))


class AccountOpened(DomainEvent):
    owner: str


class MoneyDeposited(DomainEvent):
    amount: int


class MoneyWithdrawn(DomainEvent):
    amount: int


class OpenAccount(BaseModel):
    owner: str


class Deposit(BaseModel):
    amount: int


class Withdraw(BaseModel):
    amount: int


class InsufficientFundsError(Exception):
    pass


class BankAccount(Aggregate):
    aggregate_type: ClassVar[str] = "account"

    owner: str = ""
    balance: int = 0
    opened: bool = False

    def handle(self, command: object) -> list[DomainEvent]:
        if isinstance(command, OpenAccount):
            if self.opened:
                return []
            return [AccountOpened(owner=command.owner)]
        if isinstance(command, Deposit):
            return [MoneyDeposited(amount=command.amount)]
        if isinstance(command, Withdraw):
            if command.amount > self.balance:
                raise InsufficientFundsError(
                    f"balance {self.balance} < {command.amount}"
                )
            return [MoneyWithdrawn(amount=command.amount)]
        raise TypeError(f"Unknown command {command!r}")

    def apply(self, event: DomainEvent) -> None:
        if isinstance(event, AccountOpened):
            self.owner = event.owner
            self.opened = True
        elif isinstance(event, MoneyDeposited):
            self.balance += event.amount
        elif isinstance(event, MoneyWithdrawn):
            self.balance -= event.amount


class AccountSummary(View):
    owner: str = ""
    balance: int = 0
    transactions: int = 0
    last_sequence: int = 0

    def update(self, event: EventEnvelope) -> None:
        payload = event.payload
        if isinstance(payload, AccountOpened):
            self.owner = payload.owner
        elif isinstance(payload, MoneyDeposited):
            self.balance += payload.amount
            self.transactions += 1
        elif isinstance(payload, MoneyWithdrawn):
            self.balance -= payload.amount
            self.transactions += 1
        self.last_sequence = event.sequence
