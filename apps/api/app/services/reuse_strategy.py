"""Pure selection of the mechanism used to reuse a test database."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReuseMechanism = Literal["transaction", "journal", "none"]


@dataclass(frozen=True)
class DriverCapabilities:
    supports_reuse: bool
    supports_snapshots: bool
    supports_scenarios: bool
    supports_transactions: bool
    supports_journaling: bool
    supports_verification: bool


@dataclass(frozen=True)
class ReusePolicy:
    reuse_transaction: bool
    reuse_journal: bool
    verify_database: bool


@dataclass(frozen=True)
class ReuseContext:
    connection_exists: bool
    is_browser_test: bool


@dataclass(frozen=True)
class ReuseStrategy:
    mechanism: ReuseMechanism
    verify: bool

    @property
    def reusing(self) -> bool:
        return self.mechanism != "none"


def can_use_transactions(
    capabilities: DriverCapabilities, policy: ReusePolicy, context: ReuseContext
) -> bool:
    if not context.connection_exists:
        return False
    if not capabilities.supports_reuse:
        return False
    if context.is_browser_test:
        return False
    if not capabilities.supports_transactions:
        return False
    return policy.reuse_transaction


def can_use_journaling(
    capabilities: DriverCapabilities, policy: ReusePolicy, context: ReuseContext
) -> bool:
    if not context.connection_exists:
        return False
    if not capabilities.supports_reuse:
        return False
    if not capabilities.supports_journaling:
        return False
    return policy.reuse_journal


def select_reuse_strategy(
    capabilities: DriverCapabilities, policy: ReusePolicy, context: ReuseContext
) -> ReuseStrategy:
    """Pick transaction rollback, journal reversal or nothing.

    Transactions win whenever both are eligible.
    """
    mechanism: ReuseMechanism = "none"
    if can_use_transactions(capabilities, policy, context):
        mechanism = "transaction"
    elif can_use_journaling(capabilities, policy, context):
        mechanism = "journal"
    verify = capabilities.supports_verification and policy.verify_database
    return ReuseStrategy(mechanism=mechanism, verify=verify)
