from apps.api.app.services.reuse_strategy import (
    DriverCapabilities,
    ReuseContext,
    ReusePolicy,
    select_reuse_strategy,
)

FULL = DriverCapabilities(
    supports_reuse=True,
    supports_snapshots=True,
    supports_scenarios=True,
    supports_transactions=True,
    supports_journaling=True,
    supports_verification=True,
)
NO_TRANSACTIONS = DriverCapabilities(
    supports_reuse=True,
    supports_snapshots=True,
    supports_scenarios=True,
    supports_transactions=False,
    supports_journaling=True,
    supports_verification=False,
)


def _policy(*, transaction: bool = True, journal: bool = True, verify: bool = False) -> ReusePolicy:
    return ReusePolicy(reuse_transaction=transaction, reuse_journal=journal, verify_database=verify)


def _context(*, exists: bool = True, browser: bool = False) -> ReuseContext:
    return ReuseContext(connection_exists=exists, is_browser_test=browser)


def test_transactions_win_when_both_mechanisms_are_eligible() -> None:
    strategy = select_reuse_strategy(FULL, _policy(), _context())

    assert strategy.mechanism == "transaction"
    assert strategy.reusing is True


def test_browser_tests_fall_back_to_journaling() -> None:
    strategy = select_reuse_strategy(FULL, _policy(), _context(browser=True))

    assert strategy.mechanism == "journal"


def test_nothing_is_reused_for_browser_tests_without_journaling() -> None:
    strategy = select_reuse_strategy(FULL, _policy(journal=False), _context(browser=True))

    assert strategy.mechanism == "none"
    assert strategy.reusing is False


def test_missing_connection_disables_reuse() -> None:
    strategy = select_reuse_strategy(FULL, _policy(), _context(exists=False))

    assert strategy.mechanism == "none"


def test_driver_without_transactions_uses_the_journal() -> None:
    strategy = select_reuse_strategy(NO_TRANSACTIONS, _policy(), _context())

    assert strategy.mechanism == "journal"


def test_verification_needs_driver_support_and_policy() -> None:
    assert select_reuse_strategy(FULL, _policy(verify=True), _context()).verify is True
    assert select_reuse_strategy(FULL, _policy(verify=False), _context()).verify is False
    assert select_reuse_strategy(NO_TRANSACTIONS, _policy(verify=True), _context()).verify is False
