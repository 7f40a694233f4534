import time
import unittest

from eth_wallet_swap.errors import NodeConnectionError
from eth_wallet_swap.models import ConnectResult, TokenBalance, TransactionPackage, WalletDetails
from eth_wallet_swap.orchestrator import QuoteResult, build_token_options
from eth_wallet_swap.runtime import (
    AppState,
    BackgroundRunner,
    DetailsLoaded,
    QuoteFetched,
    RpcConnected,
    TransactionPackaged,
    apply_message,
    package_swap_command,
    quote_command,
)

from fakes import USDC, WETH, fake_connection, pair_connection

OWNER = "0x" + "AB" * 20


def loaded_details(native=10**18):
    return WalletDetails(
        address=OWNER,
        native_balance=native,
        tokens=[TokenBalance("USDC", 6, 2_000_000000)],
    )


class ApplyMessageTests(unittest.TestCase):
    def setUp(self) -> None:
        self.state = AppState()

    def test_connected(self) -> None:
        connection = fake_connection()
        self.state.connecting = True
        apply_message(self.state, RpcConnected(ConnectResult(connection=connection)))
        self.assertIs(self.state.connection, connection)
        self.assertFalse(self.state.connecting)
        self.assertEqual(self.state.connection_error, "")

    def test_connection_failure_drops_old_handle(self) -> None:
        self.state.connection = fake_connection()
        error = NodeConnectionError("http://x", OSError("refused"))
        apply_message(self.state, RpcConnected(ConnectResult(error=error)))
        self.assertIsNone(self.state.connection)
        self.assertIn("refused", self.state.connection_error)

    def test_details_loaded_caches_and_feeds_swap_form(self) -> None:
        self.state.loading = True
        apply_message(self.state, DetailsLoaded(loaded_details()))
        self.assertFalse(self.state.loading)
        self.assertIs(self.state.cached_details(OWNER.lower()), self.state.details)
        self.assertEqual([t.symbol for t in self.state.swap.tokens], ["ETH", "USDC"])
        self.assertEqual(self.state.swap.tokens[0].balance, 10**18)

    def test_failed_details_are_still_stored(self) -> None:
        details = WalletDetails(address=OWNER, error_message="no RPC client")
        apply_message(self.state, DetailsLoaded(details))
        self.assertEqual(self.state.details.error_message, "no RPC client")

    def test_transaction_packaged(self) -> None:
        self.state.packaging = True
        package = TransactionPackage(display_text="x", qr_payload="x")
        apply_message(self.state, TransactionPackaged(package))
        self.assertFalse(self.state.packaging)
        self.assertIs(self.state.transaction, package)

    def test_stale_quote_is_ignored(self) -> None:
        swap = self.state.swap
        swap.set_tokens(build_token_options(loaded_details()))
        first = swap.set_from_amount("1")
        swap.set_from_amount("2")
        apply_message(self.state, QuoteFetched(QuoteResult(first.fingerprint, error="boom")))
        self.assertEqual(swap.quote_error, "")
        self.assertTrue(swap.estimating)

    def test_unknown_message(self) -> None:
        with self.assertRaises(TypeError):
            apply_message(self.state, object())


class BackgroundRunnerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runner = BackgroundRunner()

    def tearDown(self) -> None:
        self.runner.shutdown()

    def test_quote_round_trip(self) -> None:
        state = AppState()
        state.connection = pair_connection(1_000_000_000000, 500 * 10**18,
                                           token0=USDC, token1=WETH)
        apply_message(state, DetailsLoaded(loaded_details()))

        request = state.swap.set_from_amount("1")
        self.runner.submit(quote_command(state.connection, request))
        applied = self.runner.run_until_idle(state, timeout=5)

        self.assertEqual(len(applied), 1)
        self.assertIsInstance(applied[0], QuoteFetched)
        self.assertEqual(self.runner.pending, 0)
        self.assertIsNotNone(state.swap.quote)
        self.assertNotEqual(state.swap.to_amount, "")

    def test_latest_request_wins(self) -> None:
        state = AppState()
        state.connection = pair_connection(1_000_000_000000, 500 * 10**18)
        apply_message(state, DetailsLoaded(loaded_details()))

        first = state.swap.set_from_amount("1")
        second = state.swap.set_from_amount("3")
        self.runner.submit(quote_command(state.connection, first))
        self.runner.submit(quote_command(state.connection, second))
        self.runner.run_until_idle(state, timeout=5)

        self.assertEqual(state.swap.quote.amount_in, 3 * 10**18)

    def test_drain_does_not_wait(self) -> None:
        state = AppState()
        self.assertEqual(self.runner.drain(state), [])

        self.runner.submit(lambda: TransactionPackaged(TransactionPackage()))
        applied = []
        for _ in range(500):
            applied = self.runner.drain(state)
            if applied:
                break
            time.sleep(0.01)
        self.assertEqual(len(applied), 1)
        self.assertIsNotNone(state.transaction)
        self.assertEqual(self.runner.pending, 0)

    def test_none_command_is_not_submitted(self) -> None:
        self.assertIsNone(self.runner.submit(None))
        self.assertEqual(self.runner.pending, 0)

    def test_raising_command_does_not_block_the_runner(self) -> None:
        def broken():
            raise RuntimeError("bug")

        state = AppState()
        with self.assertLogs("eth_wallet_swap.runtime", "ERROR"):
            self.runner.submit(broken)
            applied = self.runner.run_until_idle(state, timeout=5)
        self.assertEqual(applied, [])
        self.assertEqual(self.runner.pending, 0)

    def test_package_swap_command(self) -> None:
        state = AppState()
        apply_message(state, DetailsLoaded(loaded_details()))
        eth, usdc = state.swap.tokens
        self.runner.submit(package_swap_command(OWNER, eth, usdc, "1", 2_000_000000))
        self.runner.run_until_idle(state, timeout=5)
        self.assertTrue(state.transaction.ok)
        self.assertIn("min 2000.000000", state.transaction.display_text)


if __name__ == "__main__":
    unittest.main()
