import unittest

from eth_wallet_swap.amm import quote_forward, quote_reverse
from eth_wallet_swap.models import QuoteMode, TokenBalance, TokenOption, WalletDetails
from eth_wallet_swap.orchestrator import (
    QuoteResult,
    SwapQuoteOrchestrator,
    build_token_options,
    execute_quote_request,
)
from eth_wallet_swap.utils import format_units

from fakes import USDC, WETH, pair_connection

USDC_RESERVE = 1_000_000_000000
WETH_RESERVE = 500_000000000000000000


def eth_usdc_tokens():
    return [
        TokenOption(symbol="ETH", decimals=18, balance=10**18, is_native=True),
        TokenOption(symbol="USDC", decimals=6, balance=5_000_000000),
        TokenOption(symbol="DAI", decimals=18, balance=10**20),
    ]


class TokenOptionsTests(unittest.TestCase):
    def test_native_first_then_wallet_tokens(self) -> None:
        details = WalletDetails(
            address="0x" + "11" * 20,
            native_balance=42,
            tokens=[TokenBalance("DAI", 18, 7), TokenBalance("USDC", 6, 9)],
        )
        options = build_token_options(details)
        self.assertEqual([o.symbol for o in options], ["ETH", "DAI", "USDC"])
        self.assertTrue(options[0].is_native)
        self.assertEqual(options[0].balance, 42)
        self.assertEqual(options[2].decimals, 6)

    def test_without_details_only_native(self) -> None:
        options = build_token_options(None)
        self.assertEqual(len(options), 1)
        self.assertEqual(options[0].balance, 0)


class SwapQuoteOrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.swap = SwapQuoteOrchestrator(eth_usdc_tokens())
        self.connection = pair_connection(USDC_RESERVE, WETH_RESERVE, token0=USDC, token1=WETH)

    def fetch(self, request) -> QuoteResult:
        return execute_quote_request(self.connection, request)

    def test_forward_quote_fills_output(self) -> None:
        request = self.swap.set_from_amount("1")
        self.assertIsNotNone(request)
        self.assertTrue(self.swap.estimating)
        self.assertEqual(request.token_in, WETH)
        self.assertEqual(request.amount, 10**18)

        self.assertTrue(self.swap.apply_quote_result(self.fetch(request)))

        expected = quote_forward(10**18, WETH_RESERVE, USDC_RESERVE)
        self.assertFalse(self.swap.estimating)
        self.assertEqual(self.swap.to_amount, format_units(expected, 6, 6))
        self.assertEqual(self.swap.quote.amount_out, expected)
        self.assertEqual(self.swap.quote_error, "")

    def test_identical_request_is_deduplicated(self) -> None:
        request = self.swap.set_from_amount("1")
        self.swap.apply_quote_result(self.fetch(request))
        calls = len(self.connection.w3.eth.calls)
        self.assertEqual(calls, 3)

        self.assertIsNone(self.swap.set_from_amount("1"))
        self.assertIsNone(self.swap.refresh())
        self.assertEqual(len(self.connection.w3.eth.calls), calls)

    def test_equivalent_text_is_a_new_request(self) -> None:
        request = self.swap.set_from_amount("1")
        self.swap.apply_quote_result(self.fetch(request))
        self.assertIsNotNone(self.swap.set_from_amount("1.0"))

    def test_empty_and_zero_clear_derived_state(self) -> None:
        request = self.swap.set_from_amount("1")
        self.swap.apply_quote_result(self.fetch(request))

        self.assertIsNone(self.swap.set_from_amount(""))
        self.assertEqual(self.swap.to_amount, "")
        self.assertIsNone(self.swap.quote)
        self.assertIsNone(self.swap.last_fingerprint)

        self.assertIsNone(self.swap.set_from_amount("0"))
        self.assertEqual(self.swap.to_amount, "")

    def test_same_token_on_both_sides_is_ignored(self) -> None:
        self.assertIsNone(self.swap.select_tokens(1, 1))
        self.swap.from_amount = "5"
        self.assertIsNone(self.swap.request_forward_quote())

    def test_unparseable_and_negative_amounts_are_ignored(self) -> None:
        self.assertIsNone(self.swap.set_from_amount("abc"))
        self.assertIsNone(self.swap.set_from_amount("-1"))
        self.assertIsNone(self.swap.set_from_amount("0.0000000000000000001"))

    def test_exponent_too_large_is_ignored(self) -> None:
        self.assertIsNone(self.swap.set_from_amount("1e5000000"))
        self.assertIsNone(self.swap.set_to_amount("1e5000000"))
        self.assertFalse(self.swap.estimating)

    def test_amount_beyond_uint256_is_ignored(self) -> None:
        self.assertIsNone(self.swap.set_from_amount("1e300"))
        self.assertIsNone(self.swap.last_fingerprint)

    def test_unusable_amount_clears_previous_output(self) -> None:
        request = self.swap.set_from_amount("1")
        self.swap.apply_quote_result(self.fetch(request))
        self.assertNotEqual(self.swap.to_amount, "")

        self.assertIsNone(self.swap.set_from_amount("1.2.3"))
        self.assertEqual(self.swap.to_amount, "")
        self.assertIsNone(self.swap.quote)
        self.assertIsNone(self.swap.last_fingerprint)

    def test_unusable_amount_makes_in_flight_result_stale(self) -> None:
        request = self.swap.set_from_amount("1")
        result = self.fetch(request)
        self.swap.set_from_amount("abc")
        self.assertFalse(self.swap.apply_quote_result(result))
        self.assertEqual(self.swap.to_amount, "")

    def test_unsupported_pair_sets_warning(self) -> None:
        self.swap.select_tokens(0, 2)
        with self.assertLogs("eth_wallet_swap.orchestrator", "WARNING") as logs:
            request = self.swap.set_from_amount("1")
        self.assertIsNone(request)
        self.assertEqual(self.swap.pair_warning, "Swap pair ETH/DAI not supported yet")
        self.assertIn("Swap pair ETH/DAI not supported yet", logs.output[0])
        self.assertEqual(self.swap.to_amount, "")
        self.assertFalse(self.swap.estimating)

    def test_supported_pair_clears_warning(self) -> None:
        self.swap.select_tokens(0, 2)
        self.swap.set_from_amount("1")
        self.assertIsNotNone(self.swap.select_tokens(0, 1))
        self.assertEqual(self.swap.pair_warning, "")

    def test_stale_result_is_discarded(self) -> None:
        first = self.swap.set_from_amount("1")
        second = self.swap.set_from_amount("2")
        first_result = self.fetch(first)
        second_result = self.fetch(second)

        self.assertTrue(self.swap.apply_quote_result(second_result))
        shown = self.swap.to_amount
        self.assertFalse(self.swap.apply_quote_result(first_result))
        self.assertEqual(self.swap.to_amount, shown)
        self.assertEqual(self.swap.quote.amount_in, 2 * 10**18)

    def test_reverse_quote_fills_input(self) -> None:
        request = self.swap.set_to_amount("1000")
        self.assertEqual(self.swap.mode, QuoteMode.REVERSE)
        self.assertEqual(request.token_in, WETH)
        self.assertEqual(request.amount, 1000_000000)

        self.assertTrue(self.swap.apply_quote_result(self.fetch(request)))

        expected = quote_reverse(1000_000000, WETH_RESERVE, USDC_RESERVE)
        self.assertEqual(self.swap.from_amount, format_units(expected, 18, 6))
        self.assertEqual(self.swap.to_amount, "1000")

    def test_switching_sides_clears_the_other_field(self) -> None:
        request = self.swap.set_from_amount("1")
        self.swap.apply_quote_result(self.fetch(request))
        self.assertNotEqual(self.swap.to_amount, "")

        self.assertIsNotNone(self.swap.set_to_amount("500"))
        self.assertEqual(self.swap.mode, QuoteMode.REVERSE)
        self.assertEqual(self.swap.from_amount, "")
        self.assertIsNone(self.swap.quote)

    def test_insufficient_liquidity_surfaces_as_quote_error(self) -> None:
        request = self.swap.set_to_amount("2000000")
        result = self.fetch(request)
        self.assertIsNone(result.quote)
        self.assertEqual(result.error, "insufficient liquidity for desired output amount")

        self.assertTrue(self.swap.apply_quote_result(result))
        self.assertEqual(self.swap.quote_error, "insufficient liquidity for desired output amount")
        self.assertEqual(self.swap.from_amount, "")
        self.assertEqual(self.swap.to_amount, "2000000")
        self.assertFalse(self.swap.estimating)

    def test_missing_connection_is_reported(self) -> None:
        request = self.swap.set_from_amount("1")
        result = execute_quote_request(None, request)
        self.assertEqual(result.error, "no RPC client")
        self.assertEqual(result.fingerprint, request.fingerprint)

    def test_new_token_list_invalidates_in_flight_result(self) -> None:
        request = self.swap.set_from_amount("1")
        result = self.fetch(request)
        self.swap.set_tokens(eth_usdc_tokens())
        self.assertFalse(self.swap.apply_quote_result(result))
        self.assertFalse(self.swap.estimating)

    def test_high_impact_warning(self) -> None:
        request = self.swap.set_from_amount("50")
        self.swap.apply_quote_result(self.fetch(request))
        self.assertTrue(self.swap.price_impact_warning.startswith("⚠ High price impact"))


if __name__ == "__main__":
    unittest.main()
