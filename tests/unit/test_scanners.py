"""
Unit tests for opportunity scanners.

Each scanner runs against a scripted chain; quotes are answered per router
from the swap path in the call data.
"""
import pytest
from eth_abi import decode, encode

from fakes import (
    BORROWER,
    DAI,
    EXECUTOR,
    FUNDER,
    POOL,
    ROUTER_A,
    ROUTER_B,
    USDC,
    WETH,
    FakeChainClient,
    account_data,
    amounts_out,
    arbitrage_record,
    facilities,
    latest_answer,
)

from mev_engine.capital.provider import CapitalProvider
from mev_engine.chain.client import PendingTransaction
from mev_engine.chain.contracts import CHAINLINK_FEEDS, SELECTORS, SWAP_EXACT_TOKENS_FOR_TOKENS, SWAP_TOKENS_TYPES
from mev_engine.chain.fee_market import FeeMarket
from mev_engine.config.strategy_config import load_capital_config, load_strategy_config
from mev_engine.errors import ChainConnectivityLost, TransientNetworkError
from mev_engine.evaluation.cost_model import slippage_allowance
from mev_engine.opportunity.models import StrategyKind
from mev_engine.scanners import (
    CrossVenueArbitrageScanner,
    FlashArbitrageScanner,
    FrontRunningScanner,
    LatencyTradeScanner,
    LiquidationScanner,
    SandwichScanner,
)


class _StopScan(Exception):
    pass


def router(rates):
    """Router answering getAmountsOut with amount * rate for the path's first token."""
    def answer(data):
        amount, path = decode(["uint256", "address[]"], data[4:])
        numerator, denominator = rates[path[0].lower()]
        return amounts_out(amount, amount * numerator // denominator)
    return answer


def provider(*assets, **kwargs):
    return CapitalProvider.from_config(load_capital_config(facilities(*assets, **kwargs)), EXECUTOR)


def pending_swap(tx_hash, amount_in, amount_out_min, path, to=ROUTER_A):
    data = SELECTORS[SWAP_EXACT_TOKENS_FOR_TOKENS] + encode(
        list(SWAP_TOKENS_TYPES), [amount_in, amount_out_min, list(path), BORROWER, 1_700_000_000]
    )
    return PendingTransaction(
        tx_hash=tx_hash,
        sender=BORROWER,
        to=to,
        value=0,
        input=data,
        gas_price=30,
        nonce=1,
    )


class TestCrossVenueArbitrageScanner:
    """Test pairwise router quotes."""

    @pytest.fixture
    def client(self):
        client = FakeChainClient(block_number=200)
        client.calls[ROUTER_A] = router({WETH.lower(): (3000, 1), DAI.lower(): (1, 2950)})
        client.calls[ROUTER_B] = router({WETH.lower(): (2950, 1), DAI.lower(): (102, 300_000)})
        return client

    @pytest.fixture
    def scanner(self, client):
        config = load_strategy_config("arbitrage", arbitrage_record())
        return CrossVenueArbitrageScanner(config, client, FeeMarket(client))

    @pytest.mark.asyncio
    async def test_buys_cheap_sells_rich(self, scanner):
        opportunities = await scanner.poll(200)

        assert len(opportunities) == 1
        opportunity = opportunities[0]
        subject = opportunity.subject
        assert opportunity.strategy_kind == StrategyKind.CROSS_VENUE_ARBITRAGE
        assert opportunity.observed_at_block == 200
        assert subject.buy_router == ROUTER_A
        assert subject.sell_router == ROUTER_B
        assert subject.quoted_intermediate == 3000 * 10 ** 18
        assert subject.quoted_out == 102 * 10 ** 16
        assert opportunity.expected_gross_gain == 2 * 10 ** 16
        # 300k gas at 22 wei plus 0.5% of the gain
        assert opportunity.estimated_cost == 300_000 * 22 + 10 ** 14

    @pytest.mark.asyncio
    async def test_no_divergence_no_candidate(self, client, scanner):
        client.calls[ROUTER_B] = router({WETH.lower(): (2950, 1), DAI.lower(): (1, 3000)})

        assert await scanner.poll(200) == []

    @pytest.mark.asyncio
    async def test_failing_pair_is_isolated(self, client):
        config = load_strategy_config("arbitrage", arbitrage_record(token_pairs=[
            {"token_in": WETH, "token_out": USDC, "amount_in": 10 ** 18},
            {"token_in": WETH, "token_out": DAI, "amount_in": 10 ** 18},
        ]))
        scanner = CrossVenueArbitrageScanner(config, client, FeeMarket(client))

        opportunities = await scanner.poll(200)

        # USDC has no scripted rate, so the quote back to WETH raises
        assert len(opportunities) == 1
        assert opportunities[0].subject.token_out == DAI
        assert scanner.stats["candidate_errors"] == 1

    @pytest.mark.asyncio
    async def test_connectivity_loss_propagates(self, client, scanner):
        client.calls[ROUTER_A] = ChainConnectivityLost("gone", consecutive_failures=25)

        with pytest.raises(ChainConnectivityLost):
            await scanner.poll(200)

    @pytest.mark.asyncio
    async def test_scan_survives_failed_poll(self, client, scanner):
        client.block_errors = [TransientNetworkError("timeout", operation="eth_blockNumber")]
        sleeps = []

        async def sleep(delay):
            sleeps.append(delay)
            if len(sleeps) == 2:
                raise _StopScan()

        scanner._sleep = sleep
        emitted = []
        with pytest.raises(_StopScan):
            async for opportunity in scanner.scan():
                emitted.append(opportunity)

        assert len(emitted) == 1
        assert scanner.stats["poll_errors"] == 1
        assert scanner.stats["polls"] == 1
        assert sleeps == [1.0, 1.0]

    def test_partition_per_subject(self, client):
        config = load_strategy_config("arbitrage", arbitrage_record(
            worker_per_subject=True,
            token_pairs=[
                {"token_in": WETH, "token_out": DAI, "amount_in": 10 ** 18},
                {"token_in": WETH, "token_out": USDC, "amount_in": 10 ** 18},
            ],
        ))
        scanner = CrossVenueArbitrageScanner(config, client, FeeMarket(client))

        workers = scanner.partition()

        assert len(workers) == 2
        assert [w.subjects[0].token_out for w in workers] == [DAI, USDC]


class TestFlashArbitrageScanner:
    """Test cyclic route quotes."""

    @pytest.mark.asyncio
    async def test_route_sized_by_liquidity(self):
        client = FakeChainClient()
        client.calls[ROUTER_A] = router({WETH.lower(): (3000, 1), USDC.lower(): (102 * 10 ** 12, 300_000)})
        client.calls[ROUTER_B] = router({DAI.lower(): (1, 10 ** 12)})
        config = load_strategy_config("flashloan", {
            "routes": [{
                "tokens": [WETH, DAI, USDC],
                "routers": [ROUTER_A, ROUTER_B, ROUTER_A],
                "amount_in": 100 * 10 ** 18,
            }],
        })
        scanner = FlashArbitrageScanner(config, client, FeeMarket(client), provider(WETH, max_amount=10 ** 18))

        opportunities = await scanner.poll(100)

        assert len(opportunities) == 1
        subject = opportunities[0].subject
        assert subject.amount_in == 10 ** 18
        assert len(subject.quoted_amounts) == 3
        assert opportunities[0].expected_gross_gain == subject.quoted_amounts[-1] - 10 ** 18


class TestMempoolScanners:
    """Test front-running and sandwich candidates."""

    @pytest.fixture
    def client(self):
        client = FakeChainClient()
        client.calls[ROUTER_A] = router({WETH.lower(): (3000, 1)})
        return client

    def front_runner(self, client, **overrides):
        record = {"watched_routers": [ROUTER_A], "funding_account": FUNDER}
        record.update(overrides)
        config = load_strategy_config("frontrunning", record)
        return FrontRunningScanner(config, client, FeeMarket(client))

    @pytest.mark.asyncio
    async def test_front_run_large_swap(self, client):
        tx = pending_swap("0x" + "01" * 32, 10 * 10 ** 18, 29_000 * 10 ** 18, [WETH, DAI])
        client.transactions[tx.tx_hash] = tx
        client.pending_hashes = [tx.tx_hash]
        scanner = self.front_runner(client)

        opportunities = await scanner.poll(100)

        assert len(opportunities) == 1
        subject = opportunities[0].subject
        assert subject.tx_hash == tx.tx_hash
        assert subject.router == ROUTER_A
        assert subject.trade_amount == 5 * 10 ** 18
        assert subject.expected_out == 15_000 * 10 ** 18
        assert opportunities[0].expected_gross_gain == 3 * 10 ** 16

    @pytest.mark.asyncio
    async def test_filters(self, client):
        small = pending_swap("0x" + "02" * 32, 10 ** 17, 0, [WETH, DAI])
        other_router = pending_swap("0x" + "03" * 32, 10 * 10 ** 18, 0, [WETH, DAI], to=ROUTER_B)
        not_base = pending_swap("0x" + "04" * 32, 10 * 10 ** 18, 0, [DAI, WETH])
        for tx in (small, other_router, not_base):
            client.transactions[tx.tx_hash] = tx
        client.pending_hashes = [small.tx_hash, other_router.tx_hash, not_base.tx_hash, "0x" + "05" * 32]
        scanner = self.front_runner(client)

        assert await scanner.poll(100) == []
        assert scanner.stats["candidate_errors"] == 0

    @pytest.mark.asyncio
    async def test_each_hash_processed_once(self, client):
        tx = pending_swap("0x" + "06" * 32, 10 * 10 ** 18, 0, [WETH, DAI])
        client.transactions[tx.tx_hash] = tx
        scanner = self.front_runner(client)

        client.pending_hashes = [tx.tx_hash]
        first = await scanner.poll(100)
        client.pending_hashes = [tx.tx_hash]
        second = await scanner.poll(101)

        assert len(first) == 1
        assert second == []

    @pytest.mark.asyncio
    async def test_seen_hashes_bounded(self, client):
        scanner = self.front_runner(client, max_tracked_hashes=2)
        client.pending_hashes = ["0x" + f"{i:064x}" for i in range(5)]

        await scanner.poll(100)

        assert len(scanner._seen) == 2

    @pytest.mark.asyncio
    async def test_sandwich_bounded_by_slippage_and_liquidity(self, client):
        tx = pending_swap("0x" + "07" * 32, 10 * 10 ** 18, 29_000 * 10 ** 18, [WETH, DAI])
        client.transactions[tx.tx_hash] = tx
        client.pending_hashes = [tx.tx_hash]
        config = load_strategy_config("sandwich", {"watched_routers": [ROUTER_A]})
        scanner = SandwichScanner(config, client, FeeMarket(client), provider(WETH, max_amount=2 * 10 ** 18))

        opportunities = await scanner.poll(100)

        assert len(opportunities) == 1
        opportunity = opportunities[0]
        assert opportunity.strategy_kind == StrategyKind.SANDWICH
        assert opportunity.subject.trade_amount == 2 * 10 ** 18
        assert opportunity.subject.expected_out == 6_000 * 10 ** 18
        assert opportunity.expected_gross_gain == 3 * 10 ** 16

    @pytest.mark.asyncio
    async def test_sandwich_skips_tight_slippage(self, client):
        tx = pending_swap("0x" + "08" * 32, 10 * 10 ** 18, 30_000 * 10 ** 18, [WETH, DAI])
        client.transactions[tx.tx_hash] = tx
        client.pending_hashes = [tx.tx_hash]
        config = load_strategy_config("sandwich", {"watched_routers": [ROUTER_A]})
        scanner = SandwichScanner(config, client, FeeMarket(client), provider(WETH))

        assert await scanner.poll(100) == []


class TestLiquidationScanner:
    """Test health factor tracking."""

    @pytest.fixture
    def config(self):
        return load_strategy_config("liquidation", {
            "lending_pool": POOL,
            "swap_router": ROUTER_A,
            "borrowers": [{"borrower": BORROWER, "collateral_asset": WETH, "debt_asset": DAI}],
        })

    @pytest.mark.asyncio
    async def test_unhealthy_borrower(self, config):
        client = FakeChainClient()
        client.calls[POOL] = account_data(1_100 * 10 ** 8, 1_000 * 10 ** 8, 9 * 10 ** 17)
        client.calls[CHAINLINK_FEEDS[DAI]] = latest_answer(10 ** 8)
        client.calls[CHAINLINK_FEEDS[WETH]] = latest_answer(2_000 * 10 ** 8)
        scanner = LiquidationScanner(config, client, FeeMarket(client), provider(DAI))

        opportunities = await scanner.poll(100)

        assert len(opportunities) == 1
        subject = opportunities[0].subject
        assert subject.borrower == BORROWER
        assert subject.debt_to_cover == 500 * 10 ** 18
        assert subject.health_factor == 9 * 10 ** 17
        # 25 DAI bonus at 2000 USD per ETH
        assert opportunities[0].expected_gross_gain == 25 * 10 ** 18 // 2_000

    @pytest.mark.asyncio
    async def test_gain_compared_with_gas_in_wei(self, config):
        client = FakeChainClient()
        client.base_fee = 20 * 10 ** 9
        client.priority_fee = 2 * 10 ** 9
        client.calls[CHAINLINK_FEEDS[DAI]] = latest_answer(10 ** 8)
        client.calls[CHAINLINK_FEEDS[WETH]] = latest_answer(2_000 * 10 ** 8)
        scanner = LiquidationScanner(config, client, FeeMarket(client), provider(DAI))

        # 100 DAI to cover: a 5 DAI bonus does not pay for 300k gas at 22 gwei
        client.calls[POOL] = account_data(220 * 10 ** 8, 200 * 10 ** 8, 9 * 10 ** 17)
        small = (await scanner.poll(100))[0]
        # 1000 DAI to cover: a 50 DAI bonus does
        client.calls[POOL] = account_data(2_200 * 10 ** 8, 2_000 * 10 ** 8, 9 * 10 ** 17)
        large = (await scanner.poll(101))[0]

        assert small.expected_gross_gain == 5 * 10 ** 18 // 2_000
        assert small.net_gain == 0
        assert large.expected_gross_gain == 50 * 10 ** 18 // 2_000
        assert large.estimated_cost > 300_000 * 22 * 10 ** 9
        assert large.net_gain > 0

    @pytest.mark.asyncio
    async def test_healthy_borrower(self, config):
        client = FakeChainClient()
        client.calls[POOL] = account_data(2_000 * 10 ** 8, 1_000 * 10 ** 8, 15 * 10 ** 17)
        scanner = LiquidationScanner(config, client, FeeMarket(client), provider(DAI))

        assert await scanner.poll(100) == []

    @pytest.mark.asyncio
    async def test_debt_asset_without_feed_is_skipped(self):
        unknown_debt = "0x4444444444444444444444444444444444444444"
        config = load_strategy_config("liquidation", {
            "lending_pool": POOL,
            "swap_router": ROUTER_A,
            "borrowers": [{"borrower": BORROWER, "collateral_asset": WETH, "debt_asset": unknown_debt}],
        })
        client = FakeChainClient()
        client.calls[POOL] = account_data(1_100 * 10 ** 8, 1_000 * 10 ** 8, 9 * 10 ** 17)
        scanner = LiquidationScanner(config, client, FeeMarket(client), provider(unknown_debt))

        assert await scanner.poll(100) == []
        assert scanner.stats["candidate_errors"] == 1


class TestLatencyTradeScanner:
    """Test price target triggers."""

    @pytest.fixture
    def config(self):
        return load_strategy_config("hft", {
            "targets": [{
                "asset": WETH,
                "quote_asset": USDC,
                "router": ROUTER_A,
                "target_price": 2_000 * 10 ** 8,
                "amount_in": 1_000 * 10 ** 6,
                "quote_decimals": 6,
            }],
        })

    @pytest.fixture
    def client(self):
        client = FakeChainClient()
        client.calls[ROUTER_A] = router({USDC.lower(): (10 ** 12, 1_900)})
        return client

    @pytest.mark.asyncio
    async def test_fires_below_target(self, config, client):
        client.calls[CHAINLINK_FEEDS[WETH]] = latest_answer(1_900 * 10 ** 8)
        client.calls[CHAINLINK_FEEDS[USDC]] = latest_answer(10 ** 8)
        scanner = LatencyTradeScanner(config, client, FeeMarket(client))

        opportunities = await scanner.poll(100)

        assert len(opportunities) == 1
        subject = opportunities[0].subject
        assert subject.observed_price == 1_900 * 10 ** 8
        assert subject.exit_router == ROUTER_A
        # 50 USDC discount at 1900 USD per ETH
        assert opportunities[0].expected_gross_gain == 50 * 10 ** 18 // 1_900

    @pytest.mark.asyncio
    async def test_quiet_above_target(self, config, client):
        client.calls[CHAINLINK_FEEDS[WETH]] = latest_answer(2_100 * 10 ** 8)
        scanner = LatencyTradeScanner(config, client, FeeMarket(client))

        assert await scanner.poll(100) == []

    def test_rejects_mismatched_config(self, client):
        config = load_strategy_config("arbitrage", arbitrage_record())

        with pytest.raises(ValueError):
            LatencyTradeScanner(config, client, FeeMarket(client))

    @pytest.mark.asyncio
    async def test_flash_funded_cost_includes_borrow_fee_in_wei(self, client):
        config = load_strategy_config("hft", {
            "flash_funded": True,
            "targets": [{
                "asset": WETH,
                "quote_asset": USDC,
                "router": ROUTER_A,
                "target_price": 2_000 * 10 ** 8,
                "amount_in": 100_000 * 10 ** 6,
                "quote_decimals": 6,
                "exit_router": ROUTER_B,
            }],
        })
        client.base_fee = 20 * 10 ** 9
        client.priority_fee = 2 * 10 ** 9
        client.calls[CHAINLINK_FEEDS[WETH]] = latest_answer(1_900 * 10 ** 8)
        client.calls[CHAINLINK_FEEDS[USDC]] = latest_answer(10 ** 8)
        scanner = LatencyTradeScanner(config, client, FeeMarket(client), provider(USDC))

        opportunity = (await scanner.poll(100))[0]

        gain = 5_000 * 10 ** 18 // 1_900
        # 0.05% of 100k USDC borrowed
        borrow_fee = 50 * 10 ** 18 // 1_900
        assert opportunity.expected_gross_gain == gain
        assert opportunity.estimated_cost == 300_000 * 22 * 10 ** 9 + borrow_fee + slippage_allowance(gain, 50)
        assert opportunity.net_gain > 0
        assert opportunity.subject.exit_router == ROUTER_B
