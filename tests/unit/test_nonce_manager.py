"""
Unit tests for nonce management and per-account submission order.
"""
import asyncio

import pytest

from fakes import FUNDER, FakeChainClient

from mev_engine.chain.nonce_manager import AccountSequencer, NonceManager, SequencerRegistry


class TestNonceManager:
    """Test the cached nonce sequence."""

    @pytest.fixture
    def client(self):
        return FakeChainClient()

    @pytest.mark.asyncio
    async def test_reads_pending_count(self, client):
        nonces = NonceManager(client, FUNDER)

        assert await nonces.get_next_nonce() == 7

    @pytest.mark.asyncio
    async def test_consume_advances_past_stale_chain_count(self, client):
        nonces = NonceManager(client, FUNDER)
        await nonces.get_next_nonce()

        nonces.consume(7)

        assert await nonces.get_next_nonce() == 8

    @pytest.mark.asyncio
    async def test_chain_ahead_wins(self, client):
        nonces = NonceManager(client, FUNDER)
        nonces.consume(3)

        assert await nonces.get_next_nonce() == 7

    @pytest.mark.asyncio
    async def test_resync_forgets_cache(self, client):
        nonces = NonceManager(client, FUNDER)
        nonces.consume(20)
        nonces.resync()

        assert nonces.cached is None
        assert await nonces.get_next_nonce() == 7


class TestAccountSequencer:
    """Test ticket ordering."""

    @pytest.fixture
    def sequencer(self):
        return AccountSequencer(NonceManager(FakeChainClient(), FUNDER))

    @pytest.mark.asyncio
    async def test_turns_follow_ticket_order(self, sequencer):
        tickets = [sequencer.issue() for _ in range(3)]
        order = []

        async def use(ticket):
            async with sequencer.turn(ticket):
                order.append(ticket)
                await asyncio.sleep(0)

        await asyncio.gather(*(use(t) for t in reversed(tickets)))

        assert order == tickets

    @pytest.mark.asyncio
    async def test_released_ticket_is_skipped(self, sequencer):
        first, second, third = sequencer.issue(), sequencer.issue(), sequencer.issue()
        sequencer.release(second)
        order = []

        async def use(ticket):
            async with sequencer.turn(ticket):
                order.append(ticket)

        await asyncio.gather(use(third), use(first))

        assert order == [first, third]
        assert sequencer.now_serving == 3

    def test_release_is_idempotent(self, sequencer):
        ticket = sequencer.issue()
        sequencer.release(ticket)
        sequencer.release(ticket)

        assert sequencer.now_serving == 1

    @pytest.mark.asyncio
    async def test_unissued_ticket_rejected(self, sequencer):
        with pytest.raises(ValueError):
            await sequencer.wait_turn(5)

    def test_registry_one_sequencer_per_account(self):
        registry = SequencerRegistry(FakeChainClient())

        assert registry.for_account(FUNDER) is registry.for_account(FUNDER.lower())
        assert registry.for_account(FUNDER) is not registry.for_account("0x" + "5" * 40)
