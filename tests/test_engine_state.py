"""
Tests for EngineState transitions.
"""
from decimal import Decimal

import pytest

from quotekeeper.strategy.engine_state import EngineState, Quote, QuoteStatus
from quotekeeper.strategy.reorder_policy import QuoteSide


def _quote(price="49890.00"):
    return Quote(side=QuoteSide.LONG, price=Decimal(price), qty=Decimal("0.609"))


class TestEngineState:

    def test_initial_state_is_idle_without_reference(self):
        state = EngineState()
        assert not state.busy
        assert not state.emergency
        assert state.reference_price is None
        assert state.can_start_cycle(cooldown_active=False)

    def test_begin_cycle_sets_busy_and_forgets_quote(self):
        state = EngineState().commit_quote(_quote()).begin_cycle()
        assert state.busy
        assert state.reference_price is None

    def test_acquire_twice_raises(self):
        state = EngineState().acquire()
        with pytest.raises(RuntimeError):
            state.acquire()

    def test_release_keeps_quote(self):
        state = EngineState().acquire().commit_quote(_quote()).release()
        assert not state.busy
        assert state.reference_price == Decimal("49890.00")

    def test_only_verified_quote_is_reference(self):
        state = EngineState(quote=_quote().with_status(QuoteStatus.UNVERIFIED))
        assert state.reference_price is None

    def test_emergency_blocks_cycles(self):
        state = EngineState().enter_emergency()
        assert not state.can_start_cycle(cooldown_active=False)

    def test_cooldown_blocks_cycles(self):
        assert not EngineState().can_start_cycle(cooldown_active=True)

    def test_recover_clears_reference(self):
        state = EngineState().commit_quote(_quote()).enter_emergency().recover()
        assert not state.emergency
        assert state.reference_price is None

    def test_transitions_do_not_mutate(self):
        state = EngineState()
        state.acquire()
        assert not state.busy
