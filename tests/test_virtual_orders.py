"""
Test suite for TWAMM long-term virtual orders

Covers:
  1  Order issuance (sales rate truncation, expiry alignment, limits)
  2  Virtual order execution (rate bookkeeping, read-only replay)
  3  Pause / resume
  4  Extension
  5  Withdrawal and cancellation
  6  Owner / delegate / recipient rules
  7  Pool pause freezing the executor
  8  Accumulator wraparound and conservation
  9  Internal-consistency faults
"""

import pytest

from twamm.constants import NULL_ADDRESS, U128_MAX, PoolType
from twamm.engine import OperationType, PoolOperation, Vault
from twamm.exceptions import CallerError, ErrorCode, InvariantViolation

TOKEN0 = "TKA"
TOKEN1 = "TKB"
ADMIN = "twamm_test_admin_0000"
ADDR_A = "twamm_test_alice_0001"
ADDR_B = "twamm_test_bob___0002"
ADDR_C = "twamm_test_carol_0003"
FUNDING = 10**15
LIQUIDITY = 10**9


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_market(start_block=1):
    """Vault with three funded traders and a LIQUID pool seeded by ADDR_A."""
    vault = Vault(block_number=start_block)
    for addr in (ADDR_A, ADDR_B, ADDR_C):
        vault.credit(addr, TOKEN0, FUNDING)
        vault.credit(addr, TOKEN1, FUNDING)
    pool = vault.create_pool(TOKEN0, TOKEN1, 18, 18, PoolType.LIQUID, ADMIN)
    vault.join_pool(pool.pool_id, PoolOperation(
        OperationType.JOIN, ADDR_A, {"amount0": LIQUIDITY, "amount1": LIQUIDITY},
    ))
    return vault, pool


def long_term(vault, pool, sender, token_in, amount_in, num_intervals, **extra):
    params = {"token_in": token_in, "amount_in": amount_in, "num_intervals": num_intervals}
    params.update(extra)
    result = vault.swap(pool.pool_id, PoolOperation(OperationType.LONG_TERM_SWAP, sender, params))
    return result.data["order_id"]


def withdraw(vault, pool, sender, order_id, recipient=""):
    op = PoolOperation(OperationType.WITHDRAW, sender, {"order_id": order_id}, recipient)
    return vault.exit_pool(pool.pool_id, op)


def cancel(vault, pool, sender, order_id, recipient=""):
    op = PoolOperation(OperationType.CANCEL, sender, {"order_id": order_id}, recipient)
    return vault.exit_pool(pool.pool_id, op)


def extend(vault, pool, sender, order_id, amount0, amount1=0):
    op = PoolOperation(
        OperationType.EXTEND, sender, {"order_id": order_id, "amount0": amount0, "amount1": amount1},
    )
    return vault.join_pool(pool.pool_id, op)


def assert_conserved(vault, pool):
    balances = vault.get_pool_balances(pool.pool_id)
    for token in (0, 1):
        assert balances[token] >= pool.state.liabilities.total(token)


@pytest.fixture
def market():
    return make_market()


# ============================================================================
#  1  ISSUANCE
# ============================================================================

class TestOrderIssuance:
    """Sales rate truncation, expiry alignment and issuance limits."""

    def test_sales_rate_truncates(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 10_000, 1)
        order = pool.get_order(order_id)
        # Block 1 rounds down to 0, plus two intervals of 300
        assert order.expiry_block == 600
        assert order.start_block == 1
        assert order.sales_rate == 10_000 // 599
        assert pool.state.liabilities.orders[0] == 16 * 599

    def test_remainder_becomes_reserves(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 10_000, 1)
        snap = pool.get_virtual_reserves()
        assert snap.reserves[0] == LIQUIDITY + 10_000 - 16 * 599
        assert vault.get_pool_balances(pool.pool_id)[0] == LIQUIDITY + 10_000

    def test_issue_result_data(self, market):
        vault, pool = market
        result = vault.swap(pool.pool_id, PoolOperation(
            OperationType.LONG_TERM_SWAP, ADDR_B,
            {"token_in": 1, "amount_in": 119_800, "num_intervals": 1},
        ))
        assert result.data["sales_rate"] == 200
        assert result.data["consumed"] == 119_800
        assert result.data["expiry_block"] == 600
        assert result.deltas == (0, 119_800)

    def test_zero_interval_order_runs_to_next_boundary(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 299_000, 0)
        assert pool.get_order(order_id).expiry_block == 300
        assert pool.get_order(order_id).sales_rate == 1_000

    def test_zero_sales_rate(self, market):
        vault, pool = market
        with pytest.raises(CallerError, match="TWM#224"):
            long_term(vault, pool, ADDR_A, 0, 100, 1)

    def test_zero_amount(self, market):
        vault, pool = market
        with pytest.raises(CallerError, match="TWM#201"):
            long_term(vault, pool, ADDR_A, 0, 0, 1)

    def test_too_many_intervals(self, market):
        vault, pool = market
        max_intervals = pool.state.params.max_order_intervals
        with pytest.raises(CallerError, match="TWM#223"):
            long_term(vault, pool, ADDR_A, 0, 10**12, max_intervals + 1)

    def test_order_ids_increase(self, market):
        vault, pool = market
        first = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        second = long_term(vault, pool, ADDR_B, 1, 599_000, 1)
        assert (first, second) == (0, 1)
        assert pool.state.orders.next_order_id == 2


# ============================================================================
#  2  EXECUTION
# ============================================================================

class TestSingleIntervalScenario:
    """Sell 10,000 units over one interval, mine past expiry, withdraw."""

    def test_withdraw_after_expiry(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 10_000, 1)
        token1_before = vault.balance_of(ADDR_A, TOKEN1)

        vault.mine_to(700)
        result = withdraw(vault, pool, ADDR_A, order_id)

        assert result.data["proceeds"] > 0
        assert result.data["refund"] == 0
        assert result.data["cleared"] is True
        assert vault.balance_of(ADDR_A, TOKEN1) - token1_before == result.data["proceeds"]
        assert pool.get_order(order_id).is_cleared
        assert pool.state.liabilities.orders[0] == 0
        assert_conserved(vault, pool)

    def test_cleared_id_is_not_reused(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 10_000, 1)
        vault.mine_to(700)
        withdraw(vault, pool, ADDR_A, order_id)
        assert long_term(vault, pool, ADDR_A, 0, 10_000, 1) == order_id + 1


class TestOpposingOrders:
    """Two directions trading in the same intervals."""

    def test_product_deviation_within_tolerance(self, market):
        vault, pool = market
        k_before = LIQUIDITY * LIQUIDITY
        a = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        b = long_term(vault, pool, ADDR_B, 1, 299_500, 1)

        vault.mine_to(600)
        snap = pool.get_virtual_reserves()
        k_after = snap.reserves[0] * snap.reserves[1]

        assert abs(k_after - k_before) / k_before < 1e-3
        assert pool.get_order_amounts(a)[0] > 0
        assert pool.get_order_amounts(b)[0] > 0

    def test_both_orders_settle(self, market):
        vault, pool = market
        a = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        b = long_term(vault, pool, ADDR_B, 1, 599_000, 1)
        vault.mine_to(900)
        paid_a = withdraw(vault, pool, ADDR_A, a)
        paid_b = withdraw(vault, pool, ADDR_B, b)
        assert paid_a.deltas[1] < 0 and paid_a.deltas[0] == 0
        assert paid_b.deltas[0] < 0 and paid_b.deltas[1] == 0
        assert pool.state.liabilities.orders == [0, 0]
        assert_conserved(vault, pool)


class TestRateBookkeeping:
    """current_sales_rate tracks active, unpaused, unexpired orders."""

    def _expected_rates(self, pool):
        last = pool.get_last_virtual_order_block()
        rates = [0, 0]
        for order in pool.state.orders.orders.values():
            if not order.is_cleared and not order.paused and order.expiry_block > last:
                rates[int(order.direction)] += order.sales_rate
        return tuple(rates)

    def test_rates_follow_expiries(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 299_000, 0)   # 1000/block until 300
        long_term(vault, pool, ADDR_A, 0, 449_500, 2)   # 500/block until 900
        long_term(vault, pool, ADDR_B, 1, 119_800, 1)   # 200/block until 600
        assert pool.get_sales_rates() == (1_500, 200)

        vault.mine_to(301)
        pool.execute_virtual_orders_to_block(vault.block_number)
        assert pool.get_sales_rates() == (500, 200) == self._expected_rates(pool)

        vault.mine_to(650)
        pool.execute_virtual_orders_to_block(vault.block_number)
        assert pool.get_sales_rates() == (500, 0) == self._expected_rates(pool)

        vault.mine_to(900)
        pool.execute_virtual_orders_to_block(vault.block_number)
        assert pool.get_sales_rates() == (0, 0)
        assert pool.state.orders.order_pools.sales_rate_expiring_at == {}

    def test_snapshots_taken_only_at_expiries(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(1_300)
        pool.execute_virtual_orders_to_block(1_300)
        assert set(pool.state.orders.proceeds_at_block) == {600}

    def test_snapshots_follow_rescheduled_expiries(self, market):
        vault, pool = market
        extended = long_term(vault, pool, ADDR_A, 0, 599_000, 1)    # 1000/block until 600
        resumed = long_term(vault, pool, ADDR_B, 1, 1_199_000, 3)   # 1000/block until 1200
        vault.mine_to(100)
        extend(vault, pool, ADDR_A, extended, 300_000)              # now until 900
        pool.pause_order(ADDR_B, resumed)
        vault.mine_to(400)
        pool.resume_order(ADDR_B, resumed)

        vault.mine_to(1_500)
        pool.execute_virtual_orders_to_block(1_500)
        assert set(pool.state.orders.proceeds_at_block) == {900, 1_200}
        for sender, order_id in ((ADDR_A, extended), (ADDR_B, resumed)):
            assert withdraw(vault, pool, sender, order_id).data["cleared"]
        assert pool.state.liabilities.orders == [0, 0]
        assert_conserved(vault, pool)

    def test_bounded_execution(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(1_000)
        assert pool.execute_virtual_orders_to_block(450) == 450
        assert pool.get_sales_rates() == (1_000, 0)
        # Never past the current block
        assert pool.execute_virtual_orders_to_block(10**9) == 1_000
        assert pool.get_sales_rates() == (0, 0)


class TestReadOnlyReplay:
    """The preview and the committing executor agree exactly."""

    def test_preview_is_idempotent(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        long_term(vault, pool, ADDR_B, 1, 299_500, 1)
        vault.mine_to(450)
        root = pool.compute_state_root()

        first = pool.get_virtual_reserves()
        second = pool.get_virtual_reserves()
        assert first == second
        assert pool.compute_state_root() == root
        assert pool.get_last_virtual_order_block() == 1

    def test_preview_matches_execution(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        long_term(vault, pool, ADDR_B, 1, 299_500, 1)
        vault.mine_to(450)
        preview = pool.get_virtual_reserves()

        pool.execute_virtual_orders_to_block(450)
        after = pool.get_virtual_reserves()
        assert after.reserves == preview.reserves
        assert after.sales_rates == preview.sales_rates
        assert after.cumulative_proceeds == preview.cumulative_proceeds
        assert after.liabilities == preview.liabilities

    def test_preview_clamps_to_current_block(self, market):
        vault, pool = market
        vault.mine_to(77)
        assert pool.get_virtual_reserves(10**9).block == 77

    def test_order_amounts_do_not_mutate(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(450)
        proceeds, refund = pool.get_order_amounts(order_id)
        assert proceeds > 0
        assert refund == 1_000 * (600 - 450)
        assert pool.get_last_virtual_order_block() == 1

    def test_order_amounts_of_unknown_order(self, market):
        _, pool = market
        assert pool.get_order_amounts(42) == (0, 0)


# ============================================================================
#  3  PAUSE / RESUME
# ============================================================================

class TestPauseResume:
    """Pausing stores proceeds and deposit on the order; resuming re-arms it."""

    def _paused_run(self):
        vault, pool = make_market()
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(300)
        pool.pause_order(ADDR_A, order_id)
        vault.mine_to(450)
        pool.resume_order(ADDR_A, order_id)
        vault.mine_to(700)
        return vault, pool, order_id

    def test_pause_stores_amounts(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(300)
        proceeds, refund = pool.get_order_amounts(order_id)

        pool.pause_order(ADDR_A, order_id)
        order = pool.get_order(order_id)
        assert order.paused
        assert order.proceeds == proceeds
        assert order.deposit == refund == 1_000 * 300
        assert pool.get_sales_rates() == (0, 0)

    def test_resume_restores_rate(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(300)
        pool.pause_order(ADDR_A, order_id)
        vault.mine_to(450)
        pool.resume_order(ADDR_A, order_id)
        order = pool.get_order(order_id)
        assert not order.paused
        assert order.deposit == 1_000 * (450 - 300)
        assert order.expiry_block == 600
        assert pool.get_sales_rates() == (1_000, 0)

    def test_paused_span_is_refunded(self):
        vault, pool, order_id = self._paused_run()
        token0_before = vault.balance_of(ADDR_A, TOKEN0)
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == 1_000 * (450 - 300)
        assert vault.balance_of(ADDR_A, TOKEN0) - token0_before == 150_000
        assert pool.state.liabilities.orders[0] == 0

    def test_paused_proceeds_exclude_paused_span(self):
        vault, pool, order_id = self._paused_run()
        paused = withdraw(vault, pool, ADDR_A, order_id).data["proceeds"]

        vault2, pool2 = make_market()
        order2 = long_term(vault2, pool2, ADDR_A, 0, 599_000, 1)
        vault2.mine_to(700)
        full = withdraw(vault2, pool2, ADDR_A, order2).data["proceeds"]

        # Sold for 449 of 599 blocks; price impact differs only slightly
        total_blocks = 600 - 1
        active_blocks = total_blocks - (450 - 300)
        assert paused < full
        assert paused == pytest.approx(full * active_blocks / total_blocks, rel=1e-3)

    def test_pause_twice(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        pool.pause_order(ADDR_A, order_id)
        with pytest.raises(CallerError, match="TWM#231"):
            pool.pause_order(ADDR_A, order_id)

    def test_resume_running_order(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        with pytest.raises(CallerError, match="TWM#232"):
            pool.resume_order(ADDR_A, order_id)

    def test_pause_expired_order(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        with pytest.raises(CallerError, match="TWM#229"):
            pool.pause_order(ADDR_A, order_id)

    def test_resume_after_expiry(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        pool.pause_order(ADDR_A, order_id)
        vault.mine_to(700)
        with pytest.raises(CallerError, match="TWM#229"):
            pool.resume_order(ADDR_A, order_id)
        # A paused order past expiry still pays out its stored deposit
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == 599_000


# ============================================================================
#  4  EXTENSION
# ============================================================================

class TestExtend:
    """Extension buys whole intervals; leftovers stay on the order."""

    def test_extension_funding_invariant(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        obi = pool.state.params.order_block_interval
        vault.mine_to(100)
        old = pool.get_order(order_id)

        result = extend(vault, pool, ADDR_A, order_id, 350_500)
        new = pool.get_order(order_id)

        assert new.expiry_block - old.expiry_block >= obi
        assert new.expiry_block % obi == 0
        assert (new.expiry_block - old.expiry_block) * new.sales_rate <= 350_500 + old.deposit
        assert new.deposit == 350_500 + old.deposit - (new.expiry_block - old.expiry_block) * new.sales_rate
        assert (new.expiry_block, new.deposit) == (900, 50_500)
        assert result.deltas == (350_500, 0)
        assert pool.state.orders.order_pools.sales_rate_expiring_at == {900: [1_000, 0]}

    def test_extension_skips_catch_up(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(100)
        extend(vault, pool, ADDR_A, order_id, 300_000)
        assert pool.get_last_virtual_order_block() == 1

    def test_leftover_deposit_is_refunded(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(100)
        extend(vault, pool, ADDR_A, order_id, 350_500)
        extend(vault, pool, ADDR_A, order_id, 250_000)
        order = pool.get_order(order_id)
        assert (order.expiry_block, order.deposit) == (1_200, 500)

        vault.mine_to(1_300)
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == 500
        assert pool.state.liabilities.orders[0] == 0
        assert_conserved(vault, pool)

    def test_less_than_one_interval(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        with pytest.raises(CallerError, match="TWM#230"):
            extend(vault, pool, ADDR_A, order_id, 299_000)

    def test_wrong_token(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        with pytest.raises(CallerError, match="TWM#225"):
            extend(vault, pool, ADDR_A, order_id, 300_000, 1)

    def test_paused_order(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        pool.pause_order(ADDR_A, order_id)
        with pytest.raises(CallerError, match="TWM#231"):
            extend(vault, pool, ADDR_A, order_id, 300_000)

    def test_expired_order(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        with pytest.raises(CallerError, match="TWM#229"):
            extend(vault, pool, ADDR_A, order_id, 300_000)

    def test_beyond_max_length(self, market):
        vault, pool = market
        max_intervals = pool.state.params.max_order_intervals
        order_id = long_term(vault, pool, ADDR_A, 0, 300 * (max_intervals + 1) - 1, max_intervals)
        assert pool.get_order(order_id).sales_rate == 1
        with pytest.raises(CallerError, match="TWM#223"):
            extend(vault, pool, ADDR_A, order_id, 300)

    def test_failed_extension_takes_nothing(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        balance = vault.balance_of(ADDR_A, TOKEN0)
        with pytest.raises(CallerError):
            extend(vault, pool, ADDR_A, order_id, 299_000)
        assert vault.balance_of(ADDR_A, TOKEN0) == balance
        assert pool.get_order(order_id).expiry_block == 600


# ============================================================================
#  5  WITHDRAW / CANCEL
# ============================================================================

class TestWithdraw:

    def test_partial_withdraw_keeps_order_running(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(200)
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["proceeds"] > 0
        assert result.data["refund"] == 0
        assert result.data["cleared"] is False
        order = pool.get_order(order_id)
        assert not order.is_cleared
        assert order.proceeds_checkpoint == pool.state.orders.order_pools.cumulative_proceeds[0]

    def test_nothing_to_withdraw(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        with pytest.raises(CallerError, match="TWM#228"):
            withdraw(vault, pool, ADDR_A, order_id)

    def test_withdraw_twice_after_expiry(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        withdraw(vault, pool, ADDR_A, order_id)
        with pytest.raises(CallerError, match="TWM#008"):
            withdraw(vault, pool, ADDR_A, order_id)

    def test_late_withdraw_uses_expiry_snapshot(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        early = pool.get_order_amounts(order_id)
        # Trading after expiry must not change what the order is owed
        long_term(vault, pool, ADDR_B, 0, 599_000, 1)
        vault.mine_to(1_500)
        assert pool.get_order_amounts(order_id) == early
        assert withdraw(vault, pool, ADDR_A, order_id).data["proceeds"] == early[0]


class TestCancel:

    def test_cancel_expired_order_fails_without_mutation(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        root = pool.compute_state_root()
        balances = vault.get_pool_balances(pool.pool_id)
        held = (vault.balance_of(ADDR_A, TOKEN0), vault.balance_of(ADDR_A, TOKEN1))

        with pytest.raises(CallerError, match="TWM#227") as exc:
            cancel(vault, pool, ADDR_A, order_id)

        assert exc.value.code == ErrorCode.CANT_CANCEL_COMPLETED_ORDER
        assert pool.compute_state_root() == root
        assert pool.get_last_virtual_order_block() == 1
        assert vault.get_pool_balances(pool.pool_id) == balances
        assert (vault.balance_of(ADDR_A, TOKEN0), vault.balance_of(ADDR_A, TOKEN1)) == held

    def test_cancel_refunds_unsold_deposit(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(150)
        token0_before = vault.balance_of(ADDR_A, TOKEN0)

        result = cancel(vault, pool, ADDR_A, order_id)

        assert result.data["refund"] == 1_000 * (600 - 150)
        assert result.data["proceeds"] > 0
        assert vault.balance_of(ADDR_A, TOKEN0) - token0_before == 450_000
        assert pool.get_sales_rates() == (0, 0)
        assert pool.state.orders.order_pools.sales_rate_expiring_at == {}
        assert pool.get_order(order_id).is_cleared

    def test_cancel_paused_order(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(150)
        pool.pause_order(ADDR_A, order_id)
        stored = pool.get_order(order_id)
        vault.mine_to(200)
        result = cancel(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == stored.deposit == 450_000
        assert result.data["proceeds"] == stored.proceeds

    def test_cancel_twice(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        cancel(vault, pool, ADDR_A, order_id)
        with pytest.raises(CallerError, match="TWM#008"):
            cancel(vault, pool, ADDR_A, order_id)


# ============================================================================
#  6  AUTHORIZATION
# ============================================================================

class TestDelegation:
    """Owner or delegate may act; only the owner may redirect funds."""

    @pytest.fixture
    def delegated(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1, delegate=ADDR_B)
        vault.mine_to(200)
        return vault, pool, order_id

    def test_delegate_cannot_pay_itself(self, delegated):
        vault, pool, order_id = delegated
        with pytest.raises(CallerError, match="TWM#010"):
            withdraw(vault, pool, ADDR_B, order_id)

    def test_delegate_cannot_pay_third_party(self, delegated):
        vault, pool, order_id = delegated
        with pytest.raises(CallerError, match="TWM#010"):
            withdraw(vault, pool, ADDR_B, order_id, recipient=ADDR_C)

    def test_delegate_pays_owner(self, delegated):
        vault, pool, order_id = delegated
        before = vault.balance_of(ADDR_A, TOKEN1)
        result = withdraw(vault, pool, ADDR_B, order_id, recipient=ADDR_A)
        assert vault.balance_of(ADDR_A, TOKEN1) - before == result.data["proceeds"]

    def test_stranger_rejected(self, delegated):
        vault, pool, order_id = delegated
        with pytest.raises(CallerError, match="TWM#008"):
            withdraw(vault, pool, ADDR_C, order_id, recipient=ADDR_A)

    def test_owner_may_redirect(self, delegated):
        vault, pool, order_id = delegated
        before = vault.balance_of(ADDR_C, TOKEN1)
        result = withdraw(vault, pool, ADDR_A, order_id, recipient=ADDR_C)
        assert vault.balance_of(ADDR_C, TOKEN1) - before == result.data["proceeds"]

    def test_delegate_pause_and_resume(self, delegated):
        _, pool, order_id = delegated
        pool.pause_order(ADDR_B, order_id)
        pool.resume_order(ADDR_B, order_id)
        with pytest.raises(CallerError, match="TWM#008"):
            pool.pause_order(ADDR_C, order_id)

    def test_delegate_cancel_pays_owner(self, delegated):
        vault, pool, order_id = delegated
        before = vault.balance_of(ADDR_A, TOKEN0)
        result = cancel(vault, pool, ADDR_B, order_id, recipient=ADDR_A)
        assert vault.balance_of(ADDR_A, TOKEN0) - before == result.data["refund"]

    def test_null_sender_never_matches_unset_delegate(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        assert pool.get_order(order_id).delegate == NULL_ADDRESS
        with pytest.raises(CallerError, match="TWM#008"):
            pool.pause_order(NULL_ADDRESS, order_id)
        pool.pause_order(ADDR_A, order_id)
        with pytest.raises(CallerError, match="TWM#008"):
            pool.resume_order(NULL_ADDRESS, order_id)
        assert pool.get_order(order_id).paused

    def test_unknown_order(self, market):
        vault, pool = market
        with pytest.raises(CallerError, match="TWM#008"):
            withdraw(vault, pool, ADDR_A, 99)

    def test_order_enumeration(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        long_term(vault, pool, ADDR_B, 1, 599_000, 1)
        long_term(vault, pool, ADDR_A, 1, 599_000, 2)
        assert pool.get_order_ids(ADDR_A) == ([0, 2], 2, 2)
        assert pool.get_order_ids(ADDR_A, offset=1, max_results=1) == ([2], 1, 2)
        assert pool.get_order_ids(ADDR_C) == ([], 0, 0)


# ============================================================================
#  7  POOL PAUSE
# ============================================================================

class TestPoolPause:
    """A paused pool stops trading; orders can still be settled."""

    @pytest.fixture
    def paused(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(150)
        pool.set_pause(ADMIN, True)
        vault.mine_to(450)
        return vault, pool, order_id

    def test_executor_frozen(self, paused):
        vault, pool, order_id = paused
        assert pool.get_last_virtual_order_block() == 150
        assert pool.get_virtual_reserves().block == 150
        pool.execute_virtual_orders_to_block(450)
        assert pool.get_last_virtual_order_block() == 150

    def test_trading_operations_blocked(self, paused):
        vault, pool, order_id = paused
        with pytest.raises(CallerError, match="TWM#100"):
            long_term(vault, pool, ADDR_B, 0, 599_000, 1)
        with pytest.raises(CallerError, match="TWM#100"):
            extend(vault, pool, ADDR_A, order_id, 300_000)
        with pytest.raises(CallerError, match="TWM#100"):
            vault.swap(pool.pool_id, PoolOperation(
                OperationType.SWAP, ADDR_B, {"token_in": 0, "amount_in": 1_000},
            ))

    def test_order_pause_blocked(self, paused):
        vault, pool, order_id = paused
        with pytest.raises(CallerError, match="TWM#100"):
            pool.pause_order(ADDR_A, order_id)
        assert not pool.get_order(order_id).paused
        assert pool.get_sales_rates() == (1_000, 0)

    def test_order_resume_blocked(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        vault.mine_to(100)
        pool.pause_order(ADDR_A, order_id)
        pool.set_pause(ADMIN, True)
        vault.mine_to(125)
        with pytest.raises(CallerError, match="TWM#100"):
            pool.resume_order(ADDR_A, order_id)
        assert pool.get_order(order_id).paused

    def test_paused_order_settles_at_expiry(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 899_000, 2)   # 1000/block until 900
        vault.mine_to(50)
        pool.pause_order(ADDR_A, order_id)
        stored = pool.get_order(order_id)
        assert stored.deposit == 1_000 * (900 - 50)
        vault.mine_to(100)
        pool.set_pause(ADMIN, True)

        vault.mine_to(900)
        assert pool.get_last_virtual_order_block() == 100
        assert pool.get_order_amounts(order_id) == (stored.proceeds, 1_000 * (900 - 50))
        with pytest.raises(CallerError, match="TWM#227"):
            cancel(vault, pool, ADDR_A, order_id)

        token0_before = vault.balance_of(ADDR_A, TOKEN0)
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == 1_000 * (900 - 50)
        assert result.data["proceeds"] == stored.proceeds > 0
        assert result.data["cleared"]
        assert vault.balance_of(ADDR_A, TOKEN0) - token0_before == 850_000
        assert pool.get_order(order_id).is_cleared
        assert pool.state.liabilities.orders == [0, 0]
        assert_conserved(vault, pool)

    def test_paused_order_before_expiry_keeps_deposit(self, market):
        vault, pool = market
        order_id = long_term(vault, pool, ADDR_A, 0, 899_000, 2)
        vault.mine_to(50)
        pool.pause_order(ADDR_A, order_id)
        pool.set_pause(ADMIN, True)
        vault.mine_to(899)
        result = withdraw(vault, pool, ADDR_A, order_id)
        assert result.data["refund"] == 0
        assert not result.data["cleared"]
        assert pool.get_order(order_id).deposit == 1_000 * (900 - 50)

    def test_settlement_allowed(self, paused):
        vault, pool, order_id = paused
        result = cancel(vault, pool, ADDR_A, order_id)
        # Frozen at block 150, so the rest of the deposit is refunded
        assert result.data["refund"] == 1_000 * (600 - 150)

    def test_unpause_replays_frozen_span(self, paused):
        vault, pool, order_id = paused
        pool.set_pause(ADMIN, False)
        assert pool.execute_virtual_orders_to_block(450) == 450
        assert pool.get_sales_rates() == (1_000, 0)

    def test_non_admin_cannot_pause(self, market):
        _, pool = market
        with pytest.raises(CallerError, match="TWM#002"):
            pool.set_pause(ADDR_A, True)
        assert not pool.is_paused


# ============================================================================
#  8  WRAPAROUND / CONSERVATION
# ============================================================================

class TestAccumulatorWrap:

    def test_proceeds_independent_of_wrap(self):
        vault, pool = make_market()
        vault_w, pool_w = make_market()
        pool_w.state.orders.order_pools.cumulative_proceeds[0] = U128_MAX - 10

        a = long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        b = long_term(vault_w, pool_w, ADDR_A, 0, 599_000, 1)
        vault.mine_to(700)
        vault_w.mine_to(700)
        pool_w.execute_virtual_orders_to_block(700)
        assert pool_w.state.orders.order_pools.cumulative_proceeds[0] < U128_MAX - 10

        assert withdraw(vault, pool, ADDR_A, a).data["proceeds"] == \
            withdraw(vault_w, pool_w, ADDR_A, b).data["proceeds"]


class TestConservation:
    """Custodied balances always cover tracked liabilities."""

    def test_mixed_sequence(self, market):
        vault, pool = market
        steps = [
            lambda: long_term(vault, pool, ADDR_A, 0, 599_000, 1),
            lambda: long_term(vault, pool, ADDR_B, 1, 1_234_567, 3),
            lambda: vault.mine(137),
            lambda: vault.swap(pool.pool_id, PoolOperation(
                OperationType.SWAP, ADDR_C, {"token_in": 1, "amount_in": 50_000},
            )),
            lambda: pool.pause_order(ADDR_B, 1),
            lambda: vault.mine(311),
            lambda: pool.resume_order(ADDR_B, 1),
            lambda: withdraw(vault, pool, ADDR_A, 0),
            lambda: vault.mine(500),
            lambda: withdraw(vault, pool, ADDR_A, 0),
            lambda: cancel(vault, pool, ADDR_B, 1),
            lambda: vault.exit_pool(pool.pool_id, PoolOperation(
                OperationType.EXIT, ADDR_A, {"shares": 500_000_000},
            )),
        ]
        for step in steps:
            step()
            pool.execute_virtual_orders_to_block(vault.block_number)
            assert_conserved(vault, pool)
        assert pool.state.liabilities.orders == [0, 0]


# ============================================================================
#  9  INTERNAL FAULTS
# ============================================================================

class TestInvariantFaults:

    def test_sales_rate_underflow_aborts(self, market):
        vault, pool = market
        long_term(vault, pool, ADDR_A, 0, 599_000, 1)
        pool.state.orders.order_pools.current_sales_rate = [0, 0]
        vault.mine_to(700)
        with pytest.raises(InvariantViolation, match="TWM#402"):
            pool.execute_virtual_orders_to_block(700)
        assert pool.get_last_virtual_order_block() == 1

    def test_balance_shortfall_blocks_until_injection(self, market):
        vault, pool = market
        swap = PoolOperation(OperationType.SWAP, ADDR_B, {"token_in": 0, "amount_in": 1_000})
        long_term(vault, pool, ADDR_A, 1, 599_000, 1)
        vault._pool_balances[pool.pool_id][1] = 100
        with pytest.raises(InvariantViolation, match="TWM#403"):
            vault.swap(pool.pool_id, swap)
        vault.inject(pool.pool_id, 1, LIQUIDITY)
        assert vault.swap(pool.pool_id, swap).data["amount_out"] > 0
