# flasharb/amm.py
"""
Integer pool math for every supported venue kind

Snapshots are built from raw on-chain state by the venue adapters and
travel inside each Quote, so sizing can evaluate any trade amount without
touching the network.
"""

from dataclasses import dataclass
from decimal import Decimal, localcontext
from functools import lru_cache
from typing import Tuple

from flasharb.models import BPS, VenueKind

Q96 = 1 << 96
FEE_PIPS = 1_000_000  # Uniswap V3 fee denominator
CURVE_FEE_DENOMINATOR = 10 ** 10
NEWTON_ITERATIONS = 255


def _div_up(a: int, b: int) -> int:
    return -(-a // b)


# =============================================================================
# CONSTANT PRODUCT (Uniswap V2 forks)
# =============================================================================

@dataclass(frozen=True)
class ConstantProductPool:
    reserve_in: int
    reserve_out: int
    fee_bps: int

    kind = VenueKind.CONSTANT_PRODUCT

    def amount_out(self, amount_in: int) -> int:
        if amount_in <= 0 or self.reserve_in <= 0 or self.reserve_out <= 0:
            return 0
        amount_in_with_fee = amount_in * (BPS - self.fee_bps)
        numerator = amount_in_with_fee * self.reserve_out
        denominator = self.reserve_in * BPS + amount_in_with_fee
        return numerator // denominator

    def marginal_rate(self) -> Tuple[int, int]:
        return (BPS - self.fee_bps) * self.reserve_out, BPS * max(self.reserve_in, 1)

    def depth(self) -> int:
        return self.reserve_in


# =============================================================================
# CONCENTRATED LIQUIDITY (Uniswap V3)
# =============================================================================

@lru_cache(maxsize=4096)
def tick_to_sqrt_price_x96(tick: int) -> int:
    """sqrt(1.0001^tick) as a Q64.96 integer"""
    with localcontext() as ctx:
        ctx.prec = 80
        return int((Decimal("1.0001") ** (Decimal(tick) / 2)) * Q96)


@dataclass(frozen=True)
class ConcentratedPool:
    """
    Uniswap V3 pool state seen from one swap direction.

    ticks holds (tick, liquidityNet) for initialized ticks, ascending.
    Without tick data the current range is assumed to extend indefinitely.
    """
    sqrt_price_x96: int
    liquidity: int
    fee_pips: int
    zero_for_one: bool
    ticks: Tuple[Tuple[int, int], ...] = ()

    kind = VenueKind.CONCENTRATED_LIQUIDITY

    def _crossings(self):
        if self.zero_for_one:
            return [
                (tick_to_sqrt_price_x96(t), net) for t, net in reversed(self.ticks)
                if tick_to_sqrt_price_x96(t) < self.sqrt_price_x96
            ]
        return [
            (tick_to_sqrt_price_x96(t), net) for t, net in self.ticks
            if tick_to_sqrt_price_x96(t) > self.sqrt_price_x96
        ]

    def amount_out(self, amount_in: int) -> int:
        if amount_in <= 0 or self.liquidity <= 0 or self.sqrt_price_x96 <= 0:
            return 0

        remaining = amount_in * (FEE_PIPS - self.fee_pips) // FEE_PIPS
        sqrt_p = self.sqrt_price_x96
        liquidity = self.liquidity
        out = 0

        for target, liquidity_net in self._crossings():
            if self.zero_for_one:
                step_in = _div_up(liquidity * Q96 * (sqrt_p - target), sqrt_p * target)
                if remaining < step_in:
                    break
                out += liquidity * (sqrt_p - target) // Q96
                liquidity -= liquidity_net
            else:
                step_in = _div_up(liquidity * (target - sqrt_p), Q96)
                if remaining < step_in:
                    break
                out += liquidity * Q96 * (target - sqrt_p) // (sqrt_p * target)
                liquidity += liquidity_net
            remaining -= step_in
            sqrt_p = target
            if liquidity <= 0:
                return out

        if remaining > 0:
            if self.zero_for_one:
                next_p = _div_up(liquidity * Q96 * sqrt_p, liquidity * Q96 + remaining * sqrt_p)
                out += liquidity * (sqrt_p - next_p) // Q96
            else:
                next_p = sqrt_p + remaining * Q96 // liquidity
                out += liquidity * Q96 * (next_p - sqrt_p) // (sqrt_p * next_p)
        return out

    def marginal_rate(self) -> Tuple[int, int]:
        price_num = self.sqrt_price_x96 * self.sqrt_price_x96
        price_den = Q96 * Q96
        fee_num = FEE_PIPS - self.fee_pips
        if self.zero_for_one:
            return fee_num * price_num, FEE_PIPS * price_den
        return fee_num * price_den, FEE_PIPS * max(price_num, 1)

    def depth(self) -> int:
        """Virtual reserve of the input token in the active range"""
        if self.sqrt_price_x96 <= 0:
            return 0
        if self.zero_for_one:
            return self.liquidity * Q96 // self.sqrt_price_x96
        return self.liquidity * self.sqrt_price_x96 // Q96


# =============================================================================
# STABLE SWAP (Curve)
# =============================================================================

def get_d(xp: Tuple[int, ...], amp: int) -> int:
    n = len(xp)
    s = sum(xp)
    if s == 0:
        return 0
    d = s
    ann = amp * n
    for _ in range(NEWTON_ITERATIONS):
        d_p = d
        for x in xp:
            d_p = d_p * d // (x * n)
        d_prev = d
        d = (ann * s + d_p * n) * d // ((ann - 1) * d + (n + 1) * d_p)
        if abs(d - d_prev) <= 1:
            break
    return d


def get_y(i: int, j: int, x: int, xp: Tuple[int, ...], amp: int) -> int:
    """New balance of coin j after coin i is set to x, holding D constant"""
    n = len(xp)
    d = get_d(xp, amp)
    ann = amp * n
    c = d
    s = 0
    for k in range(n):
        if k == i:
            xk = x
        elif k != j:
            xk = xp[k]
        else:
            continue
        s += xk
        c = c * d // (xk * n)
    c = c * d // (ann * n)
    b = s + d // ann

    y = d
    for _ in range(NEWTON_ITERATIONS):
        y_prev = y
        y = (y * y + c) // (2 * y + b - d)
        if abs(y - y_prev) <= 1:
            break
    return y


@dataclass(frozen=True)
class StableSwapPool:
    balances: Tuple[int, ...]
    multipliers: Tuple[int, ...]  # 10 ** (18 - decimals) per coin
    amp: int
    fee: int  # 1e10 denominated
    i: int
    j: int

    kind = VenueKind.STABLE_SWAP

    def _xp(self) -> Tuple[int, ...]:
        return tuple(b * m for b, m in zip(self.balances, self.multipliers))

    def amount_out(self, amount_in: int) -> int:
        if amount_in <= 0:
            return 0
        xp = self._xp()
        if any(x <= 0 for x in xp):
            return 0
        x = xp[self.i] + amount_in * self.multipliers[self.i]
        y = get_y(self.i, self.j, x, xp, self.amp)
        dy = xp[self.j] - y - 1
        if dy <= 0:
            return 0
        dy = dy // self.multipliers[self.j]
        return dy - dy * self.fee // CURVE_FEE_DENOMINATOR

    def marginal_rate(self) -> Tuple[int, int]:
        probe = max(self.balances[self.i] // 1_000_000, 1)
        return self.amount_out(probe), probe

    def depth(self) -> int:
        return self.balances[self.i]


# =============================================================================
# IMPACT HELPERS
# =============================================================================

def price_impact_bps(pool, amount_in: int) -> int:
    """Shortfall of the realized output against the pre-trade marginal rate, rounded up"""
    if amount_in <= 0:
        return 0
    num, den = pool.marginal_rate()
    ideal = amount_in * num
    if ideal <= 0:
        return BPS
    actual = pool.amount_out(amount_in) * den
    if actual >= ideal:
        return 0
    return _div_up((ideal - actual) * BPS, ideal)


def max_input_for_impact(pool, ceiling_bps: int, upper: int = None) -> int:
    """Largest input whose impact stays within ceiling_bps (impact is monotone in size)"""
    hi = pool.depth() if upper is None else upper
    if hi <= 0:
        return 0
    if price_impact_bps(pool, hi) <= ceiling_bps:
        return hi
    lo = 0
    while hi - lo > 1:
        mid = (lo + hi) // 2
        if price_impact_bps(pool, mid) <= ceiling_bps:
            lo = mid
        else:
            hi = mid
    return lo
