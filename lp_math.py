#!/usr/bin/env python3
"""
LP Position Math
================

Value model for liquidity positions under a terminal price, plus the yield
arithmetic (fees, farming, gas, compounding) the simulator applies on top.

Two position shapes share one interface (``value_at``, ``hold_value_at``,
``impermanent_loss_factor``, ``in_range``, ``capital_efficiency``):

  - FullRangePosition     constant-product (V2) curve, 50/50 notional split
  - RangeBoundedPosition  concentrated (V3) liquidity between P_a and P_b

FORMULA SOURCES:
──────────────────────────────────────────────
1. Uniswap V2 Whitepaper §2 — constant product x·y = k
   https://uniswap.org/whitepaper.pdf

2. Uniswap V3 Core Whitepaper §6.2 — token amounts from liquidity
   https://uniswap.org/whitepaper-v3.pdf
   - in range:  x = L·(1/√P − 1/√P_b),  y = L·(√P − √P_a)
   - P < P_a:   x = L·(1/√P_a − 1/√P_b), y = 0
   - P > P_b:   x = 0,                   y = L·(√P_b − √P_a)

3. Impermanent Loss (Pintail, 2019)
   https://pintail.medium.com/uniswap-a-good-deal-for-liquidity-providers-104c0b6816f2
   IL factor = 2·√r / (1 + r),  r = P / P_0

4. PancakeSwap MasterChef farm rewards
   https://docs.pancakeswap.finance/earn/yield-farming
   reward APY = emissions × pool weight × P_reward / staked TVL
"""

import math
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from yield_cli.central_config import config
from yield_cli.errors import (
    InvalidRangeConfigurationError,
    MissingSnapshotFieldsError,
)

_SIM = config.simulation


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


# ── Pool Snapshot ────────────────────────────────────────────────────────

# field → accepted input keys (snake_case first, then the collector's names)
_SNAPSHOT_KEYS = {
    "volume_24h": ("volume_24h", "V_24h"),
    "tvl_lp": ("tvl_lp", "TVL_lp"),
    "pair_weight_ratio": ("pair_weight_ratio", "w_pair_ratio"),
    "reward_token_price": ("reward_token_price", "P_rewardToken", "P_cake"),
    "tvl_staked": ("tvl_staked", "TVL_stack"),
    "gas_price_gwei": ("gas_price_gwei", "P_gas"),
    "native_token_price": ("native_token_price", "P_nativeToken", "P_BNB"),
}
_OPTIONAL_SNAPSHOT_KEYS = {
    "fee_tier": ("fee_tier", "feeTier"),
    "reward_emissions_per_year": ("reward_emissions_per_year",),
}


@dataclass(frozen=True)
class PoolSnapshot:
    """
    Pool metrics observed at analysis time.

    All monetary values in USD. ``pair_weight_ratio`` is the pool's share of
    farm emissions (0–1); ``gas_price_gwei`` and ``native_token_price``
    price one transaction on the host chain.
    """

    volume_24h: float
    tvl_lp: float
    pair_weight_ratio: float
    reward_token_price: float
    tvl_staked: float
    gas_price_gwei: float
    native_token_price: float
    fee_tier: Optional[float] = None
    reward_emissions_per_year: float = _SIM.REWARD_EMISSIONS_PER_YEAR

    def __post_init__(self):
        for name in _SNAPSHOT_KEYS:
            value = getattr(self, name)
            if value is None:
                raise MissingSnapshotFieldsError(name)
            if not math.isfinite(value) or value < 0:
                raise ValueError(f"{name} must be a non-negative number, got {value}")
        if self.fee_tier is not None and not 0 <= self.fee_tier < 1:
            raise ValueError(f"fee_tier must be a fraction in [0, 1), got {self.fee_tier}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PoolSnapshot":
        """Build from a collector payload; raises MissingSnapshotFieldsError."""
        kwargs = {}
        for name, keys in _SNAPSHOT_KEYS.items():
            value = _first_present(data, keys)
            if value is None:
                raise MissingSnapshotFieldsError(name)
            kwargs[name] = float(value)
        for name, keys in _OPTIONAL_SNAPSHOT_KEYS.items():
            value = _first_present(data, keys)
            if value is not None:
                kwargs[name] = float(value)
        return cls(**kwargs)

    @property
    def volume_to_tvl_ratio(self) -> float:
        return self.volume_24h / self.tvl_lp if self.tvl_lp > 0 else 0.0


# ── Position Config ──────────────────────────────────────────────────────

_POSITION_KEYS = {
    "initial_value": ("initial_value", "V_initial"),
    "days": ("days",),
    "initial_price": ("initial_price", "P_0"),
    "harvest_days": ("harvest_days", "h"),
    "fee_tier": ("fee_tier", "feeTier"),
    "price_lower": ("price_lower", "P_a"),
    "price_upper": ("price_upper", "P_b"),
    "gas_per_tx": ("gas_per_tx",),
}
_REQUIRED_POSITION_FIELDS = ("initial_value", "days", "initial_price")


@dataclass(frozen=True)
class PositionConfig:
    """
    Capital, horizon and (optionally) range of one LP position.

    ``harvest_days`` is the compounding interval h in days. ``price_lower`` /
    ``price_upper`` are only set for range-bounded positions with an
    explicit range.
    """

    initial_value: float
    days: int
    initial_price: float
    harvest_days: Optional[float] = None
    fee_tier: Optional[float] = None
    price_lower: Optional[float] = None
    price_upper: Optional[float] = None
    gas_per_tx: int = _SIM.GAS_PER_TX

    def __post_init__(self):
        if self.initial_value <= 0:
            raise ValueError("Initial value must be positive")
        if self.days <= 0:
            raise ValueError("Holding period must be positive")
        if self.initial_price <= 0:
            raise ValueError("Price must be positive")
        if self.harvest_days is not None and self.harvest_days <= 0:
            raise ValueError("Harvest interval must be positive")
        if self.gas_per_tx < 0:
            raise ValueError("Gas per transaction cannot be negative")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PositionConfig":
        kwargs = {}
        for name, keys in _POSITION_KEYS.items():
            value = _first_present(data, keys)
            if value is None:
                if name in _REQUIRED_POSITION_FIELDS:
                    raise ValueError(f"Position config is missing '{name}'")
                continue
            kwargs[name] = value
        return cls(**kwargs)

    @property
    def has_explicit_range(self) -> bool:
        return (
            self.price_lower is not None
            and self.price_upper is not None
            and self.harvest_days is not None
        )

    def resolve_fee_tier(self, snapshot: PoolSnapshot, range_bounded: bool) -> float:
        """Position fee tier, else the snapshot's, else the variant default."""
        if self.fee_tier is not None:
            return self.fee_tier
        if snapshot.fee_tier is not None:
            return snapshot.fee_tier
        if range_bounded:
            return _SIM.DEFAULT_FEE_TIER_RANGE_BOUNDED
        return _SIM.DEFAULT_FEE_TIER_FULL_RANGE


def validate_range(price_lower: float, initial_price: float, price_upper: float) -> None:
    """Enforce 0 < P_a < P_0 < P_b."""
    if price_lower <= 0:
        raise InvalidRangeConfigurationError(
            f"Lower bound must be positive, got P_a={price_lower}"
        )
    if price_lower >= initial_price:
        raise InvalidRangeConfigurationError(
            f"Lower bound must be below the entry price: P_a={price_lower} >= P_0={initial_price}"
        )
    if initial_price >= price_upper:
        raise InvalidRangeConfigurationError(
            f"Upper bound must be above the entry price: P_0={initial_price} >= P_b={price_upper}"
        )


# ── Uniswap V3 Core Math ────────────────────────────────────────────────


class UniswapV3Math:
    """
    Pure functions implementing concentrated-liquidity math.
    Every formula references a specific section of the Uniswap V3 Whitepaper.
    """

    @staticmethod
    def token_amounts(
        liquidity: float,
        price: float,
        price_lower: float,
        price_upper: float,
    ) -> Tuple[float, float]:
        """
        (base, quote) amounts held by liquidity L at price P.

        Formulae (Whitepaper §6.2):
          P < P_a:        base = L·(1/√P_a − 1/√P_b),  quote = 0
          P_a ≤ P ≤ P_b:  base = L·(1/√P − 1/√P_b),    quote = L·(√P − √P_a)
          P > P_b:        base = 0,                    quote = L·(√P_b − √P_a)
        """
        if price <= 0:
            raise ValueError("Price must be positive")
        sp_l = math.sqrt(price_lower)
        sp_u = math.sqrt(price_upper)

        if price < price_lower:
            return liquidity * (1 / sp_l - 1 / sp_u), 0.0
        if price > price_upper:
            return 0.0, liquidity * (sp_u - sp_l)
        sp = math.sqrt(price)
        return liquidity * (1 / sp - 1 / sp_u), liquidity * (sp - sp_l)

    @staticmethod
    def capital_efficiency(price_lower: float, price_upper: float) -> float:
        """
        Concentration multiplier of a range versus full-range liquidity.

        Formula: CE = √(P_b / P_a)

        Scales the position's effective share of pool liquidity (and so its
        fee share), never the pool's trading volume.
        """
        if price_lower <= 0 or price_upper <= price_lower:
            raise ValueError("Range requires 0 < P_a < P_b")
        return math.sqrt(price_upper / price_lower)

    @staticmethod
    def range_width_pct(
        current_price: float, range_min: float, range_max: float
    ) -> float:
        """
        Range width as a percentage of current price.

        Formula: (range_max - range_min) / current_price × 100
        """
        if current_price <= 0 or range_max <= range_min:
            return 0.0
        return round(((range_max - range_min) / current_price) * 100, 2)


# ── Position Value Model ────────────────────────────────────────────────


class FullRangePosition:
    """Constant-product position spanning the whole price curve."""

    capital_efficiency = 1.0
    is_range_bounded = False

    def __init__(self, initial_value: float, initial_price: float):
        if initial_value <= 0:
            raise ValueError("Initial value must be positive")
        if initial_price <= 0:
            raise ValueError("Price must be positive")
        self.initial_value = initial_value
        self.initial_price = initial_price

    def in_range(self, price: float) -> bool:
        return True

    def hold_value_at(self, price: float) -> float:
        """Value of the untouched 50/50 split: (V/2)·(P/P_0 + 1)."""
        return self.initial_value / 2 * (price / self.initial_price + 1)

    def impermanent_loss_factor(self, price: float) -> float:
        """
        Pool value over hold value.

        Formula (Pintail, 2019): 2·√r / (1 + r),  r = P / P_0
        """
        if price <= 0:
            raise ValueError("Price must be positive")
        r = price / self.initial_price
        return 2 * math.sqrt(r) / (1 + r)

    def value_at(self, price: float) -> float:
        return self.hold_value_at(price) * self.impermanent_loss_factor(price)


class RangeBoundedPosition:
    """
    Concentrated position with liquidity only between P_a and P_b.

    Liquidity is normalized so the position is worth ``initial_value`` at
    P_0. The hold benchmark keeps the token quantities deposited at P_0.
    """

    is_range_bounded = True

    def __init__(
        self,
        initial_value: float,
        initial_price: float,
        price_lower: float,
        price_upper: float,
    ):
        if initial_value <= 0:
            raise ValueError("Initial value must be positive")
        validate_range(price_lower, initial_price, price_upper)
        self.initial_value = initial_value
        self.initial_price = initial_price
        self.price_lower = price_lower
        self.price_upper = price_upper
        self.capital_efficiency = UniswapV3Math.capital_efficiency(
            price_lower, price_upper
        )
        # unit-liquidity deposit at P_0
        self._base0, self._quote0 = UniswapV3Math.token_amounts(
            1.0, initial_price, price_lower, price_upper
        )
        self._unit_value0 = self._base0 * initial_price + self._quote0
        self.liquidity = initial_value / self._unit_value0

    def in_range(self, price: float) -> bool:
        return self.price_lower <= price <= self.price_upper

    def token_amounts(self, price: float) -> Tuple[float, float]:
        return UniswapV3Math.token_amounts(
            self.liquidity, price, self.price_lower, self.price_upper
        )

    def _unit_pool_value(self, price: float) -> float:
        base, quote = UniswapV3Math.token_amounts(
            1.0, price, self.price_lower, self.price_upper
        )
        return base * price + quote

    def _unit_hold_value(self, price: float) -> float:
        return self._base0 * price + self._quote0

    def hold_value_at(self, price: float) -> float:
        return self.initial_value * (self._unit_hold_value(price) / self._unit_value0)

    def impermanent_loss_factor(self, price: float) -> float:
        """Pool value over hold value; exactly 1.0 at P_0."""
        return self._unit_pool_value(price) / self._unit_hold_value(price)

    def value_at(self, price: float) -> float:
        return self.initial_value * (self._unit_pool_value(price) / self._unit_value0)


Position = Union[FullRangePosition, RangeBoundedPosition]


def build_position(position: PositionConfig) -> Position:
    """Range-bounded when both bounds are set, full-range otherwise."""
    if position.price_lower is not None and position.price_upper is not None:
        return RangeBoundedPosition(
            position.initial_value,
            position.initial_price,
            position.price_lower,
            position.price_upper,
        )
    return FullRangePosition(position.initial_value, position.initial_price)


# ── Yield Math ───────────────────────────────────────────────────────────


class YieldMath:
    """Fee, farming, gas and compounding arithmetic. Rates are fractions."""

    @staticmethod
    def daily_fee_rate(
        volume_24h: float,
        fee_tier: float,
        tvl_lp: float,
        contribution: float,
        capital_efficiency: float = 1.0,
    ) -> float:
        """
        Fee income per dollar of position per day.

        Formula: V_24h × fee_tier / (TVL_lp + V × CE)

        The contribution enters the denominator at its effective
        (concentrated) size.
        """
        denom = tvl_lp + contribution * capital_efficiency
        if denom <= 0:
            return 0.0
        return volume_24h * fee_tier / denom

    @staticmethod
    def trading_fee_apy(daily_rate: float) -> float:
        return daily_rate * _SIM.DAYS_PER_YEAR

    @staticmethod
    def farming_apy(
        emissions_per_year: float,
        pair_weight_ratio: float,
        reward_token_price: float,
        tvl_staked: float,
        contribution: float,
    ) -> float:
        """
        Farm reward yield.

        Formula: emissions × w_pair × P_reward / (TVL_staked + V)
        Zero when the farm has no staked TVL or no emission weight.
        """
        if tvl_staked <= 0 or pair_weight_ratio <= 0:
            return 0.0
        annual_rewards = emissions_per_year * pair_weight_ratio * reward_token_price
        return annual_rewards / (tvl_staked + contribution)

    @staticmethod
    def gas_cost_per_tx(
        gas_units: float, gas_price_gwei: float, native_token_price: float
    ) -> float:
        """USD cost of one transaction: units × gwei × P_native / 1e9."""
        return gas_units * gas_price_gwei * native_token_price / 1e9

    @staticmethod
    def harvest_periods(days: float, harvest_days: float) -> int:
        """Completed compounding periods: floor(days / h)."""
        if harvest_days <= 0:
            raise ValueError("Harvest interval must be positive")
        return math.floor(days / harvest_days)

    @staticmethod
    def compounded_return(period_rate: float, periods: int) -> float:
        """(1 + r)^n − 1"""
        return (1 + period_rate) ** periods - 1


# ── CLI quick test ───────────────────────────────────────────────────────

if __name__ == "__main__":
    full = FullRangePosition(1000, 650)
    ranged = RangeBoundedPosition(1000, 650, 580, 720)
    for p in (500, 580, 650, 720, 800):
        print(
            f"P={p:>4}  V2={full.value_at(p):8.2f} (IL {full.impermanent_loss_factor(p):.4f})"
            f"  V3={ranged.value_at(p):8.2f} (IL {ranged.impermanent_loss_factor(p):.4f})"
        )
    print(f"CE(580, 720) = {ranged.capital_efficiency:.4f}")
