"""
Token Classification — stablecoins, majors, volatile assets
============================================================

Symbol-level classification used by the risk layers:
  - Portfolio correlation only tracks volatile (non-stable) assets
  - Pool risk scoring rewards stable-stable pairs
  - Lending picks a default interest-rate model per asset class

Symbols are normalized to uppercase; pair labels such as ``"WBNB-USDT"``
or ``"ETH/USDC"`` are split on ``-`` or ``/``.
"""

import re
from typing import Iterable, List, Tuple

# ── Known Stablecoin Symbols ────────────────────────────────────────────
# Normalized to uppercase. Includes bridged variants (.e, .b, etc.)
# Sources: CoinGecko stablecoin category, DeFiLlama stablecoin tracker.

STABLECOIN_SYMBOLS: frozenset = frozenset({
    # USD-pegged: major
    "USDC", "USDT", "DAI", "BUSD", "TUSD", "FRAX", "LUSD",
    "USDP", "GUSD", "SUSD", "CUSD", "USDD", "PYUSD", "GHO",
    "FDUSD", "CRVUSD", "MKUSD", "USD1",

    # USD-pegged: bridged variants
    "USDC.E", "USDT.E", "DAI.E",
    "USDBC", "USDCE",
    "AXLUSDC",

    # EUR / GBP pegged
    "EURS", "EURT", "AGEUR", "CEUR", "EURC", "GBPT",

    # Algorithmic / CDP stables
    "MIM", "DOLA", "ALUSD", "USDS",
})

# ── Major Assets (deep liquidity, lower rate-model risk) ───────────────

MAJOR_ASSETS: frozenset = frozenset({
    "WETH", "ETH", "STETH", "WSTETH",
    "WBTC", "BTC", "BTCB", "CBBTC",
    "WBNB", "BNB",
})

_PAIR_SEPARATOR = re.compile(r"[-/]")


def is_stablecoin(symbol: str) -> bool:
    """
    Check if a token symbol is a known stablecoin.

    Examples:
        >>> is_stablecoin("USDC")
        True
        >>> is_stablecoin("usdt.e")
        True
        >>> is_stablecoin("WBNB")
        False
    """
    return symbol.strip().upper() in STABLECOIN_SYMBOLS


def split_pair(pair: str) -> Tuple[str, ...]:
    """
    Split a pair label into normalized token symbols.

    Examples:
        >>> split_pair("WBNB-USDT")
        ('WBNB', 'USDT')
        >>> split_pair("eth/usdc")
        ('ETH', 'USDC')
        >>> split_pair("CAKE")
        ('CAKE',)
    """
    return tuple(
        part.strip().upper() for part in _PAIR_SEPARATOR.split(pair) if part.strip()
    )


def classify_pair(symbol0: str, symbol1: str) -> str:
    """
    Classify a token pair.

    Returns:
        "stable-stable"     — Both tokens are stablecoins
        "stable-volatile"   — One stablecoin + one volatile
        "volatile-volatile" — Neither is a stablecoin

    Examples:
        >>> classify_pair("USDC", "USDT")
        'stable-stable'
        >>> classify_pair("WBNB", "USDT")
        'stable-volatile'
        >>> classify_pair("CAKE", "WBNB")
        'volatile-volatile'
    """
    s0 = is_stablecoin(symbol0)
    s1 = is_stablecoin(symbol1)
    if s0 and s1:
        return "stable-stable"
    elif s0 or s1:
        return "stable-volatile"
    return "volatile-volatile"


def volatile_assets(symbols: Iterable[str]) -> List[str]:
    """
    Unique non-stablecoin symbols, in first-seen order.

    Pair labels are expanded, so ``["WBNB-USDT", "CAKE"]`` yields
    ``["WBNB", "CAKE"]``.
    """
    seen: List[str] = []
    for entry in symbols:
        for symbol in split_pair(entry):
            if not is_stablecoin(symbol) and symbol not in seen:
                seen.append(symbol)
    return seen


def asset_class(symbol: str) -> str:
    """
    Coarse asset class for lending rate models.

    Examples:
        >>> asset_class("USDT")
        'stablecoin'
        >>> asset_class("wbnb")
        'major'
        >>> asset_class("CAKE")
        'volatile'
    """
    if is_stablecoin(symbol):
        return "stablecoin"
    if symbol.strip().upper() in MAJOR_ASSETS:
        return "major"
    return "volatile"
