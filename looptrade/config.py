"""LoopTrade — application configuration.

Loads .env variables into a typed config object.
Validates ranges on load; live-mode credentials are checked by the engine
when it is started in live mode.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from looptrade.errors import ConfigurationError


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    trade_pair: str = "SOLFDUSD"
    base_asset: str = "SOL"
    quote_asset: str = "FDUSD"
    initial_capital: float = 10.0
    profit_target_pct: float = 5.0
    buy_back_dip_pct: float = 4.0
    max_trade_size: float = 100.0
    daily_loss_limit_pct: float = 10.0
    tick_interval_seconds: float = 10.0
    opening_price: float = 100.0
    opening_discount_pct: float = 2.0
    buy_allocation_pct: float = 95.0
    binance_api_key: str = ""
    binance_api_secret: str = ""
    binance_base_url: str = "https://api.binance.com"
    log_level: str = "INFO"
    api_port: int = 8080

    def __post_init__(self) -> None:
        validate_config(self)

    @property
    def has_credentials(self) -> bool:
        """``True`` when both Binance API key and secret are set."""
        return bool(self.binance_api_key and self.binance_api_secret)


def validate_config(config: Config) -> None:
    """Raise ``ConfigurationError`` naming every out-of-range setting."""
    problems: list[str] = []
    for name in (
        "initial_capital",
        "profit_target_pct",
        "buy_back_dip_pct",
        "max_trade_size",
        "daily_loss_limit_pct",
        "opening_discount_pct",
        "buy_allocation_pct",
    ):
        if getattr(config, name) < 0:
            problems.append(f"{name} must be non-negative")
    if config.tick_interval_seconds <= 0:
        problems.append("tick_interval_seconds must be positive")
    if config.opening_price <= 0:
        problems.append("opening_price must be positive")
    if config.buy_allocation_pct > 100:
        problems.append("buy_allocation_pct must not exceed 100")
    if config.buy_back_dip_pct >= 100:
        problems.append("buy_back_dip_pct must be below 100")
    if config.opening_discount_pct >= 100:
        problems.append("opening_discount_pct must be below 100")
    if not config.trade_pair:
        problems.append("trade_pair must not be empty")
    if problems:
        raise ConfigurationError(f"Invalid configuration: {'; '.join(problems)}")


def _env_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {name} must be a number, got {raw!r}"
        ) from None


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ConfigurationError`` when a variable cannot be parsed or a value
    is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    return Config(
        trade_pair=os.environ.get("TRADE_PAIR", "SOLFDUSD"),
        base_asset=os.environ.get("BASE_ASSET", "SOL"),
        quote_asset=os.environ.get("QUOTE_ASSET", "FDUSD"),
        initial_capital=_env_float("INITIAL_CAPITAL", "10.0"),
        profit_target_pct=_env_float("PROFIT_TARGET_PCT", "5.0"),
        buy_back_dip_pct=_env_float("BUY_BACK_DIP_PCT", "4.0"),
        max_trade_size=_env_float("MAX_TRADE_SIZE", "100.0"),
        daily_loss_limit_pct=_env_float("DAILY_LOSS_LIMIT_PCT", "10.0"),
        tick_interval_seconds=_env_float("TICK_INTERVAL_SECONDS", "10"),
        opening_price=_env_float("OPENING_PRICE", "100.0"),
        opening_discount_pct=_env_float("OPENING_DISCOUNT_PCT", "2.0"),
        buy_allocation_pct=_env_float("BUY_ALLOCATION_PCT", "95.0"),
        binance_api_key=os.environ.get("BINANCE_API_KEY", ""),
        binance_api_secret=os.environ.get("BINANCE_API_SECRET", ""),
        binance_base_url=os.environ.get("BINANCE_BASE_URL", "https://api.binance.com"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(_env_float("API_PORT", "8080")),
    )
