from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# .env sits next to the package root
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"

    # Exchange endpoints
    binance_rest_url: str = "https://api.binance.com"
    binance_ws_url: str = "wss://stream.binance.com:9443/ws"
    price_stream_channel: str = "trade"  # "trade" | "ticker"
    request_timeout_seconds: float = 10.0

    # Order-book relay (subscribe/unsubscribe socket)
    orderbook_ws_url: str = "ws://localhost:3002/orderbook"

    # Initial selection
    default_symbol: str = "BTC/USDT"
    default_interval: str = "1m"

    # Price feed
    price_fallback_seconds: float = 3.0  # REST fallback if the push stream is silent
    price_throttle_ms: int = 500  # 0 disables throttling

    # Candles
    candle_history_limit: int = 500
    sma_period: int = 20
    ema_period: int = 20
    bar_intervals: str = "1m,5m,15m,1h,4h,1d,1w"

    # Reconnect window for push streams
    reconnect_min_delay: float = 1.0
    reconnect_max_delay: float = 5.0

    # Display fallbacks when exchange metadata is unavailable
    default_price_decimals: int = 2
    default_amount_decimals: int = 6

    def get_bar_intervals(self) -> list[str]:
        """Parse bar intervals."""
        return [i.strip() for i in self.bar_intervals.split(",") if i.strip()]

    def get_price_stream_channel(self) -> str:
        """Return the push channel, defaulting to trade ticks on bad input."""
        channel = self.price_stream_channel.strip().lower()
        if channel not in ("trade", "ticker"):
            return "trade"
        return channel


def get_settings() -> Settings:
    return Settings()
