"""Core application configuration & tunable orchestration rules.

All policy knobs that may evolve (rate limits, retry counts, payment windows,
retention, job cadences) are centralized here so they can be adjusted without
diving into service logic. Values are read once from environment variables and
kept as module constants (mutable dicts allowed so tests can monkeypatch).

Durations are expressed in seconds.
"""
from __future__ import annotations

import os
from decimal import Decimal


def _env_bool(name: str, default: str = "false") -> bool:
	return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

# ------------------------------- Bot identity ----------------------------- #
BOT_SETTINGS: dict[str, str | bool | int] = {
	"bot_name": os.getenv("BOT_NAME", "MusiXBot"),
	"dry_run": _env_bool("DRY_RUN"),
	"command": "/music",
	"generation_duration_seconds": int(os.getenv("GENERATION_DURATION_SECONDS", "30")),
}

# ------------------------------- Rate Limits ------------------------------ #
RATE_LIMIT_SETTINGS: dict[str, int] = {
	"max_requests_per_hour": int(os.getenv("MAX_REQUESTS_PER_HOUR", "10")),
	"window_seconds": 3600,
}

# -------------------------------- Task Queue ------------------------------ #
# Fixed delay between attempts of the head task (no backoff).
TASK_QUEUE_SETTINGS: dict[str, int | float] = {
	"max_retries": int(os.getenv("TASK_MAX_RETRIES", "3")),
	"retry_delay_seconds": float(os.getenv("TASK_RETRY_DELAY_SECONDS", "5")),
}

# ------------------------------- Retry Policy ----------------------------- #
# Defaults for RetryEngine when callers do not pass explicit options.
RETRY_POLICY: dict[str, int | float | bool] = {
	"max_attempts": 3,
	"delay_seconds": 1.0,
	"backoff": True,
	"max_seconds": 0,     # 0 disables the cap
	"jitter_pct": 0.0,
	# Mention / reply handling in the bot
	"social_max_attempts": 3,
	"social_delay_seconds": 2.0,
}

# --------------------------------- Payments ------------------------------- #
PAYMENT_SETTINGS: dict[str, object] = {
	"amount_usd": Decimal(os.getenv("PAYMENT_AMOUNT_USD", "10")),
	"max_verification_seconds": float(os.getenv("PAYMENT_MAX_VERIFICATION_SECONDS", "1800")),  # 30 minutes
	"max_attempts": int(os.getenv("PAYMENT_MAX_ATTEMPTS", "3")),
	"amount_tolerance_pct": 0.05,  # absorbs price drift between request and payment
	"wallet_addresses": {
		"btc": os.getenv("BTC_WALLET", ""),
		"eth": os.getenv("ETH_WALLET", ""),
		"sol": os.getenv("SOL_WALLET", ""),
		"usdt": os.getenv("USDT_WALLET", ""),
	},
}

# ------------------------------ Request Store ----------------------------- #
STORAGE_SETTINGS: dict[str, float] = {
	"staleness_seconds": float(os.getenv("REQUEST_STALENESS_SECONDS", "3600")),      # 1 hour
	"retention_seconds": float(os.getenv("REQUEST_RETENTION_SECONDS", "172800")),    # 2 days
}

# -------------------------------- Checkpoints ----------------------------- #
CHECKPOINT_SETTINGS: dict[str, str | float | bool] = {
	"key": "system_checkpoint",
	"interval_seconds": float(os.getenv("CHECKPOINT_INTERVAL_SECONDS", "300")),
	"use_redis": _env_bool("USE_REDIS"),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_key_prefix": "musixbot:",
}

# ----------------------------- Scheduled Jobs ----------------------------- #
SCHEDULER_JOBS: dict[str, float] = {
	"storage-cleanup": 60 * 60,
	"payment-check": 5 * 60,
	"request-expiry": 15 * 60,
	"health-check": 5 * 60,
}

# --------------------------------- Chains --------------------------------- #
CHAIN_SETTINGS: dict[str, str | float] = {
	"eth_rpc_url": os.getenv("ETH_RPC_URL", ""),
	# Static price oracle for USD -> ETH conversion.
	"eth_price_usd": float(os.getenv("ETH_PRICE_USD", "2000")),
	"rpc_timeout_seconds": float(os.getenv("ETH_RPC_TIMEOUT", "10")),
}

# ------------------------------ Music provider ---------------------------- #
MUSIC_SETTINGS: dict[str, str | float] = {
	"api_url": os.getenv("MUSIC_API_URL", ""),
	"api_key": os.getenv("MUSIC_API_KEY", ""),
	"timeout_seconds": float(os.getenv("MUSIC_API_TIMEOUT", "120")),
}

__all__ = [
	"ENVIRONMENT",
	"BOT_SETTINGS",
	"RATE_LIMIT_SETTINGS",
	"TASK_QUEUE_SETTINGS",
	"RETRY_POLICY",
	"PAYMENT_SETTINGS",
	"STORAGE_SETTINGS",
	"CHECKPOINT_SETTINGS",
	"SCHEDULER_JOBS",
	"CHAIN_SETTINGS",
	"MUSIC_SETTINGS",
]
