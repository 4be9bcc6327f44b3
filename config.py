import os
import sys

# ====================================================================================
# ENVIRONMENT CONFIGURATION: PROD / STAGE / LOCAL isolation via prefixes
# ====================================================================================
# All environment variables are read with the environment prefix:
#   - PROD: PROD_DATABASE_URL, PROD_ENABLED_GATEWAYS, PROD_CRYPTOBOT_TOKEN
#   - STAGE: STAGE_DATABASE_URL, STAGE_ENABLED_GATEWAYS, ...
#   - LOCAL: LOCAL_DATABASE_URL, ...
#
# A STAGE process never picks up PROD_* values, even if both are set.
# Values are read once at import and are immutable for the process lifetime.
# ====================================================================================

APP_ENV = os.getenv("APP_ENV", "prod").lower()
if APP_ENV not in ("prod", "stage", "local"):
    print(f"ERROR: Invalid APP_ENV={APP_ENV}. Must be one of: prod, stage, local", file=sys.stderr)
    sys.exit(1)

IS_LOCAL = APP_ENV == "local"
IS_STAGE = APP_ENV == "stage"
IS_PROD = APP_ENV == "prod"


def env(key: str, default: str = "") -> str:
    """
    Read an environment variable with the environment prefix.

    Args:
        key: Variable name without prefix (e.g. "DATABASE_URL")
        default: Value returned when the variable is not set

    Returns:
        Value of the prefixed variable (e.g. "STAGE_DATABASE_URL")

    Example:
        env("DATABASE_URL") -> value of PROD_DATABASE_URL (APP_ENV=prod)
        env("GATEWAY_TIMEOUT", default="15") -> "15" if unset
    """
    env_key = f"{APP_ENV.upper()}_{key}"
    return os.getenv(env_key, default)


def _env_list(key: str, default: str = "") -> list:
    raw = env(key, default=default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


# Unprefixed variables are ignored; warn so a misconfigured deploy is visible
_direct_usage_vars = ["DATABASE_URL", "CRYPTOBOT_TOKEN", "ENABLED_GATEWAYS"]
for var in _direct_usage_vars:
    if os.getenv(var):
        print(f"WARNING: Unprefixed {var} is ignored, use {APP_ENV.upper()}_{var}", file=sys.stderr)

print(f"INFO: Config loaded for environment: {APP_ENV.upper()}", flush=True)

# ====================================================================================
# DATABASE
# ====================================================================================
# Required for every operation; checked lazily by database.get_pool() so the
# service modules stay importable without a database (tests, tooling).
DATABASE_URL = env("DATABASE_URL")

# ====================================================================================
# GATEWAYS
# ====================================================================================
# Ordered list of driver ids enabled for this process. Order is preserved in
# the gateway selection list shown to payers.
ENABLED_GATEWAYS = _env_list("ENABLED_GATEWAYS", default="cryptobot")

# Upper bound (seconds) for a single driver call: buy, subscribe, process, card tokenization
GATEWAY_TIMEOUT = float(env("GATEWAY_TIMEOUT", default="15.0"))

# Crypto Pay (Telegram CryptoBot) wallet driver
CRYPTOBOT_TOKEN = env("CRYPTOBOT_TOKEN")
CRYPTOBOT_API_URL = env("CRYPTOBOT_API_URL") or "https://pay.crypt.bot/api"
CRYPTOBOT_FIAT = env("CRYPTOBOT_FIAT", default="USD").upper()
CRYPTOBOT_ASSETS_STR = env("CRYPTOBOT_ASSETS", default="USDT,TON,BTC")
CRYPTOBOT_ALLOWED_ASSETS = [a.strip().upper() for a in CRYPTOBOT_ASSETS_STR.split(",") if a.strip()]

if "cryptobot" in ENABLED_GATEWAYS and not CRYPTOBOT_TOKEN:
    print(f"WARNING: {APP_ENV.upper()}_CRYPTOBOT_TOKEN is not set - cryptobot gateway will be disabled", file=sys.stderr)

# ====================================================================================
# PRICING
# ====================================================================================
# Maximum subscription price a seller can set, in major currency units
PRICING_CAP_SUBSCRIPTION = int(env("PRICING_CAP_SUBSCRIPTION", default="100"))

# Maximum bundle discount, percent
PRICING_CAP_DISCOUNT = int(env("PRICING_CAP_DISCOUNT", default="50"))

# Bundle term bounds, months
BUNDLE_MIN_MONTHS = 2
BUNDLE_MAX_MONTHS = 12

# ====================================================================================
# LOGGING
# ====================================================================================
LOG_LEVEL = env("LOG_LEVEL", default="INFO").upper()
