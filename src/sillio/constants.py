"""Compile-time constants for the sillio package.

These are values baked into code that change only on code updates,
NOT between environments. For runtime settings, see config.py.
"""

# ──────────────────────────────────────────────────────────────────────
# Health Check
# ──────────────────────────────────────────────────────────────────────
HEALTH_CHECK_INTERVAL = 5 * 60.0        # seconds between watchdog ticks
HEALTH_CHECK_TIMEOUT = 2 * 60.0         # probe considered lost after this
HEALTH_CHECK_COOLDOWN = 30 * 60.0       # min spacing between probes
HEALTH_CHECK_GRACE = 5.0                # let the alert reach the bridge
HEALTH_CHECK_PREFIX = "sillio-health-check"

# ──────────────────────────────────────────────────────────────────────
# Webhook
# ──────────────────────────────────────────────────────────────────────
WEBHOOK_TIMEOUT = 30.0
MMS_FETCH_TIMEOUT = 60.0
DEFAULT_USER_AGENT = "sillio/0.1"

# ──────────────────────────────────────────────────────────────────────
# Message Bus
# ──────────────────────────────────────────────────────────────────────
INBOUND_QUEUE_SIZE = 100
LOG_QUEUE_SIZE = 100

# ──────────────────────────────────────────────────────────────────────
# Modem (mmcli)
# ──────────────────────────────────────────────────────────────────────
MMCLI_PATH = "mmcli"
MMCLI_POLL_INTERVAL = 2.0
MMCLI_COMMAND_TIMEOUT = 30.0

# ──────────────────────────────────────────────────────────────────────
# Local Cache
# ──────────────────────────────────────────────────────────────────────
DEFAULT_CACHE_DIR = "~/.cache/sillio"
CACHE_SMS_PREFIX = "sms"
CACHE_MMS_PREFIX = "mms"

# ──────────────────────────────────────────────────────────────────────
# Chat Bridge
# ──────────────────────────────────────────────────────────────────────
BLANK_ATTACHMENT_NAME = "_blank_"
BRIDGE_MAX_COMMAND_AGE = 60 * 60.0      # ignore commands older than an hour
DEFAULT_PHONE_REGION = "US"

# ──────────────────────────────────────────────────────────────────────
# Config
# ──────────────────────────────────────────────────────────────────────
CONFIG_FILENAME = "configs/config.json"
CONFIG_ENV_VAR = "SILLIO_CONFIG"
DEFAULT_LOG_LEVEL = "INFO"
