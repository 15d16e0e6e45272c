"""Constants for TFIAC air conditioner integration.

This module contains all the constants used throughout the integration,
including protocol tag names, configuration keys, and default tunables.
"""

DOMAIN = "tfiac"

DEFAULT_NAME = "TFIAC Air Conditioner"
DEFAULT_PORT = 7777

DEFAULT_UPDATE_INTERVAL = 30  # Seconds between regular polls (cache TTL)
DEFAULT_DEGRADED_UPDATE_INTERVAL = 120  # Poll interval for an unresponsive device
DEFAULT_MAX_CONSECUTIVE_FAILED_POLLS = 3
DEFAULT_QUICK_REFRESH_DELAY = 2.0  # Seconds to wait before re-polling after a command
DEFAULT_TIMEOUT = 5.0  # Seconds to wait for a correlated datagram
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_COMMAND_MAX_RETRIES = 3
DEFAULT_COMMAND_RETRY_DELAY = 1.0
DEFAULT_PROTECTION_WINDOW = 5.0  # Seconds a contradicting device report is distrusted
DEFAULT_UI_HOLD_SECONDS = 10.0
DEFAULT_DEBOUNCE_DELAY = 0.5

MIN_TARGET_TEMPERATURE = 16
MAX_TARGET_TEMPERATURE = 30
DEFAULT_TARGET_TEMPERATURE = 22

CONF_TEMPERATURE_UNIT = "temperature_unit"
CONF_UPDATE_INTERVAL = "update_interval"
CONF_DEGRADED_UPDATE_INTERVAL = "degraded_update_interval"
CONF_MAX_CONSECUTIVE_FAILED_POLLS = "max_consecutive_failed_polls"
CONF_QUICK_REFRESH_DELAY = "quick_refresh_delay"
CONF_TIMEOUT = "timeout"
CONF_RETRIES = "retries"
CONF_RETRY_DELAY = "retry_delay"
CONF_COMMAND_MAX_RETRIES = "command_max_retries"
CONF_COMMAND_RETRY_DELAY = "command_retry_delay"
CONF_PROTECTION_WINDOW = "protection_window"
CONF_UI_HOLD_SECONDS = "ui_hold_seconds"
CONF_DEBOUNCE_DELAY = "debounce_delay"
CONF_AUTO_FAN_STAND_IN = "auto_fan_stand_in"
CONF_ENABLE_SLEEP = "enable_sleep"
CONF_ENABLE_TURBO = "enable_turbo"
CONF_ENABLE_ECO = "enable_eco"
CONF_ENABLE_DISPLAY = "enable_display"
CONF_ENABLE_BEEP = "enable_beep"
CONF_ENABLE_SWING = "enable_swing"

# Stored in config entry data to disable the Auto fan stand-in policy
AUTO_FAN_KEEP = "keep"

ERROR_CANNOT_CONNECT = "cannot_connect"
ERROR_TIMEOUT = "timeout_error"
ERROR_INVALID_RESPONSE = "invalid_response"
ERROR_UNKNOWN = "unknown_error"

# Message ids
MSG_STATUS_REQUEST = "SyncStatusReq"
MSG_STATUS_UPDATE = "statusUpdateMsg"
MSG_SET = "SetMessage"
MSG_SET_ACK = "ACKSetMessage"

# Wire field tags (spelling is part of the device contract)
TAG_SET_TEMP = "SetTemp"
TAG_INDOOR_TEMP = "IndoorTemp"
TAG_OUTDOOR_TEMP = "OutdoorTemp"
TAG_BASE_MODE = "BaseMode"
TAG_WIND_SPEED = "WindSpeed"
TAG_TURN_ON = "TurnOn"
TAG_WIND_DIRECTION_H = "WindDirection_H"
TAG_WIND_DIRECTION_V = "WindDirection_V"
TAG_OPT_SUPER = "Opt_super"
TAG_OPT_SLEEP_MODE = "Opt_sleepMode"
TAG_OPT_ECO = "Opt_eco"
TAG_OPT_ECO_LEGACY = "Opt_ECO"
TAG_OPT_DISPLAY = "Opt_display"
TAG_OPT_BEEP = "Opt_beep"
TAG_RETURN = "Return"

REQUIRED_STATUS_TAGS = (
    TAG_TURN_ON,
    TAG_BASE_MODE,
    TAG_SET_TEMP,
    TAG_WIND_SPEED,
    TAG_INDOOR_TEMP,
)

ACK_OK = "ok"

# Default sleep profile sent when sleep is switched on
SLEEP_PROFILE_ON = "sleepMode1:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0:0"
SLEEP_PROFILE_PREFIX = "sleepMode"

# Queue event names
EVENT_QUEUED = "queued"
EVENT_EXECUTING = "executing"
EVENT_EXECUTED = "executed"
EVENT_ERROR = "error"
EVENT_RETRY = "retry"
EVENT_MAX_RETRIES_REACHED = "maxRetriesReached"
EVENT_QUEUE_EMPTY = "queueEmpty"
EVENT_QUEUE_CLEARED = "queueCleared"
