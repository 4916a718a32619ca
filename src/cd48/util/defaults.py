# -*- coding: utf-8 -*-

DEFAULT_LOGLEVEL = "INFO"
TEST_LOGLEVEL = "TRACE"
SINGLE_LINE_ERR_LOG = False  # reformat tracebacks into a single line for err comms
LOG_ROTATION = "10 MB"  # start a new file once the current one reaches this
LOG_RETENTION = 5  # rotated files kept next to the active one

# ---------------------------------------------------------------------------
# Device communication
# ---------------------------------------------------------------------------

BAUD_RATE = 115200
COMMAND_DELAY = 0.05  # seconds, settle after each write
COMMAND_TIMEOUT = 1.0  # seconds, per-command response budget
CONNECTION_INIT_DELAY = 0.5  # seconds, firmware boot after opening the port
RECONNECT_ATTEMPTS = 3
RECONNECT_DELAY = 1.0  # seconds, multiplied by the attempt number
DEFAULT_COMMAND_RETRIES = 0
DEFAULT_RETRY_DELAY = 0.1  # seconds
READ_CHUNK_SIZE = 256  # bytes per read call

COMMAND_TERMINATOR = "\r"
RESPONSE_TERMINATORS = (b"\r", b"\n")

# ---------------------------------------------------------------------------
# Hardware
# ---------------------------------------------------------------------------

USB_VENDOR_ID = 0x04B4  # Cypress Semiconductor
EXPECTED_CHANNEL_COUNT = 8
EXPECTED_COUNT_RESPONSE_LENGTH = 9  # 8 channels + overflow flag
MIN_FIRMWARE_MAJOR = 1
MIN_FIRMWARE_MINOR = 0
MIN_FIRMWARE_PATCH = 0
MIN_FIRMWARE_VERSION = f"{MIN_FIRMWARE_MAJOR}.{MIN_FIRMWARE_MINOR}.{MIN_FIRMWARE_PATCH}"

# ---------------------------------------------------------------------------
# Measurement
# ---------------------------------------------------------------------------

COINCIDENCE_WINDOW = 25e-9  # seconds
ACCIDENTAL_RATE_MULTIPLIER = 2
DEFAULT_SINGLES_A_CHANNEL = 0
DEFAULT_SINGLES_B_CHANNEL = 1
DEFAULT_COINCIDENCE_CHANNEL = 4
DEFAULT_MEASUREMENT_DURATION = 1.0  # seconds
PERCENT_CONVERSION = 100
