"""SDCP protocol constants."""

import os
from logging import Logger, getLogger

DEBUG = os.environ.get("DEBUG", "false").lower() == "true"
LOGGER: Logger = getLogger(__package__)

# Information Commands
CMD_REQUEST_STATUS_REFRESH = 0
CMD_REQUEST_ATTRIBUTES = 1

# Connection Commands
CMD_DISCONNECT = 64

# Print Control Commands
CMD_START_PRINT = 128
CMD_PAUSE_PRINT = 129
CMD_STOP_PRINT = 130
CMD_CONTINUE_PRINT = 131

# File Transfer Commands
CMD_TERMINATE_FILE_TRANSFER = 255
CMD_UPLOAD_FILE = 256

# Auto-Push Commands
CMD_SET_STATUS_UPDATE_PERIOD = 512

# Legacy Saturn print sub-status codes (PrintInfo.Status)
PRINT_STATUS_EXPOSURE = 2
PRINT_STATUS_RETRACTING = 3
PRINT_STATUS_LOWERING = 4
PRINT_STATUS_COMPLETE = 16

# Connection ids shorter than this are mainboard ids, not session uuids
CONNECTION_ID_MIN_LENGTH = 17
