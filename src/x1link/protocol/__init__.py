"""X1 wire protocol implementation."""

from .commands import (
    BRIDGE_SERVICE_UUID,
    SERIAL_DATA_UUID,
    CommandCode,
    build_command,
    trigger_time_to_argument,
)
from .framing import (
    SerialFrameDecoder,
    decode_ble_notification,
    encode_ble_command,
    encode_serial_command,
)
from .ota import (
    OTA_MAX_UNACKNOWLEDGED_WRITES,
    OtaOpcode,
    OtaProgress,
    build_chunk_message,
    build_finish_message,
    build_init_message,
    ota_chunk_size,
    parse_progress_notification,
)
from .signing import (
    der_to_p1363,
    load_private_key,
    p1363_to_der,
    parse_signing_key,
    sign_image,
    validate_image,
    verify_image,
)

__all__ = [
    "CommandCode",
    "BRIDGE_SERVICE_UUID",
    "SERIAL_DATA_UUID",
    "build_command",
    "trigger_time_to_argument",
    "SerialFrameDecoder",
    "decode_ble_notification",
    "encode_ble_command",
    "encode_serial_command",
    "OTA_MAX_UNACKNOWLEDGED_WRITES",
    "OtaOpcode",
    "OtaProgress",
    "build_chunk_message",
    "build_finish_message",
    "build_init_message",
    "ota_chunk_size",
    "parse_progress_notification",
    "der_to_p1363",
    "load_private_key",
    "p1363_to_der",
    "parse_signing_key",
    "sign_image",
    "validate_image",
    "verify_image",
]
