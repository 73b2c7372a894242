"""Water meter telegram decoding and CoAP handlers."""

from .telegram import (
    DecodeErrorKind,
    MagicMismatchError,
    MalformedListError,
    MeterReading,
    MinimumSizeError,
    ReadingAnomaly,
    RegularTelegram,
    ReservedTelegram,
    SentinelMissingError,
    SizeMismatchError,
    TelegramDecodeError,
    TelegramDecoder,
    TelegramHeader,
    TelegramVariant,
    UnsupportedTelegramTypeError,
    accumulate_deltas,
    decode_telegram,
    default_variants,
    format_reading,
)
from .handlers import IngestionHandler, LivenessHandler

__all__ = [
    "DecodeErrorKind",
    "MagicMismatchError",
    "MalformedListError",
    "MeterReading",
    "MinimumSizeError",
    "ReadingAnomaly",
    "RegularTelegram",
    "ReservedTelegram",
    "SentinelMissingError",
    "SizeMismatchError",
    "TelegramDecodeError",
    "TelegramDecoder",
    "TelegramHeader",
    "TelegramVariant",
    "UnsupportedTelegramTypeError",
    "accumulate_deltas",
    "decode_telegram",
    "default_variants",
    "format_reading",
    "IngestionHandler",
    "LivenessHandler",
]
