"""
Water meter telegram structure and decoding.

Regular telegram (type 1), little-endian, offsets from buffer start:
- 0-1:   telegram type
- 2:     magic constant 0x40
- 3-4:   encoded total size
- 5-8:   device id
- 9-12:  current timestamp (POSIX seconds)
- 14-17: total volume (litres)
- 26-29: last month reference timestamp
- 30-33: last month reference volume (litres)
- 34-37: flow rate (litres / hour)
- 38-41: water temperature (raw, 1/100 C)
- 44-47: oldest reference timestamp
- 48-51: oldest reference volume (litres)
- 52..:  uint16 delta volumes terminated by 0xAAAA
- 146-147: end of meter data token 0xAAAA
- size-3: battery level (percent)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


TELEGRAM_TYPE_REGULAR = 1
TELEGRAM_TYPE_RESERVED = 2
MAGIC_CONSTANT = 0x40
END_OF_METER_DATA = 0xAAAA
MIN_TELEGRAM_SIZE = 160

MAGIC_OFFSET = 2
SIZE_OFFSET = 3
DEVICE_ID_OFFSET = 5
END_OF_METER_DATA_OFFSET = 146
DELTA_LIST_OFFSET = 52
BATTERY_FROM_END = 3

MAX_BATTERY_LEVEL = 100


class DecodeErrorKind(Enum):
    MINIMUM_SIZE = "minimum_size"
    MAGIC_MISMATCH = "magic_mismatch"
    SIZE_MISMATCH = "size_mismatch"
    SENTINEL_MISSING = "sentinel_missing"
    MALFORMED_LIST = "malformed_list"
    UNSUPPORTED_TYPE = "unsupported_type"


class TelegramDecodeError(Exception):
    """A telegram that could not be decoded into a reading."""

    kind: DecodeErrorKind

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context: Dict[str, Any] = context


class MinimumSizeError(TelegramDecodeError):
    kind = DecodeErrorKind.MINIMUM_SIZE


class MagicMismatchError(TelegramDecodeError):
    kind = DecodeErrorKind.MAGIC_MISMATCH


class SizeMismatchError(TelegramDecodeError):
    kind = DecodeErrorKind.SIZE_MISMATCH


class SentinelMissingError(TelegramDecodeError):
    kind = DecodeErrorKind.SENTINEL_MISSING


class MalformedListError(TelegramDecodeError):
    kind = DecodeErrorKind.MALFORMED_LIST


class UnsupportedTelegramTypeError(TelegramDecodeError):
    kind = DecodeErrorKind.UNSUPPORTED_TYPE


class ReadingAnomaly(Enum):
    INVALID_BATTERY_LEVEL = "invalid_battery_level"


def read_uint16(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 2], 'little')


def read_uint32(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset:offset + 4], 'little')


def from_posix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


@dataclass(frozen=True)
class TelegramHeader:
    telegram_type: int
    magic: int
    encoded_size: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "TelegramHeader":
        return cls(
            telegram_type=read_uint16(data, 0),
            magic=data[MAGIC_OFFSET],
            encoded_size=read_uint16(data, SIZE_OFFSET),
        )


@dataclass
class MeterReading:
    """Metering fields extracted from a regular telegram."""

    device_id: str
    timestamp: datetime
    total_volume: int
    last_month_timestamp: datetime
    last_month_volume: int
    flow_rate: int
    water_temperature_raw: int
    water_temperature: float
    oldest_timestamp: datetime
    oldest_volume: int
    accumulated_delta_volume: int
    battery_level: int
    anomalies: List[ReadingAnomaly] = field(default_factory=list)

    @property
    def battery_level_valid(self) -> bool:
        return ReadingAnomaly.INVALID_BATTERY_LEVEL not in self.anomalies

    def __repr__(self) -> str:
        status = "✓" if not self.anomalies else "!"
        return (
            f"MeterReading[{status}](id={self.device_id}, volume={self.total_volume}l, "
            f"flow={self.flow_rate}l/h, temp={self.water_temperature:.1f}C, "
            f"battery={self.battery_level}%)"
        )


def accumulate_deltas(data: bytes, offset: int = DELTA_LIST_OFFSET) -> int:
    """
    Sum uint16 delta volumes from offset up to the 0xAAAA terminator.

    The sum is a 16-bit accumulator and wraps like the device counter.

    Raises:
        MalformedListError: buffer exhausted before the terminator
    """
    total = 0
    index = offset
    while index + 2 <= len(data):
        delta = read_uint16(data, index)
        if delta == END_OF_METER_DATA:
            return total
        total = (total + delta) & 0xFFFF
        index += 2

    raise MalformedListError(
        f"delta list starting at {offset} has no end token before byte {len(data)}",
        offset=offset,
        size=len(data),
    )


class TelegramVariant:
    """Decoding strategy for one telegram type."""

    telegram_type: int = 0
    name: str = "unknown"

    def decode(self, data: bytes, header: TelegramHeader) -> MeterReading:
        raise NotImplementedError


class RegularTelegram(TelegramVariant):
    """Type 1: the periodic meter data telegram."""

    telegram_type = TELEGRAM_TYPE_REGULAR
    name = "regular"

    def __init__(self, temperature_divisor: float = 100.0):
        self.temperature_divisor = temperature_divisor

    def decode(self, data: bytes, header: TelegramHeader) -> MeterReading:
        size = len(data)

        if header.magic != MAGIC_CONSTANT:
            raise MagicMismatchError(
                f"expected byte {MAGIC_OFFSET} to be 0x{MAGIC_CONSTANT:02X}, got 0x{header.magic:02X}",
                magic=header.magic,
            )

        if header.encoded_size != size:
            raise SizeMismatchError(
                f"encoded telegram size {header.encoded_size} != payload size {size}",
                encoded_size=header.encoded_size,
                size=size,
            )

        device_id = f"{read_uint32(data, DEVICE_ID_OFFSET):08x}"

        if read_uint16(data, END_OF_METER_DATA_OFFSET) != END_OF_METER_DATA:
            raise SentinelMissingError(
                "end of meter data token not found in expected position",
                offset=END_OF_METER_DATA_OFFSET,
                device_id=device_id,
            )

        water_temperature_raw = read_uint32(data, 38)

        reading = MeterReading(
            device_id=device_id,
            timestamp=from_posix(read_uint32(data, 9)),
            total_volume=read_uint32(data, 14),
            last_month_timestamp=from_posix(read_uint32(data, 26)),
            last_month_volume=read_uint32(data, 30),
            flow_rate=read_uint32(data, 34),
            water_temperature_raw=water_temperature_raw,
            water_temperature=water_temperature_raw / self.temperature_divisor,
            oldest_timestamp=from_posix(read_uint32(data, 44)),
            oldest_volume=read_uint32(data, 48),
            accumulated_delta_volume=accumulate_deltas(data, DELTA_LIST_OFFSET),
            battery_level=data[header.encoded_size - BATTERY_FROM_END],
        )

        if reading.battery_level > MAX_BATTERY_LEVEL:
            reading.anomalies.append(ReadingAnomaly.INVALID_BATTERY_LEVEL)

        return reading


class ReservedTelegram(TelegramVariant):
    """Type 2: reserved by the device firmware, no layout defined yet."""

    telegram_type = TELEGRAM_TYPE_RESERVED
    name = "reserved"

    def decode(self, data: bytes, header: TelegramHeader) -> MeterReading:
        raise UnsupportedTelegramTypeError(
            f"telegram type {header.telegram_type} is not supported",
            telegram_type=header.telegram_type,
        )


class TelegramDecoder:
    """
    Dispatches telegrams to the variant registered for their type.

    Holds no per-telegram state; one instance can decode concurrently.
    """

    def __init__(self, variants: Optional[List[TelegramVariant]] = None):
        self._variants: Dict[int, TelegramVariant] = {}
        for variant in variants if variants is not None else default_variants():
            self.register(variant)

    def register(self, variant: TelegramVariant) -> None:
        self._variants[variant.telegram_type] = variant

    @property
    def telegram_types(self) -> List[int]:
        return sorted(self._variants)

    def decode(self, data: bytes) -> MeterReading:
        """
        Decode a telegram.

        Raises:
            TelegramDecodeError: one of its subclasses, naming the failed check
        """
        if len(data) < MIN_TELEGRAM_SIZE:
            raise MinimumSizeError(
                f"payload size {len(data)} is too small to contain a valid packet",
                size=len(data),
                minimum=MIN_TELEGRAM_SIZE,
            )

        header = TelegramHeader.from_bytes(data)
        variant = self._variants.get(header.telegram_type)
        if variant is None:
            raise UnsupportedTelegramTypeError(
                f"unknown telegram type {header.telegram_type}",
                telegram_type=header.telegram_type,
            )

        return variant.decode(data, header)


def default_variants(temperature_divisor: float = 100.0) -> List[TelegramVariant]:
    return [RegularTelegram(temperature_divisor), ReservedTelegram()]


_default_decoder = TelegramDecoder()


def decode_telegram(data: bytes) -> MeterReading:
    """Decode a telegram with the built-in variants."""
    return _default_decoder.decode(data)


def format_reading(reading: MeterReading) -> List[str]:
    """Human readable log lines for a decoded reading."""
    lines = [
        f"id number {reading.device_id}",
        f"total volume: {reading.total_volume} litres @ {reading.timestamp.isoformat()}",
        f"last month ref volume was {reading.last_month_volume} "
        f"@ {reading.last_month_timestamp.isoformat()}",
        f"current flow rate {reading.flow_rate} litres / hour",
        f"current water temp is {reading.water_temperature:0.1f} C",
        f"oldest reference volume is {reading.oldest_volume} "
        f"from {reading.oldest_timestamp.isoformat()}",
        f"accumulated delta values: {reading.accumulated_delta_volume}",
    ]
    if reading.battery_level_valid:
        lines.append(f"battery level is {reading.battery_level}%")
    return lines
