"""Settings storage for application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from embroidery_buddy.exceptions import ConfigError


SETTINGS_PATH = Path(
    os.environ.get(
        "EMBROIDERY_BUDDY_SETTINGS_PATH",
        Path.home() / ".config" / "embroidery-buddy" / "settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_DISK_PATH = "/var/lib/embroidery-buddy/disk.img"
DEVELOPMENT_DISK_PATH = "/tmp/embroidery.img"
DEFAULT_DISK_SIZE_MB = 100
WRITER_MODES = ("direct", "mounted")
MAX_USB_ID = 0xFFFF


@dataclass(frozen=True)
class DiskSettings:
    path: str = DEFAULT_DISK_PATH
    size_mb: int = DEFAULT_DISK_SIZE_MB
    # Create the image on startup if it doesn't exist
    auto_create: bool = True
    # "direct" edits FAT structures in place, "mounted" loop-mounts the image
    writer: str = "direct"


@dataclass(frozen=True)
class UsbGadgetSettings:
    short_name: str = "embroidery"
    vendor_id: str = "0x1d6b"
    product_id: str = "0x0104"
    bcd_device: str = "0x0100"
    bcd_usb: str = "0x0200"
    product_name: str = "Embroidery USB Storage"
    manufacturer: str = "Embroidery Buddy"
    # None derives the serial number from the WiFi MAC address
    serial_number: str | None = None
    use_simulated: bool = False


@dataclass(frozen=True)
class LoggingSettings:
    debug: bool = False
    trace: bool = False
    log_dir: str | None = None


@dataclass(frozen=True)
class AppSettings:
    disk: DiskSettings = field(default_factory=DiskSettings)
    usb_gadget: UsbGadgetSettings = field(default_factory=UsbGadgetSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_settings() -> AppSettings:
    return AppSettings()


def development_settings() -> AppSettings:
    """Defaults for running without a config file: temp image, simulated gadget."""
    settings = default_settings()
    return replace(
        settings,
        disk=replace(settings.disk, path=DEVELOPMENT_DISK_PATH),
        usb_gadget=replace(settings.usb_gadget, use_simulated=True),
    )


def parse_hex(value: str | int, key: str | None = None) -> int:
    """Parse a USB identifier such as "0x1d6b" into a 16-bit integer.

    Raises:
        ConfigError: If the value is not hexadecimal or exceeds 16 bits
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid hex value {value!r}", key=key)
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip().lower()
        if not text.startswith("0x"):
            raise ConfigError(f"Invalid hex value {value!r}: missing 0x prefix", key=key)
        try:
            number = int(text[2:], 16)
        except ValueError as error:
            raise ConfigError(f"Invalid hex value {value!r}", key=key) from error
    if not 0 <= number <= MAX_USB_ID:
        raise ConfigError(f"Hex value {value!r} does not fit in 16 bits", key=key)
    return number


def _merge_section(section_cls, defaults, data: Any, name: str):
    if data is None:
        return defaults
    if not isinstance(data, dict):
        raise ConfigError(f"Section {name!r} must be an object", key=name)
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(
            f"Unknown keys in section {name!r}: {', '.join(unknown)}", key=name
        )
    return replace(defaults, **data)


def validate_settings(settings: AppSettings) -> AppSettings:
    if settings.disk.writer not in WRITER_MODES:
        raise ConfigError(
            f"Unknown writer {settings.disk.writer!r}, expected one of {WRITER_MODES}",
            key="disk.writer",
        )
    if int(settings.disk.size_mb) <= 0:
        raise ConfigError("Disk size must be positive", key="disk.size_mb")
    if not settings.usb_gadget.short_name:
        raise ConfigError("Gadget short name must not be empty", key="usb_gadget.short_name")
    gadget = settings.usb_gadget
    for key in ("vendor_id", "product_id", "bcd_device", "bcd_usb"):
        parse_hex(getattr(gadget, key), key=f"usb_gadget.{key}")
    return settings


def load_settings(path: Path | str | None = None) -> AppSettings:
    """Load settings from a JSON file, overlaying the values onto the defaults.

    A missing file yields the default settings.
    """
    path = Path(path) if path is not None else SETTINGS_PATH
    defaults = default_settings()
    if not path.exists():
        return defaults
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f"Failed to read config file {path}: {error}") from error
    except json.JSONDecodeError as error:
        raise ConfigError(f"Failed to parse config file {path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    settings = AppSettings(
        disk=_merge_section(DiskSettings, defaults.disk, data.get("disk"), "disk"),
        usb_gadget=_merge_section(
            UsbGadgetSettings, defaults.usb_gadget, data.get("usb_gadget"), "usb_gadget"
        ),
        logging=_merge_section(
            LoggingSettings, defaults.logging, data.get("logging"), "logging"
        ),
    )
    return validate_settings(settings)


def save_settings(settings: AppSettings, path: Path | str | None = None) -> Path:
    path = Path(path) if path is not None else SETTINGS_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(settings.to_dict(), indent=2, sort_keys=True),
        encoding="utf-8",
    )
    return path
