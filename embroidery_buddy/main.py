import argparse
import signal
import threading
from dataclasses import replace
from pathlib import Path

from embroidery_buddy.config import settings as settings_store
from embroidery_buddy.exceptions import DiskManagerError
from embroidery_buddy.hardware.gadget_factory import new_usb_gadget
from embroidery_buddy.hardware.usb_gadget import GadgetDescriptor
from embroidery_buddy.logging import LoggerFactory, setup_logging
from embroidery_buddy.storage.disk_manager import DiskManager, DiskManagerConfig
from embroidery_buddy.storage.image import create_disk_image


log = LoggerFactory.for_system()


def build_parser():
    parser = argparse.ArgumentParser(
        description="Expose a FAT disk image to an embroidery machine over USB"
    )
    parser.add_argument("--config", type=Path, help="Path to the JSON settings file")
    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Write the default settings to --config (or the default path) and exit",
    )
    parser.add_argument(
        "--create-disk",
        action="store_true",
        help="Create the disk image if missing and exit",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument(
        "--trace", action="store_true", help="Log every USB gadget attribute write"
    )
    return parser


def resolve_settings(args):
    """Settings from --config, or development defaults when none is given."""
    if args.config is None:
        settings = settings_store.development_settings()
    else:
        settings = settings_store.load_settings(args.config)
    logging_settings = replace(
        settings.logging,
        debug=settings.logging.debug or args.debug,
        trace=settings.logging.trace or args.trace,
    )
    return replace(settings, logging=logging_settings)


def ensure_disk_image(disk_settings) -> bool:
    """Create the image when it's missing. Returns True if one was created."""
    path = Path(disk_settings.path)
    if path.exists():
        return False
    create_disk_image(path, disk_settings.size_mb)
    return True


def wait_for_shutdown(stop_event=None):
    """Block until SIGINT or SIGTERM arrives."""
    stop_event = stop_event or threading.Event()

    def handle_signal(signum, _frame):
        log.info(f"Received {signal.Signals(signum).name}, shutting down")
        stop_event.set()

    previous = {
        signum: signal.signal(signum, handle_signal)
        for signum in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        while not stop_event.wait(timeout=1.0):
            pass
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def run(settings, stop_event=None):
    disk_settings = settings.disk
    if disk_settings.auto_create and ensure_disk_image(disk_settings):
        log.info(f"Created disk image: {disk_settings.path}")

    descriptor = GadgetDescriptor.from_settings(settings.usb_gadget, disk_settings.path)
    gadget = new_usb_gadget(descriptor, settings.usb_gadget.use_simulated)
    with DiskManager(DiskManagerConfig.from_settings(disk_settings), gadget):
        log.info(f"Serving {disk_settings.path} as USB gadget {descriptor.short_name}")
        wait_for_shutdown(stop_event)
    log.info("Shutdown complete")


def main(argv=None, stop_event=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        path = settings_store.save_settings(settings_store.default_settings(), args.config)
        print(f"Wrote default settings to {path}")
        return 0

    try:
        settings = resolve_settings(args)
    except DiskManagerError as error:
        print(f"Invalid configuration: {error}")
        return 1

    log_dir = settings.logging.log_dir
    setup_logging(
        debug=settings.logging.debug,
        trace=settings.logging.trace,
        log_dir=Path(log_dir) if log_dir else None,
    )

    if args.create_disk:
        try:
            created = ensure_disk_image(settings.disk)
        except DiskManagerError as error:
            log.error(f"Failed to create disk image: {error}")
            return 1
        if created:
            log.info(f"Created disk image: {settings.disk.path}")
        else:
            log.info(f"Disk image already exists: {settings.disk.path}")
        return 0

    try:
        run(settings, stop_event)
    except DiskManagerError as error:
        log.error(f"Startup failed: {error}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
