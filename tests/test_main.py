"""Tests for the embroidery-usbd entry point."""

import json
import threading

import pytest

from embroidery_buddy import main as main_module
from embroidery_buddy.config import settings as settings_store


@pytest.fixture(autouse=True)
def no_logging_setup(mocker):
    """Keep tests from writing log files to the home directory."""
    return mocker.patch("embroidery_buddy.main.setup_logging")


@pytest.fixture
def config_file(tmp_path):
    def write(**sections):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(sections))
        return path

    return write


@pytest.fixture
def stopped():
    event = threading.Event()
    event.set()
    return event


def test_generate_config(tmp_path, capsys):
    """Test that --generate-config writes the defaults and exits."""
    path = tmp_path / "settings.json"

    assert main_module.main(["--config", str(path), "--generate-config"]) == 0

    assert json.loads(path.read_text())["disk"]["writer"] == "direct"
    assert str(path) in capsys.readouterr().out


def test_invalid_config_exits_with_error(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text("{not json")

    assert main_module.main(["--config", str(path)]) == 1


def test_create_disk(tmp_path, config_file):
    """Test that --create-disk creates the image and exits."""
    image = tmp_path / "disk.img"
    path = config_file(disk={"path": str(image), "size_mb": 10})

    assert main_module.main(["--config", str(path), "--create-disk"]) == 0
    assert image.stat().st_size == 10 * 1024 * 1024

    # Second run leaves the existing image alone
    assert main_module.main(["--config", str(path), "--create-disk"]) == 0


def test_create_disk_failure(tmp_path, config_file):
    path = config_file(disk={"path": str(tmp_path / "disk.img"), "size_mb": 1})

    assert main_module.main(["--config", str(path), "--create-disk"]) == 1


def test_run_until_stopped(tmp_path, config_file, stopped, no_logging_setup):
    """Test a full start and shutdown with a simulated gadget."""
    image = tmp_path / "disk.img"
    path = config_file(
        disk={"path": str(image), "size_mb": 10},
        usb_gadget={"use_simulated": True},
    )

    assert main_module.main(["--config", str(path), "--debug"], stop_event=stopped) == 0

    assert image.exists()
    assert no_logging_setup.call_args.kwargs["debug"] is True


def test_missing_image_without_auto_create(tmp_path, config_file, stopped):
    path = config_file(
        disk={"path": str(tmp_path / "disk.img"), "auto_create": False},
        usb_gadget={"use_simulated": True},
    )

    assert main_module.main(["--config", str(path)], stop_event=stopped) == 1


def test_resolve_settings_without_config():
    """Test that running without a config uses development defaults."""
    args = main_module.build_parser().parse_args(["--trace"])

    resolved = main_module.resolve_settings(args)

    assert resolved.disk.path == settings_store.DEVELOPMENT_DISK_PATH
    assert resolved.usb_gadget.use_simulated is True
    assert resolved.logging.trace is True
    assert resolved.logging.debug is False


def test_ensure_disk_image(tmp_path):
    disk = settings_store.DiskSettings(path=str(tmp_path / "disk.img"), size_mb=10)

    assert main_module.ensure_disk_image(disk) is True
    assert main_module.ensure_disk_image(disk) is False
