"""Tests for embroidery_buddy.hardware.control_port module."""

import pytest

from embroidery_buddy.exceptions import GadgetControlError
from embroidery_buddy.hardware.control_port import ConfigfsControlPort


@pytest.fixture
def port(tmp_path):
    gadget_root = tmp_path / "usb_gadget"
    gadget_root.mkdir()
    return ConfigfsControlPort(gadget_root=gadget_root, udc_root=tmp_path / "udc")


class TestConfigfsControlPort:
    """Tests for ConfigfsControlPort against a temporary directory tree."""

    def test_is_available(self, port, tmp_path):
        assert port.is_available()
        assert not ConfigfsControlPort(gadget_root=tmp_path / "missing").is_available()

    def test_make_dir_and_write(self, port):
        """Test creating nested directories and reading back an attribute."""
        port.make_dir("g1/strings/0x409")
        port.write_attribute("g1/strings/0x409/product", "Embroidery USB Storage")

        assert port.exists("g1/strings/0x409")
        assert port.read_attribute("g1/strings/0x409/product") == "Embroidery USB Storage"

    def test_make_dir_existing(self, port):
        port.make_dir("g1")
        port.make_dir("g1")

        assert port.exists("g1")

    def test_write_into_missing_directory(self, port):
        """Test that a failed write raises GadgetControlError with the path."""
        with pytest.raises(GadgetControlError) as exc_info:
            port.write_attribute("missing/idVendor", "0x1d6b")

        assert exc_info.value.attribute_path.endswith("missing/idVendor")

    def test_read_missing_attribute(self, port):
        with pytest.raises(GadgetControlError):
            port.read_attribute("g1/UDC")

    def test_symlink_and_remove(self, port):
        """Test linking a function into a configuration and unlinking it."""
        port.make_dir("g1/functions/mass_storage.usb0")
        port.make_dir("g1/configs/c.1")

        port.symlink("g1/functions/mass_storage.usb0", "g1/configs/c.1/mass_storage.usb0")
        assert port.exists("g1/configs/c.1/mass_storage.usb0")

        port.remove_link("g1/configs/c.1/mass_storage.usb0")
        assert not port.exists("g1/configs/c.1/mass_storage.usb0")

    def test_remove_absent_entries(self, port):
        """Test that removing missing links and directories is not an error."""
        port.remove_link("g1/configs/c.1/mass_storage.usb0")
        port.remove_dir("g1/configs/c.1")

    def test_remove_non_empty_dir(self, port):
        port.make_dir("g1")
        port.write_attribute("g1/idVendor", "0x1d6b")

        with pytest.raises(GadgetControlError):
            port.remove_dir("g1")

    def test_list_controllers(self, port, tmp_path):
        """Test that UDC names are listed in sorted order."""
        udc_root = tmp_path / "udc"
        udc_root.mkdir()
        (udc_root / "musb-hdrc.1").mkdir()
        (udc_root / "fe980000.usb").mkdir()

        assert port.list_controllers() == ["fe980000.usb", "musb-hdrc.1"]

    def test_list_controllers_without_udc_class(self, port):
        assert port.list_controllers() == []
