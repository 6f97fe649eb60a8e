"""Tests for device matching, interface selection and transport errors."""

import errno
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from slider_mcp.errors import DeviceRemovedError, TransportError
from slider_mcp.transport.usb_connection import (
    DeviceInfo,
    USBConnection,
    _transport_error,
    matches_filter,
    select_interface,
)


class FakeInterface(list):
    """Iterable of endpoints carrying interface descriptor fields, like pyusb's."""

    def __init__(self, number, interface_class, endpoints=(0x81, 0x02)):
        super().__init__(SimpleNamespace(bEndpointAddress=a) for a in endpoints)
        self.bInterfaceNumber = number
        self.bInterfaceClass = interface_class


def test_matches_known_boards():
    assert matches_filter(0x2341, 0x8036)
    assert matches_filter(0x239A, 0x1234)
    assert matches_filter(0x1B4F, 0x9206)
    assert not matches_filter(0x1234, 0x5678)


def test_select_vendor_specific_interface():
    configuration = [
        FakeInterface(0, 0x02, endpoints=(0x83,)),
        FakeInterface(1, 0x0A),
        FakeInterface(2, 0xFF, endpoints=(0x84, 0x04)),
    ]
    selection = select_interface(configuration)
    assert selection.number == 2
    assert selection.endpoint_in == 0x84
    assert selection.endpoint_out == 0x04


def test_select_cdc_data_interface():
    configuration = [FakeInterface(0, 0x02, endpoints=(0x83,)), FakeInterface(1, 0x0A)]
    selection = select_interface(configuration)
    assert selection.number == 1
    assert selection.endpoint_in == 0x81
    assert selection.endpoint_out == 0x02


def test_select_falls_back_to_first_interface():
    configuration = [FakeInterface(3, 0x03), FakeInterface(4, 0x08)]
    assert select_interface(configuration).number == 3


def test_select_without_interfaces_raises():
    with pytest.raises(TransportError):
        select_interface([])


def test_device_gone_errors_become_device_removed():
    error = _transport_error("read", OSError(errno.ENODEV, "No such device"))
    assert isinstance(error, DeviceRemovedError)

    usb_error = SimpleNamespace(errno=None, backend_error_code=-4)
    assert isinstance(_transport_error("write", usb_error), DeviceRemovedError)


def test_other_errors_are_transport_errors():
    error = _transport_error("write", OSError(errno.EIO, "I/O error"))
    assert isinstance(error, TransportError)
    assert not isinstance(error, DeviceRemovedError)
    assert str(error).startswith("Write failed")


def test_write_and_read_require_open_connection():
    conn = USBConnection()
    with pytest.raises(TransportError):
        conn.write(b"\x04")
    with pytest.raises(TransportError):
        conn.read()


def test_close_when_not_open_is_noop():
    conn = USBConnection()
    conn.close()
    assert not conn.connected


def test_open_falls_back_to_serial():
    info = DeviceInfo(vendor_id=0x2341, product_id=0x8036, port="/dev/ttyACM0")
    with patch.object(USBConnection, "_open_pyusb", side_effect=OSError("no libusb")), \
         patch.object(USBConnection, "_open_serial", return_value=info) as open_serial:
        assert USBConnection().open() is info
    open_serial.assert_called_once()


def test_open_with_serial_port_skips_pyusb():
    info = DeviceInfo(vendor_id=0x2341, product_id=0x8036, port="/dev/ttyACM0")
    with patch.object(USBConnection, "_open_pyusb") as open_pyusb, \
         patch.object(USBConnection, "_open_serial", return_value=info):
        USBConnection(info).open()
    open_pyusb.assert_not_called()


def test_open_failure_raises_transport_error():
    with patch.object(USBConnection, "_open_pyusb", side_effect=OSError("no libusb")), \
         patch.object(USBConnection, "_open_serial", side_effect=OSError("busy")):
        with pytest.raises(TransportError, match="Could not connect"):
            USBConnection().open()
