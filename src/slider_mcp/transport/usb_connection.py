"""USB connection to the slider controller.

Supports both ``pyusb`` (preferred) and ``pyserial`` backends.
With pyusb the controller is driven like a WebUSB serial port: we claim the
vendor-specific interface (class 0xFF) when the firmware exposes one, else
the CDC data interface (class 0x0A), and raise DTR with a CDC
SET_CONTROL_LINE_STATE request so the sketch starts talking. When libusb
is unavailable or the interface is held by the kernel ACM driver, the same
device is opened through its serial port instead.
"""

from __future__ import annotations

import errno
import logging
from dataclasses import dataclass

from ..errors import DeviceRemovedError, TransportError

logger = logging.getLogger(__name__)

# (vendor_id, product_id); None matches any product of the vendor.
DEVICE_FILTERS: list[tuple[int, int | None]] = [
    (0x2341, 0x8036),  # Arduino Leonardo
    (0x2341, 0x8037),  # Arduino Micro
    (0x2341, 0x804D),  # Arduino/Genuino Zero
    (0x2341, 0x804E),  # Arduino/Genuino MKR1000
    (0x2341, 0x804F),  # Arduino MKRZERO
    (0x2341, 0x8050),  # Arduino MKR FOX 1200
    (0x2341, 0x8052),  # Arduino MKR GSM 1400
    (0x2341, 0x8053),  # Arduino MKR WAN 1300
    (0x2341, 0x8054),  # Arduino MKR WiFi 1010
    (0x2341, 0x8055),  # Arduino MKR NB 1500
    (0x2341, 0x8056),  # Arduino MKR Vidor 4000
    (0x2341, 0x8057),  # Arduino NANO 33 IoT
    (0x239A, None),    # Adafruit boards
    (0x1B4F, None),    # SparkFun Pro Micro
    (0x2341, None),    # Generic Arduino
]

VENDOR_SPECIFIC_CLASS = 0xFF
CDC_DATA_CLASS = 0x0A
CDC_REQUEST_TYPE_OUT = 0x21  # class request, interface recipient, host to device
CDC_SET_CONTROL_LINE_STATE = 0x22
SERIAL_BAUDRATE = 115200
READ_SIZE = 64
READ_TIMEOUT_MS = 1000
WRITE_TIMEOUT_MS = 1000

_LIBUSB_ERROR_NO_DEVICE = -4
_GONE_ERRNOS = (errno.ENODEV, errno.ENXIO)


def matches_filter(vendor_id: int, product_id: int) -> bool:
    """True if the IDs match one of the known controller boards."""
    return any(
        vendor_id == vid and (pid is None or product_id == pid)
        for vid, pid in DEVICE_FILTERS
    )


@dataclass
class DeviceInfo:
    """Identification of a candidate controller."""

    vendor_id: int = 0
    product_id: int = 0
    manufacturer: str = ""
    product: str = ""
    bus: int | None = None
    address: int | None = None
    port: str = ""

    def to_dict(self) -> dict:
        return {
            "vendor_id": f"0x{self.vendor_id:04X}",
            "product_id": f"0x{self.product_id:04X}",
            "manufacturer": self.manufacturer,
            "product": self.product,
            "port": self.port,
        }


@dataclass
class InterfaceSelection:
    """Interface number and bulk endpoint addresses to talk on."""

    number: int
    endpoint_in: int
    endpoint_out: int


def select_interface(configuration) -> InterfaceSelection:
    """Pick the interface to claim from a pyusb configuration.

    Preference: vendor-specific (WebUSB), then CDC data, then the first
    interface present.

    Raises:
        TransportError: If the configuration has no interfaces.
    """
    interfaces = list(configuration)
    if not interfaces:
        raise TransportError("Device configuration has no interfaces")

    chosen = None
    for wanted in (VENDOR_SPECIFIC_CLASS, CDC_DATA_CLASS):
        chosen = next((i for i in interfaces if i.bInterfaceClass == wanted), None)
        if chosen is not None:
            break
    if chosen is None:
        chosen = interfaces[0]

    endpoint_in = endpoint_out = 0
    for endpoint in chosen:
        address = endpoint.bEndpointAddress
        if address & 0x80:
            endpoint_in = address
        else:
            endpoint_out = address

    logger.debug(
        "Using interface %d, endpoints: in=0x%02X, out=0x%02X",
        chosen.bInterfaceNumber, endpoint_in, endpoint_out,
    )
    return InterfaceSelection(chosen.bInterfaceNumber, endpoint_in, endpoint_out)


def _usb_string(dev, index: int) -> str:
    import usb.core
    import usb.util

    if not index:
        return ""
    try:
        return usb.util.get_string(dev, index) or ""
    except (ValueError, usb.core.USBError) as e:
        logger.debug("Could not read USB string descriptor %d: %s", index, e)
        return ""


def _find_usb_devices() -> list[DeviceInfo]:
    import usb.core

    found = usb.core.find(
        find_all=True,
        custom_match=lambda d: matches_filter(d.idVendor, d.idProduct),
    )
    return [
        DeviceInfo(
            vendor_id=dev.idVendor,
            product_id=dev.idProduct,
            manufacturer=_usb_string(dev, dev.iManufacturer),
            product=_usb_string(dev, dev.iProduct),
            bus=dev.bus,
            address=dev.address,
        )
        for dev in found
    ]


def _find_serial_devices() -> list[DeviceInfo]:
    from serial.tools import list_ports

    return [
        DeviceInfo(
            vendor_id=port.vid,
            product_id=port.pid,
            manufacturer=port.manufacturer or "",
            product=port.product or port.description or "",
            port=port.device,
        )
        for port in list_ports.comports()
        if port.vid is not None and matches_filter(port.vid, port.pid or 0)
    ]


def find_devices() -> list[DeviceInfo]:
    """List attached controllers the host already has access to."""
    try:
        devices = _find_usb_devices()
        if devices:
            return devices
    except Exception as e:
        logger.debug("pyusb enumeration failed: %s, trying pyserial", e)

    try:
        return _find_serial_devices()
    except Exception as e:
        logger.warning("Device enumeration failed: %s", e)
        return []


def _is_device_gone(error: Exception) -> bool:
    if getattr(error, "errno", None) in _GONE_ERRNOS:
        return True
    return getattr(error, "backend_error_code", None) == _LIBUSB_ERROR_NO_DEVICE


def _transport_error(action: str, error: Exception) -> TransportError:
    if _is_device_gone(error):
        return DeviceRemovedError(f"Device disconnected during {action}: {error}")
    return TransportError(f"{action.capitalize()} failed: {error}")


class USBConnection:
    """Manages the USB link to the slider controller.

    Usage::

        conn = USBConnection()
        conn.open()
        conn.write(bytes([4]))
        chunk = conn.read()
        conn.close()
    """

    def __init__(
        self,
        device: DeviceInfo | None = None,
        baudrate: int = SERIAL_BAUDRATE,
    ) -> None:
        self._requested = device
        self._baudrate = baudrate
        self._device = None
        self._backend: str = ""
        self._connected = False
        self._interface: InterfaceSelection | None = None
        self._device_info = device or DeviceInfo()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def backend(self) -> str:
        return self._backend

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self) -> DeviceInfo:
        """Open the controller, trying pyusb first, then pyserial.

        Returns:
            DeviceInfo of the opened device.

        Raises:
            TransportError: If the device cannot be found or opened.
        """
        if self._requested is None or not self._requested.port:
            try:
                return self._open_pyusb()
            except Exception as e:
                logger.debug("pyusb backend failed: %s, trying pyserial", e)

        try:
            return self._open_serial()
        except Exception as e:
            raise TransportError(
                "Could not connect to the slider controller. "
                "Ensure the device is connected and you have permissions. "
                f"Last error: {e}"
            ) from e

    def _open_pyusb(self) -> DeviceInfo:
        """Open using pyusb + libusb."""
        import usb.core
        import usb.util

        requested = self._requested
        if requested is not None and requested.bus is not None:
            dev = usb.core.find(
                idVendor=requested.vendor_id,
                idProduct=requested.product_id,
                bus=requested.bus,
                address=requested.address,
            )
        else:
            dev = usb.core.find(
                custom_match=lambda d: matches_filter(d.idVendor, d.idProduct)
            )
        if dev is None:
            raise TransportError("Device not found via pyusb")

        try:
            configuration = dev.get_active_configuration()
        except usb.core.USBError:
            dev.set_configuration(1)
            configuration = dev.get_active_configuration()

        selection = select_interface(configuration)

        # Detach kernel driver if needed
        if dev.is_kernel_driver_active(selection.number):
            dev.detach_kernel_driver(selection.number)

        usb.util.claim_interface(dev, selection.number)
        dev.set_interface_altsetting(interface=selection.number, alternate_setting=0)
        dev.ctrl_transfer(
            CDC_REQUEST_TYPE_OUT, CDC_SET_CONTROL_LINE_STATE, 0x01, selection.number
        )

        self._device = dev
        self._interface = selection
        self._backend = "pyusb"
        self._connected = True
        self._device_info = DeviceInfo(
            vendor_id=dev.idVendor,
            product_id=dev.idProduct,
            manufacturer=_usb_string(dev, dev.iManufacturer),
            product=_usb_string(dev, dev.iProduct),
            bus=dev.bus,
            address=dev.address,
        )

        logger.info(
            "Connected via pyusb: %s %s (interface %d)",
            self._device_info.manufacturer,
            self._device_info.product,
            selection.number,
        )
        return self._device_info

    def _open_serial(self) -> DeviceInfo:
        """Open the controller's CDC-ACM serial port using pyserial."""
        import serial

        info = self._requested
        if info is None or not info.port:
            candidates = _find_serial_devices()
            if not candidates:
                raise TransportError("Device not found via pyserial")
            info = candidates[0]

        port = serial.Serial(
            port=info.port,
            baudrate=self._baudrate,
            timeout=READ_TIMEOUT_MS / 1000,
            write_timeout=WRITE_TIMEOUT_MS / 1000,
        )
        port.dtr = True

        self._device = port
        self._backend = "pyserial"
        self._connected = True
        self._device_info = info

        logger.info("Connected via pyserial: %s (%s)", info.port, info.product)
        return self._device_info

    def close(self) -> None:
        """Close the USB connection."""
        if not self._connected:
            return

        try:
            if self._backend == "pyusb":
                import usb.util

                number = self._interface.number
                self._device.ctrl_transfer(
                    CDC_REQUEST_TYPE_OUT, CDC_SET_CONTROL_LINE_STATE, 0x00, number
                )
                usb.util.release_interface(self._device, number)
                usb.util.dispose_resources(self._device)
            elif self._backend == "pyserial":
                self._device.close()
        except Exception as e:
            logger.warning("Error closing device: %s", e)
        finally:
            self._device = None
            self._interface = None
            self._connected = False
            logger.info("Disconnected")

    def write(self, data: bytes) -> int:
        """Write a command buffer to the device.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If not connected or the write fails.
            DeviceRemovedError: If the device has gone away.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        if self._backend == "pyusb":
            import usb.core

            try:
                return self._device.write(
                    self._interface.endpoint_out, data, timeout=WRITE_TIMEOUT_MS
                )
            except usb.core.USBError as e:
                raise _transport_error("write", e) from e
        elif self._backend == "pyserial":
            import serial

            try:
                return self._device.write(data)
            except (serial.SerialException, OSError) as e:
                raise _transport_error("write", e) from e
        else:
            raise RuntimeError(f"Unknown backend: {self._backend}")

    def read(self, size: int = READ_SIZE, timeout_ms: int = READ_TIMEOUT_MS) -> bytes | None:
        """Read one chunk of at most ``size`` bytes.

        Returns:
            The bytes read, or None if the read timed out.

        Raises:
            TransportError: If not connected or the read fails.
            DeviceRemovedError: If the device has gone away.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        if self._backend == "pyusb":
            import usb.core

            try:
                data = self._device.read(
                    self._interface.endpoint_in, size, timeout=timeout_ms
                )
            except usb.core.USBTimeoutError:
                return None
            except usb.core.USBError as e:
                raise _transport_error("read", e) from e
            return bytes(data) or None
        elif self._backend == "pyserial":
            import serial

            try:
                self._device.timeout = timeout_ms / 1000
                data = self._device.read(1)
                if not data:
                    return None
                waiting = min(self._device.in_waiting, size - 1)
                if waiting:
                    data += self._device.read(waiting)
            except (serial.SerialException, OSError) as e:
                raise _transport_error("read", e) from e
            return bytes(data)
        else:
            raise RuntimeError(f"Unknown backend: {self._backend}")
