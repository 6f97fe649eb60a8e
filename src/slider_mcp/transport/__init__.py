"""USB transport to the slider controller."""

from .usb_connection import DeviceInfo, USBConnection, find_devices
