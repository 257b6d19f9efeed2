"""Battery level monitor for BLE GATT peripherals."""
