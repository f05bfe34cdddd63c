"""Battery level monitoring for BLE peripherals."""
