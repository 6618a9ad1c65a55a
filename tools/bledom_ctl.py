#!/usr/bin/env python3
"""
ELK-BLEDOM LED strip control tool

Scans for ELK-BLEDOM style strips and sends single commands through the
same session layer a smart-home host would use.

Usage:
    python bledom_ctl.py scan [--duration SECONDS]
    python bledom_ctl.py power on --address BE:58:00:12:34:56
    python bledom_ctl.py brightness 40 --address BE:58:00:12:34:56
    python bledom_ctl.py hs 120 100 --address BE:58:00:12:34:56
    python bledom_ctl.py rgb 255 0 64 --address BE:58:00:12:34:56
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from bleak import BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData

from ledstrip_bledom import BledomDevice, BledomError, BleakTransport, DeviceConfig
from ledstrip_bledom.const import DEVICE_NAME_PREFIXES


def matches_name_pattern(name: Optional[str]) -> bool:
    """Check if an advertised name looks like an ELK-BLEDOM controller."""
    if not name:
        return False
    upper = name.upper()
    return any(upper.startswith(prefix) for prefix in DEVICE_NAME_PREFIXES)


async def scan_once(duration: float = 10.0) -> list:
    """Perform a single scan for devices."""
    print(f"\nScanning for ELK-BLEDOM devices for {duration} seconds...")
    print("-" * 70)

    devices_by_address = {}

    def detection_callback(device: BLEDevice, adv_data: AdvertisementData):
        name = device.name or adv_data.local_name
        if matches_name_pattern(name):
            devices_by_address[device.address] = (name, adv_data.rssi)

    scanner = BleakScanner(detection_callback)
    await scanner.start()
    await asyncio.sleep(duration)
    await scanner.stop()

    if not devices_by_address:
        print("\nNo ELK-BLEDOM devices found.")
        print("\nTroubleshooting tips:")
        print("  1. Make sure your device is powered on")
        print("  2. Disconnect the vendor phone app, the strip accepts one central")
        print("  3. Try moving closer to the device")
    else:
        print(f"\nFound {len(devices_by_address)} device(s):")
        for address, (name, rssi) in devices_by_address.items():
            print(f"  {address}  {name:<16} RSSI: {rssi} dBm")

    return list(devices_by_address)


async def send_command(args: argparse.Namespace) -> None:
    """Connect, send one command, then disconnect."""
    config = DeviceConfig.from_mapping(
        {
            "address": args.address,
            "scan_timeout": args.scan_timeout,
            "max_connect_attempts": args.attempts,
        }
    )
    device = BledomDevice(BleakTransport(adapter=args.adapter), config)
    try:
        if args.command == "power":
            await device.set_power(args.state == "on")
        elif args.command == "brightness":
            await device.set_brightness(args.level)
        elif args.command == "hs":
            await device.set_saturation(args.saturation)
            await device.set_hue(args.hue)
        elif args.command == "rgb":
            await device.set_rgb(args.red, args.green, args.blue)
        print(f"Sent {args.command} to {device.address}: {device.desired_state}")
    finally:
        await device.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Scan for and control ELK-BLEDOM BLE LED strips")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan for ELK-BLEDOM devices")
    scan.add_argument(
        "--duration", "-d",
        type=float,
        default=10.0,
        help="Scan duration in seconds (default: 10)"
    )

    device_options = argparse.ArgumentParser(add_help=False)
    device_options.add_argument(
        "--address", "-a",
        required=True,
        metavar="ADDRESS",
        help="Device MAC address (or CoreBluetooth UUID on macOS)"
    )
    device_options.add_argument("--adapter", help="Local adapter, e.g. hci0")
    device_options.add_argument(
        "--scan-timeout",
        type=float,
        default=30.0,
        help="Seconds to look for the device (default: 30)"
    )
    device_options.add_argument(
        "--attempts",
        type=int,
        default=3,
        help="Connection attempts before giving up (default: 3)"
    )

    power = subparsers.add_parser("power", parents=[device_options], help="Turn on or off")
    power.add_argument("state", choices=["on", "off"])

    brightness = subparsers.add_parser("brightness", parents=[device_options], help="Set brightness")
    brightness.add_argument("level", type=int, help="0-100")

    hs = subparsers.add_parser("hs", parents=[device_options], help="Set hue and saturation")
    hs.add_argument("hue", type=float, help="0-360")
    hs.add_argument("saturation", type=float, help="0-100")

    rgb = subparsers.add_parser("rgb", parents=[device_options], help="Set an RGB colour")
    rgb.add_argument("red", type=int)
    rgb.add_argument("green", type=int)
    rgb.add_argument("blue", type=int)

    return parser


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "scan":
            asyncio.run(scan_once(args.duration))
        else:
            asyncio.run(send_command(args))
    except BledomError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
