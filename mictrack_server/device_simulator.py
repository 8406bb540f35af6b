#!/usr/bin/env python3
"""
Realistic Mictrack Device Simulator
Simulates an MT600 tracker reporting positions to the receiver, optionally
splitting each message over several TCP writes
"""
import asyncio
import logging
import math
import random
from datetime import datetime, timezone
from typing import List, Optional

logger = logging.getLogger(__name__)

STATUS_CODES = ["AUTO", "AUTOLOW", "TOWED", "OVERSPEED", "SAFESPEED"]


def format_coordinate(value: float, degree_digits: int) -> str:
    """Decimal degrees to the (d)ddmm.mmmm form used on the wire"""
    degrees = int(abs(value))
    minutes = (abs(value) - degrees) * 60
    return f"{degrees:0{degree_digits}d}{minutes:07.4f}"


def format_record(base_id: str, at: datetime, lat: float, lon: float, speed: float,
                  heading: Optional[float], valid: bool = True) -> str:
    """Build one record line (without line ending)"""
    speed_str = f"{speed:.2f}" if speed > 0 else ""
    # Devices leave course empty while stationary
    heading_str = f"{heading:.2f}" if heading is not None and speed > 0 else ""
    return ",".join([
        f"#{base_id}$GPRMC",
        at.strftime("%H%M%S.00"),
        "A" if valid else "V",
        format_coordinate(lat, 2),
        "N" if lat >= 0 else "S",
        format_coordinate(lon, 3),
        "E" if lon >= 0 else "W",
        speed_str,
        heading_str,
        at.strftime("%d%m%y"),
        "",
        "",
        "A*52" if valid else "",
    ])


def build_message(imei: str, status: str, records: List[str],
                  username: str = "MT600", password: str = "0000") -> str:
    """Wrap record lines in a header and terminator"""
    lines = [f"#{imei}#{username}#{password}#{status}#{len(records)}"]
    lines.extend(records)
    lines.append("##")
    return "\r\n".join(lines) + "\r\n\r\n"


def split_randomly(data: bytes, max_chunks: int = 4) -> List[bytes]:
    """Cut data into up to max_chunks pieces at random offsets"""
    if len(data) < 2 or max_chunks < 2:
        return [data]
    cuts = sorted(random.sample(range(1, len(data)), min(max_chunks - 1, len(data) - 1)))
    bounds = [0] + cuts + [len(data)]
    return [data[start:end] for start, end in zip(bounds, bounds[1:])]


class MictrackDeviceSimulator:
    """Simulates a real Mictrack tracker with realistic movement"""

    def __init__(self, imei: str = "861108034747229", host: str = "localhost", port: int = 5000,
                 records_per_message: int = 1, fragment: bool = False):
        self.imei = imei
        self.host = host
        self.port = port
        self.records_per_message = records_per_message
        self.fragment = fragment
        self.base_id = f"{random.getrandbits(44):011x}"
        self.writer = None
        self.connected = False

        # Starting position (Brisbane area)
        self.lat = -27.6945 + random.uniform(-0.01, 0.01)
        self.lon = 153.1523 + random.uniform(-0.01, 0.01)
        self.speed = 0.0  # knots
        self.heading = random.uniform(0, 360)
        self.satellites = 8

        self.message_count = 0
        self.session_start = None

    async def connect(self):
        logger.info(f"Device {self.imei}: Connecting to {self.host}:{self.port}...")
        _, self.writer = await asyncio.open_connection(self.host, self.port)
        self.connected = True
        self.session_start = datetime.now()
        logger.info(f"Device {self.imei}: Connected successfully")

    async def disconnect(self):
        if self.writer:
            logger.info(f"Device {self.imei}: Disconnecting...")
            self.writer.close()
            await self.writer.wait_closed()
            self.connected = False

    async def send_message(self, message: str):
        """Send a message; the protocol defines no response"""
        data = message.encode("ascii")
        chunks = split_randomly(data) if self.fragment else [data]
        for chunk in chunks:
            self.writer.write(chunk)
            await self.writer.drain()
            if len(chunks) > 1:
                await asyncio.sleep(0.05)
        self.message_count += 1
        logger.debug(f"Device {self.imei} TX ({len(chunks)} writes): {message!r}")

    async def send_location(self):
        records = []
        for _ in range(self.records_per_message):
            self.update_position()
            records.append(format_record(
                self.base_id,
                datetime.now(timezone.utc),
                self.lat,
                self.lon,
                self.speed,
                self.heading,
                valid=self.satellites >= 4,
            ))

        status = "AUTOLOW" if self.speed == 0 else random.choice(STATUS_CODES)
        await self.send_message(build_message(self.imei, status, records))
        logger.info(
            f"Device {self.imei}: Sent {len(records)} records "
            f"({self.lat:.6f}, {self.lon:.6f}) speed={self.speed:.1f}kn heading={self.heading:.1f}°"
        )

    def update_position(self):
        """Update device position with realistic movement (10 seconds per step)"""
        if random.random() < 0.1:
            if self.speed < 3:
                self.speed = random.uniform(5, 25)
            elif random.random() < 0.3:
                self.speed = 0.0
            else:
                self.speed = max(0.0, min(35.0, self.speed + random.uniform(-5, 5)))

        if self.speed > 0:
            self.heading = (self.heading + random.uniform(-10, 10)) % 360
            distance = self.speed * 1852 / 3600 * 10  # metres
            self.lat += (distance * math.cos(math.radians(self.heading))) / 111111.0
            self.lon += (distance * math.sin(math.radians(self.heading))) / (111111.0 * math.cos(math.radians(self.lat)))

        self.satellites = max(3, min(12, self.satellites + random.randint(-1, 1)))

    async def run(self, duration: int = None, interval: float = 10):
        """Run the simulator for specified duration (seconds) or forever"""
        start_time = datetime.now()
        try:
            await self.connect()
            while self.connected:
                if duration and (datetime.now() - start_time).total_seconds() > duration:
                    logger.info(f"Device {self.imei}: Simulation duration reached")
                    break
                await self.send_location()
                await asyncio.sleep(interval)
        except OSError as e:
            logger.error(f"Device {self.imei}: Simulation error - {e}")
        finally:
            await self.disconnect()
            logger.info(f"Device {self.imei}: {self.message_count} messages sent")


async def run_multiple_devices(num_devices: int, host: str, port: int, **kwargs):
    """Run multiple device simulators concurrently"""
    devices = [
        MictrackDeviceSimulator(f"8611080347{i:05d}", host, port, **kwargs)
        for i in range(num_devices)
    ]
    await asyncio.gather(*(device.run() for device in devices))


async def main():
    import argparse

    parser = argparse.ArgumentParser(description='Mictrack Device Simulator')
    parser.add_argument('--host', default='localhost', help='Receiver host')
    parser.add_argument('--port', type=int, default=5000, help='Receiver port')
    parser.add_argument('--imei', default='861108034747229', help='Device IMEI')
    parser.add_argument('--devices', type=int, default=1, help='Number of devices to simulate')
    parser.add_argument('--records', type=int, default=1, help='Records per message')
    parser.add_argument('--fragment', action='store_true', help='Split messages over several writes')
    parser.add_argument('--duration', type=int, help='Simulation duration in seconds')
    args = parser.parse_args()

    logger.info(f"Receiver: {args.host}:{args.port}, devices: {args.devices}")

    if args.devices > 1:
        await run_multiple_devices(args.devices, args.host, args.port,
                                   records_per_message=args.records, fragment=args.fragment)
    else:
        simulator = MictrackDeviceSimulator(args.imei, args.host, args.port,
                                            records_per_message=args.records, fragment=args.fragment)
        await simulator.run(args.duration)


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nSimulator stopped")
