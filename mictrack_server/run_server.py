#!/usr/bin/env python3
"""
Run the Mictrack TCP receiver and log every beacon and error
Usage: python -m mictrack_server.run_server [port]
"""
import asyncio
import logging
import signal
import sys
import uuid

from config import Settings, get_settings
from logs.logconfig import configure_logging
from mictrack_server.listener import MictrackReceiver
from mictrack_server.models import BeaconReceivedEvent, DecodeErrorEvent

logger = logging.getLogger(__name__)


def log_beacon(event: BeaconReceivedEvent):
    beacon = event.beacon
    logger.info(f"=== BEACON from {event.remote_address} ===")
    logger.info(f"IMEI: {beacon.imei}")
    logger.info(f"Status: {beacon.status.value}")
    for record in beacon.records:
        bearing = f"{record.bearing}°" if record.bearing is not None else "n/a"
        logger.info(
            f"  {record.at.isoformat()} {record.fix_status.value} "
            f"{record.latitude} {record.latitude_hemisphere.value}, "
            f"{record.longitude} {record.longitude_hemisphere.value} "
            f"speed={record.ground_speed}kn bearing={bearing}"
        )


def log_error(event):
    kind = "Decode error" if isinstance(event, DecodeErrorEvent) else "Connection error"
    logger.warning(f"{kind} from {event.remote_address}: {event.message}")


async def main(settings: Settings):
    receiver = MictrackReceiver(settings, on_beacon=log_beacon, on_error=log_error)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(receiver.stop()))

    await receiver.start()
    logger.info("Press Ctrl+C to stop")
    await receiver.serve_forever()


if __name__ == "__main__":
    # Port from the command line wins over the environment
    if len(sys.argv) > 1:
        settings = Settings(GPS_TCP_PORT=int(sys.argv[1]))
    else:
        settings = get_settings()

    configure_logging(uuid.uuid4().hex[:8], settings)
    asyncio.run(main(settings))
