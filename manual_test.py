#!/usr/bin/env python

import argparse
import logging
import sys
import time

from tinyg_sender.device.manager import TinyG
from tinyg_sender.errors import TinyGError

def main():
    parser = argparse.ArgumentParser(description="Exercise open/stream/flush/close against a real TinyG.")
    parser.add_argument("-p", "--port", action="append", help="Serial port(s) to use (default: auto-detect)")
    parser.add_argument("-f", "--file", required=True, help="G-code file to stream")
    parser.add_argument("-i", "--interrupt", type=float, default=1.0,
                        help="Seconds to stream before flushing (default: 1)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log = logging.getLogger("manual_test")

    machine = TinyG()
    machine.on('open', lambda: log.info(f"open: control={machine.serial_port_control}, data={machine.serial_port_data}"))
    machine.on('close', lambda: log.info("close event received"))
    machine.on('job_complete', lambda job: log.info(f"job_complete: {job}"))

    try:
        log.info("Opening first TinyG...")
        machine.open_first(args.port)

        job = machine.send_file(args.file)
        log.info(f"Streaming {job.total} lines, flushing after {args.interrupt}s")
        time.sleep(args.interrupt)

        log.info(f"Pending before flush: {machine.pending_count()} (sent so far: {job.next_index})")
        dropped = machine.flush()
        log.info(f"Flushed {dropped} line(s); pending after flush: {machine.pending_count()}")

        log.info("Test completed.")

    except TinyGError as e:
        log.error(f"Failed to connect or communicate: {e}")
        sys.exit(1)
    except OSError as e:
        log.error(f"An unexpected error occurred: {e}", exc_info=args.verbose)
        sys.exit(1)
    finally:
        log.info("Closing connection...")
        machine.close()
        log.info(f"Connection closed (control handle: {machine.serial_port_control})")

if __name__ == "__main__":
    main()
