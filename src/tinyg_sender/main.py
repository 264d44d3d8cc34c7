"""
TinyG Sender CLI

A command-line tool for streaming G-code to TinyG motion controllers.
"""

import sys
import argparse
import logging
import threading

from tinyg_sender.device.manager import TinyG
from tinyg_sender.device.ports import PortResolver, PROBE_TIMEOUT
from tinyg_sender.errors import TinyGError
from tinyg_sender.streams.usb import USBStream


def print_scan(resolver: PortResolver) -> int:
    """Print candidate ports without opening them."""
    ports = USBStream.list_ports()
    if not ports:
        print("No serial ports found")
        return 1
    print("Serial ports:")
    for info in sorted(ports, key=lambda p: p['port']):
        serial_number = info['serial_number'] or '-'
        print(f"  {info['port']:<20} {info['description']} (SN {serial_number})")
    print("\nCandidates (control, data):")
    for control, data in resolver.candidates():
        print(f"  {control}, {data or control}")
    return 0


def stream_file(machine: TinyG, path: str, timeout: float) -> int:
    """
    Stream a file and wait for it to finish.

    Ctrl-C flushes whatever has not been sent yet; lines already in the
    device's planner still run.
    """
    log = logging.getLogger("main")
    finished = threading.Event()
    machine.once('job_complete', lambda job: finished.set())
    machine.once('close', finished.set)

    job = machine.send_file(path)
    log.info(f"Streaming {job.name}: {job.total} lines")

    try:
        completed = finished.wait(timeout) if timeout > 0 else finished.wait()
    except KeyboardInterrupt:
        log.warning("Interrupted, flushing unsent lines")
        if machine.is_open:
            dropped = machine.flush()
            log.warning(f"Flushed {dropped} unsent line(s)")
        return 1

    if not completed:
        log.error(f"Job did not finish within {timeout}s ({machine.pending_count()} lines unsent)")
        machine.flush()
        return 1
    if not machine.is_open and not job.done:
        log.error(f"Connection lost with {job.remaining} line(s) unsent")
        return 1
    log.info(f"All {job.total} lines sent. The device may still be executing buffered moves.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description='TinyG Sender',
        epilog="""Streams G-code to a TinyG controller using queue-report flow control."""
    )

    # Global options (apply to all subcommands)
    parser.add_argument('--port', '-p', action='append', default=None,
                        help='Serial port to use; give twice for control + data (default: auto-detect)')
    parser.add_argument('--probe-timeout', type=float, default=PROBE_TIMEOUT,
                        help=f'Seconds to wait for a port to answer (default: {PROBE_TIMEOUT})')
    # Logging / Output options (Mutually Exclusive)
    log_level_group = parser.add_mutually_exclusive_group()
    log_level_group.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose DEBUG level logging')
    log_level_group.add_argument('--quiet', '-q', action='store_true',
                        help='Suppress INFO level logging, show only WARNINGs and ERRORs')

    subparsers = parser.add_subparsers(dest='action', title='Actions',
                                     description='Choose an action to perform', required=True)

    # --- Scan Subcommand ---
    subparsers.add_parser('scan', help='List serial ports and candidate pairs, then exit')

    # --- Send Subcommand ---
    parser_send = subparsers.add_parser('send', help='Stream a G-code file to the device')
    parser_send.add_argument('gcode_file', help='Path to the G-code file')
    parser_send.add_argument('--timeout', type=float, default=0,
                        help='Give up (and flush) if the job is not sent within this many seconds (default: no limit)')

    # --- Command Subcommand ---
    parser_command = subparsers.add_parser('command', help='Write one command to the control channel')
    parser_command.add_argument('device_command', help='The command string to send, e.g. \'{"sr":null}\'')
    parser_command.add_argument('--wait', type=float, default=1.0,
                        help='Seconds to print replies for (default: 1)')

    # --- Interactive Subcommand ---
    subparsers.add_parser('interactive', aliases=['i'], help='Enter interactive command mode')

    args = parser.parse_args()

    # Set up logging level based on flags
    log_level = logging.INFO # Default
    if args.verbose:
        log_level = logging.DEBUG
    elif args.quiet:
        log_level = logging.WARNING

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    log = logging.getLogger("main")
    resolver = PortResolver(probe_timeout=args.probe_timeout)

    # Handle scan mode separately as it doesn't need a connection
    if args.action == 'scan':
        return print_scan(resolver)

    machine = TinyG(resolver=resolver)
    try:
        machine.open_first(args.port)
    except TinyGError as e:
        log.error(f"Failed to connect to device: {e}")
        return 1

    exit_code = 1 # Default to error
    try:
        if args.action == 'send':
            exit_code = stream_file(machine, args.gcode_file, args.timeout)

        elif args.action == 'command':
            done = threading.Event()
            machine.on('data', lambda line, channel: print(line))
            machine.once('close', done.set)
            machine.write(args.device_command)
            done.wait(args.wait)
            exit_code = 0 if machine.is_open else 1

        elif args.action in ('interactive', 'i'):
            from tinyg_sender.cmd.interactive import interactive_mode
            exit_code = interactive_mode(machine)

    except KeyboardInterrupt:
        log.warning("Operation cancelled by user")
        exit_code = 1
    except (TinyGError, OSError) as e:
        log.error(f"Error: {str(e)}")
        exit_code = 1
    finally:
        machine.close()

    return exit_code

if __name__ == "__main__":
    sys.exit(main())
