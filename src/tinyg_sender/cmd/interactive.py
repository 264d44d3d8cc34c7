from tinyg_sender.device.manager import TinyG
from tinyg_sender.errors import TinyGError

import atexit
import logging
import os

# Get a logger specific to this module
logger = logging.getLogger(__name__)

try:
    import readline
    readline_available = True
except ImportError:
    # Windows Python ships without readline
    readline_available = False
    logger.warning("readline library not found. History functionality will be disabled.")

import platformdirs

def setup_history():
    """Sets up readline history file in a platform-specific user data directory."""
    if not readline_available:
        print("Note: Readline library not available. Command history disabled.")
        return

    data_dir = platformdirs.user_data_dir("tinyg-sender", "tinyg-sender")
    history_file = os.path.join(data_dir, "history")

    try:
        os.makedirs(data_dir, exist_ok=True)
        logger.info(f"Ensured history directory exists: {data_dir}")
    except OSError as e:
        print(f"Warning: Could not create history directory: {str(e)}. History disabled.")
        return

    if os.path.exists(history_file):
        try:
            readline.read_history_file(history_file)
        except OSError as e:
            print(f"Warning: Could not read history file '{history_file}': {str(e)}")
    else:
        try:
            with open(history_file, 'a'):
                pass
            logger.info(f"Created history file: {history_file}")
        except OSError as e:
            print(f"Warning: Could not create history file: {str(e)}. History disabled.")
            return

    readline.set_history_length(1000)
    atexit.register(readline.write_history_file, history_file)

def print_help():
    """Print help information for interactive mode"""
    print("\nAvailable commands:")
    print("  help          - Show this help information")
    print("  exit / quit   - Exit interactive mode")
    print("  status        - Show the last status report")
    print("  send <file>   - Stream a G-code file")
    print("  flush         - Discard unsent lines of the running job(s)")
    print("  pending       - Show how many lines are still queued")
    print("\nAny other input is written to the control channel, e.g.:")
    print('  {"sr":null}   - Request a status report')
    print('  $qr           - Queue report (text mode)')
    print("\nPress up/down arrows to navigate command history")

def interactive_mode(machine: TinyG) -> int:
    """
    Run an interactive shell against an open TinyG connection.

    Device replies are printed as they arrive by a 'data' listener, so
    output can interleave with the prompt while a job streams.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    setup_history()

    def show(line, channel):
        print(f"\n[{channel}] {line}")

    def job_done(job):
        print(f"\n{job.name} complete ({job.total} lines)")

    machine.on('data', show)
    machine.on('job_complete', job_done)

    print("\nEntering interactive mode. Type 'help' for commands, 'exit' to quit.")

    exit_code = 0
    try:
        while machine.is_open:
            try:
                cmd_input = input("tinyg> ").strip()
            except KeyboardInterrupt:
                print("\nUse 'exit' or 'quit' to exit interactive mode")
                continue
            except EOFError:
                print("\nExiting interactive mode")
                break

            if not cmd_input:
                continue

            lowered = cmd_input.lower()
            try:
                if lowered in ('exit', 'quit'):
                    break
                elif lowered == 'help':
                    print_help()
                elif lowered == 'status':
                    print(f"Device status: {machine.status or '(no report yet)'}")
                elif lowered == 'pending':
                    print(f"Pending lines: {machine.pending_count()}")
                elif lowered == 'flush':
                    print(f"Flushed {machine.flush()} line(s)")
                elif lowered.startswith('send '):
                    job = machine.send_file(cmd_input[5:].strip())
                    print(f"Streaming {job.name} ({job.total} lines)")
                else:
                    machine.write(cmd_input)
            except (TinyGError, OSError) as e:
                print(f"Error: {str(e)}")

        if not machine.is_open:
            print("Connection closed by device")
            exit_code = 1
    finally:
        machine.off('data', show)
        machine.off('job_complete', job_done)

    print("Interactive mode closed")
    return exit_code
