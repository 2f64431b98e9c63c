#!/usr/bin/env python3
"""
Orchestrator — starts the status bot, the product API and the checkout API
as child processes and waits on them.

    python3 run_services.py                      all three
    python3 run_services.py --bot --product-api  a subset
    python3 run_services.py --import-mappings "Product ID List.txt"
                                                 refresh the mapping DB first

Each child reads its own block of settings from the environment / .env.
Ctrl-C terminates every child.  Exit code is non-zero if any child failed.
"""

import subprocess
import sys
import time
from pathlib import Path

SERVICE_DIR = Path(__file__).parent.resolve()

SERVICES = {
    "--bot":          "discord_bot.py",
    "--product-api":  "product_api.py",
    "--checkout-api": "checkout_api.py",
}
IMPORT_SCRIPT = "populate_mappings.py"
POLL_SEC = 1.0


def run_import(mapping_file: str) -> int:
    """Run the mapping import synchronously, return exit code."""
    return subprocess.run(
        [sys.executable, str(SERVICE_DIR / IMPORT_SCRIPT), mapping_file],
        cwd=str(SERVICE_DIR),
    ).returncode


def start_service(script: str) -> subprocess.Popen:
    """Launch one service in the background and return its Popen handle."""
    proc = subprocess.Popen(
        [sys.executable, str(SERVICE_DIR / script)],
        cwd=str(SERVICE_DIR),
    )
    print(f"{script} started (PID {proc.pid})")
    return proc


def stop_all(procs: dict) -> None:
    for script, proc in procs.items():
        if proc.poll() is None:
            print(f"Stopping {script} (PID {proc.pid})")
            proc.terminate()
    for proc in procs.values():
        try:
            proc.wait(timeout=10)
        except subprocess.TimeoutExpired:
            proc.kill()


def selected_services(args: list) -> list:
    chosen = [script for flag, script in SERVICES.items() if flag in args]
    return chosen or list(SERVICES.values())


def main() -> int:
    args = sys.argv[1:]

    # ── Mapping import ────────────────────────────────────────────────────────
    if "--import-mappings" in args:
        mapping_file = "Product ID List.txt"
        try:
            idx = args.index("--import-mappings")
            if idx + 1 < len(args) and not args[idx + 1].startswith("--"):
                mapping_file = args[idx + 1]
        except ValueError:
            pass
        code = run_import(mapping_file)
        print(f"  {IMPORT_SCRIPT}: {'OK' if code == 0 else f'FAILED ({code})'}")
        if code != 0:
            return code
        if not any(flag in args for flag in SERVICES):
            return 0

    # ── Services ──────────────────────────────────────────────────────────────
    procs = {script: start_service(script) for script in selected_services(args)}
    exit_codes = {}
    try:
        while len(exit_codes) < len(procs):
            for script, proc in procs.items():
                if script in exit_codes:
                    continue
                code = proc.poll()
                if code is not None:
                    exit_codes[script] = code
                    print(f"  {script}: {'exited OK' if code == 0 else f'FAILED ({code})'}")
            time.sleep(POLL_SEC)
    except KeyboardInterrupt:
        print("Interrupted — shutting down services")
    finally:
        stop_all(procs)

    return 1 if any(c != 0 for c in exit_codes.values()) else 0


if __name__ == "__main__":
    sys.exit(main())
