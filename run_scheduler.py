#!/usr/bin/env python3
"""
Tenant Billing Engine - Entry Point

Usage:
    # Run the scheduler in the foreground
    python run_scheduler.py daemon start

    # Scheduler plus REST API in one process
    python run_scheduler.py daemon start --with-web

    # Generate this month's bills now and deliver them
    python run_scheduler.py bills run --flush

    # Queue status
    python run_scheduler.py queue stats --failed

    # Start the REST API only
    python run_scheduler.py web --port 5000

For full help:
    python run_scheduler.py --help
"""

import logging
import sys


def main():
    """Main entry point."""
    from scheduler.cli import cli
    cli(obj={})


def run_web(host=None, port=None, debug=False):
    """Run the REST API (the scheduler starts in the same process)."""
    from web.app import run_app
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    run_app(host=host, port=port, debug=debug)


if __name__ == '__main__':
    if len(sys.argv) >= 2 and sys.argv[1] == 'web':
        host = None
        port = None
        debug = False

        for i, arg in enumerate(sys.argv):
            if arg == '--host' and i + 1 < len(sys.argv):
                host = sys.argv[i + 1]
            if arg == '--port' and i + 1 < len(sys.argv):
                port = int(sys.argv[i + 1])
            if arg == '--debug':
                debug = True

        run_web(host, port, debug)
    else:
        main()
