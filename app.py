#!/usr/bin/env python3
"""
Cafe Printer - Flask form that turns submissions into thermal receipts
Runs next to a USB, network, or CUPS-attached ESC/POS printer
"""

import argparse
import logging

from cafe_printer import create_app
from cafe_printer.core.config import load_config
from cafe_printer.core.logging import configure_logging
from cafe_printer.printing import worker
from cafe_printer.printing.errors import PrinterError

logger = logging.getLogger("cafe_printer.app")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Print form submissions on a thermal receipt printer.")
    parser.add_argument("--host", default="0.0.0.0", help="address to bind (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=9999, help="port to listen on (default: 9999)")
    parser.add_argument("--ip", help="print over raw TCP to this printer address instead of the configured transport")
    parser.add_argument("--config", help="path to the JSON config file")
    parser.add_argument(
        "--self-test",
        dest="self_test",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="print a test receipt at startup (default: on)",
    )
    return parser.parse_args(argv)


def build_config(args):
    config = load_config(args.config)
    if args.ip:
        config["printer_type"] = "network"
        config["network_ip"] = args.ip
    return config


def main(argv=None):
    args = parse_args(argv)
    configure_logging()
    runtime = worker.PrinterRuntime(build_config(args))
    app = create_app(runtime=runtime)

    if args.self_test:
        try:
            worker.self_test_print(runtime)
            logger.info("Self-test receipt printed via %s", runtime.transport.describe())
        except PrinterError as e:
            # Keep serving; the next queued job retries opening the printer
            logger.error("Self-test print failed: %s", e)

    logger.info("Starting Cafe Printer on http://%s:%d", args.host, args.port)
    logger.info("Press Ctrl+C to stop the server")
    try:
        app.run(host=args.host, port=args.port, debug=False)
    finally:
        worker.shutdown()


if __name__ == "__main__":
    main()
