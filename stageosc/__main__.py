#!/usr/bin/env python3
"""StageOSC as run via python -m"""

import argparse
import asyncio
import contextlib
import logging
import platform
import signal
import sys

import stageosc.bootstrap
import stageosc.config
from stageosc.bridge import Bridge
from stageosc.oscsink import OSCSink
from stageosc.stagelinq import Listener, ListenerConfig
from stageosc.version import __VERSION__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """command line handling"""
    parser = argparse.ArgumentParser(
        prog="stageosc", description="Forward StagelinQ track and beat data as OSC"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="log every beat frame and OSC message"
    )
    parser.add_argument("--osc-host", help="host to send OSC messages to")
    parser.add_argument("--osc-port", type=int, help="port to send OSC messages to")
    parser.add_argument("--timeout", type=float, help="seconds to listen for devices")
    parser.add_argument("--logdir", help="directory for the debug log")
    return parser.parse_args(argv)


async def amain(config: stageosc.config.ConfigFile, verbose: bool = False) -> int:
    """run the bridge until cancelled"""
    try:
        sink = OSCSink(config.oschost, config.oscport)
    except OSError as err:
        logging.critical("Unable to send OSC to %s:%s: %s", config.oschost, config.oscport, err)
        return 1

    listenerconfig = ListenerConfig(
        name=config.name,
        software_name="StageOSC",
        software_version=__VERSION__,
        discovery_timeout=config.discovery_timeout,
    )
    try:
        listener = await Listener.listen(listenerconfig)
    except OSError as err:
        logging.critical("Unable to listen for StagelinQ devices: %s", err)
        return 1

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, asyncio.current_task().cancel)

    try:
        async with listener:
            bridge = Bridge(
                listener,
                sink,
                discovery_timeout=config.discovery_timeout,
                announce_interval=config.announce_interval,
                deck_count=config.deck_count,
                state_paths=config.state_paths,
                verbose=verbose,
            )
            with contextlib.suppress(asyncio.CancelledError):
                await bridge.run()
    finally:
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGTERM)
    return 0


def main(argv: list[str] | None = None):  # pragma: no cover
    """Normal mode"""
    args = parse_args(argv)
    stageosc.bootstrap.set_qt_names()
    logpath = stageosc.bootstrap.setuplogging(logdir=args.logdir, rotate=True, console=True)
    logging.info("starting up v%s on %s", __VERSION__, platform.platform())

    config = stageosc.config.ConfigFile(logpath=logpath)
    if args.osc_host or args.osc_port:
        config.put(
            oschost=args.osc_host or config.oschost, oscport=args.osc_port or config.oscport
        )
    if args.timeout:
        config.discovery_timeout = args.timeout

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(config.loglevel)

    exitval = 0
    try:
        exitval = asyncio.run(amain(config, verbose=args.verbose))
    except KeyboardInterrupt:
        pass
    logging.info("shutting main down v%s", config.version)
    sys.exit(exitval)


if __name__ == "__main__":
    main()
