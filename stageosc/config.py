#!/usr/bin/env python3
"""
config file parsing/handling
"""

import contextlib
import logging
import pathlib
import sys
import time

from PySide6.QtCore import (  # pylint: disable=no-name-in-module
    QCoreApplication,
    QSettings,
    QStandardPaths,
)

import stageosc.bridge
import stageosc.oscsink
import stageosc.version
from stageosc.stagelinq import track_name_paths

LOGLEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ConfigFile:  # pylint: disable=too-many-instance-attributes
    """read and write the bridge settings"""

    def __init__(
        self,
        logpath: str | pathlib.Path | None = None,
        reset: bool = False,
        testmode: bool = False,
    ):
        self.version: str = stageosc.version.__VERSION__
        self.testmode: bool = testmode
        self.basedir: pathlib.Path = pathlib.Path(
            QStandardPaths.standardLocations(QStandardPaths.DocumentsLocation)[0],
            QCoreApplication.applicationName(),
        )
        self.logpath: pathlib.Path = self.basedir.joinpath("logs", "debug.log")
        if logpath:
            self.logpath = pathlib.Path(logpath)

        logging.info("Logpath: %s", self.logpath)

        self.qsettingsformat: QSettings.Format = QSettings.NativeFormat
        if sys.platform == "win32":
            self.qsettingsformat = QSettings.IniFormat

        self.cparser: QSettings = QSettings(
            self.qsettingsformat,
            QSettings.UserScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )
        logging.info("configuration: %s", self.cparser.fileName())

        self.oschost: str = stageosc.oscsink.DEFAULT_HOST
        self.oscport: int = stageosc.oscsink.DEFAULT_PORT
        self.discovery_timeout: float = stageosc.bridge.DISCOVERY_TIMEOUT
        self.announce_interval: float = stageosc.bridge.ANNOUNCE_INTERVAL
        self.name: str = "StageOSC"
        self.deck_count: int = stageosc.bridge.DECK_COUNT
        self.state_paths: list[str] = track_name_paths(self.deck_count)
        self.loglevel: str = "INFO"

        self._force_set_statics()
        self.defaults()
        if reset:
            self.cparser.clear()
            self._force_set_statics()
            self.save()
        else:
            self.get()

    def _force_set_statics(self) -> None:
        """make sure these are always set"""
        if self.testmode:
            self.cparser.setValue("testmode/enabled", True)

    def reset(self) -> None:
        """forcibly go back to defaults"""
        logging.debug("config reset")
        self.__init__(logpath=self.logpath, reset=True, testmode=self.testmode)  # pylint: disable=unnecessary-dunder-call

    def defaults(self) -> None:
        """default values for things"""
        logging.debug("set defaults")

        settings = QSettings(
            self.qsettingsformat,
            QSettings.SystemScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )

        settings.setValue("osc/host", self.oschost)
        settings.setValue("osc/port", self.oscport)
        settings.setValue("discovery/timeout", self.discovery_timeout)
        settings.setValue("discovery/announceinterval", self.announce_interval)
        settings.setValue("discovery/name", self.name)
        settings.setValue("decks/count", self.deck_count)
        settings.setValue("statemap/paths", self.state_paths)
        settings.setValue("settings/loglevel", self.loglevel)

    def get(self) -> None:
        """refresh values"""

        self.cparser.sync()
        self.oschost = self.cparser.value("osc/host", defaultValue=self.oschost)
        with contextlib.suppress(TypeError, ValueError):
            self.oscport = self.cparser.value("osc/port", type=int, defaultValue=self.oscport)
        with contextlib.suppress(TypeError, ValueError):
            self.discovery_timeout = self.cparser.value(
                "discovery/timeout", type=float, defaultValue=self.discovery_timeout
            )
        with contextlib.suppress(TypeError, ValueError):
            self.announce_interval = self.cparser.value(
                "discovery/announceinterval", type=float, defaultValue=self.announce_interval
            )
        self.name = self.cparser.value("discovery/name", defaultValue=self.name)
        with contextlib.suppress(TypeError, ValueError):
            self.deck_count = self.cparser.value(
                "decks/count", type=int, defaultValue=self.deck_count
            )

        # QSettings hands back a bare string for single entry lists
        paths = self.cparser.value("statemap/paths")
        if isinstance(paths, str):
            paths = [paths]
        self.state_paths = list(paths) if paths else track_name_paths(self.deck_count)

        loglevel = self.cparser.value("settings/loglevel", defaultValue=self.loglevel)
        if loglevel in LOGLEVELS:
            self.loglevel = loglevel

    def put(self, oschost: str, oscport: int) -> None:
        """Save a new OSC target"""

        self.oschost = oschost
        self.oscport = oscport

        self.save()

    def save(self) -> None:
        """save the current set"""

        self.cparser.setValue("osc/host", self.oschost)
        self.cparser.setValue("osc/port", self.oscport)
        self.cparser.setValue("discovery/timeout", self.discovery_timeout)
        self.cparser.setValue("discovery/announceinterval", self.announce_interval)
        self.cparser.setValue("discovery/name", self.name)
        self.cparser.setValue("decks/count", self.deck_count)
        self.cparser.setValue("statemap/paths", self.state_paths)
        self.cparser.setValue("settings/loglevel", self.loglevel)
        self.cparser.setValue("settings/lastsavedate", time.strftime("%Y%m%d%H%M%S"))

        self.cparser.sync()
