#!/usr/bin/env python3
"""StagelinQ to OSC bridge"""

from stageosc.version import __VERSION__ as __version__

__all__ = ["__version__"]
