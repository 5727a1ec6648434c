#!/usr/bin/env python3
"""version of stageosc"""

__VERSION__ = "0.1.0"
