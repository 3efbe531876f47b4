"""Process timezone bootstrap.

On Android the interpreter usually starts with UTC as local time. The device
timezone is read from the system property store and applied through TZ so
that local-time formatting (topic titles, scheduled end times) matches the
device. Other platforms already resolve the system timezone.
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import time
from typing import Optional

from shared.logging.logger import get_logger

log = get_logger("shared.timezone")


def _is_android() -> bool:
    if sys.platform == "android":
        return True
    return "ANDROID_ROOT" in os.environ and "ANDROID_DATA" in os.environ


def detect_android_timezone() -> Optional[str]:
    getprop = shutil.which("getprop")
    if not getprop:
        return None

    try:
        result = subprocess.run(
            [getprop, "persist.sys.timezone"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError) as e:
        log.debug(f"getprop failed: {e}")
        return None

    name = (result.stdout or "").strip()
    return name or None


def init_timezone() -> None:
    if not _is_android():
        return

    name = detect_android_timezone()
    if not name:
        return

    os.environ["TZ"] = name
    if hasattr(time, "tzset"):
        time.tzset()
    log.info(f"Local timezone set to {name}")
