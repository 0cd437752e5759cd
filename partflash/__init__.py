"""partflash - Partition flash orchestration for fastboot devices.

This package sequences device mode transitions, plans partition flashes
from local images, flash scripts and OTA payloads, tracks progress and
applies post-flash policies (FRP erase, data wipe, reboot).
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
