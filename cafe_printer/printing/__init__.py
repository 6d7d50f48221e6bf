"""
Printing subsystem for Cafe Printer.

This package groups the print pipeline:

- raster: photo -> dithered 1-bit bitmap (Pillow)
- encoder: ESC/POS command builder
- compose: PrintJob -> command buffer
- transport: USB, network, and spooler byte sinks
- worker: FIFO queue, single-consumer scheduler, job registry

For convenience, common names are re-exported for easy import.
"""

from .compose import *
from .encoder import *
from .errors import *
from .jobs import *
from .raster import *
from .worker import *
