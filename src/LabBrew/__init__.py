"""LabPBR texture conversion, validation and material analysis."""

import logging as _logging

__version__ = "1.0.0"
_logging.getLogger("labpbr_pipeline").addHandler(_logging.NullHandler())

__all__ = ["__version__"]
