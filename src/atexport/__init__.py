__version__ = '1.0.0'

from .errors import AtExportError, CarFormatError, ExportCancelled, NoSaveTargetError
from .settings import ExportSettings
from .exporter import Exporter
