from importlib.metadata import PackageNotFoundError, version

from bidfill.fill.engine import FillEngine, apply_replacement
from bidfill.models import ReplacementOutcome, ReplacementRequest, Strategy
from bidfill.pipeline import TemplateFiller, apply_proposals

try:
    __version__ = version("bidfill")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "FillEngine",
    "TemplateFiller",
    "ReplacementRequest",
    "ReplacementOutcome",
    "Strategy",
    "apply_replacement",
    "apply_proposals",
    "__version__",
]
