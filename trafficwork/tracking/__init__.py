from .statuses import ConversionStatus
from .postback import PostbackDispatcher, build_postback_url
from .tracker import ConversionTracker
from .sweeper import RetrySweeper, SweepResult

__all__ = [
    "ConversionStatus",
    "PostbackDispatcher",
    "build_postback_url",
    "ConversionTracker",
    "RetrySweeper",
    "SweepResult",
]
