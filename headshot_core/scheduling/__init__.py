from headshot_core.scheduling.dispatcher import Dispatcher
from headshot_core.scheduling.janitor import JanitorSweeper, SweepReport

__all__ = ["Dispatcher", "JanitorSweeper", "SweepReport"]
