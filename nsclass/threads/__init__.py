"""
Threads that make up the operator runtime
"""

# Local
from .base import ThreadBase
from .timer import TimerEvent, TimerThread
from .watch import WatchThread
from .worker import WorkerThread
