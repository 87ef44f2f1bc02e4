from .base import Notifier
from .console import ConsoleNotifier
from .factory import get_notifier, reset_notifier
from .routing import RoutingNotifier

__all__ = ["ConsoleNotifier", "Notifier", "RoutingNotifier", "get_notifier", "reset_notifier"]
