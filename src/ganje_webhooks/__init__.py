"""
Ganje Webhook Dispatcher

Notifies external HTTP endpoints about artifact lifecycle events
happening inside a Ganje artifact repository.
"""

__version__ = "0.1.0"
__author__ = "Ganje Team"
__license__ = "MIT"

from .config.settings import Config, load_config
from .service import WebhookDispatcherService
from .webhooks import Dispatcher, Event, EventKind, Subscription

__all__ = [
    "WebhookDispatcherService",
    "Dispatcher",
    "Event",
    "EventKind",
    "Subscription",
    "Config",
    "load_config",
    "__version__",
    "__author__",
    "__license__",
]
