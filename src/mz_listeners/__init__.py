"""mz-listeners.

Short-lived filtered listeners on a streaming SQL engine:
- a registrar that creates a filtered view plus a Kafka sink per listener
- a trigger consumer that tears each listener down once it has fired
- configuration loaded from `.env` and structured JSON logging
"""

__version__ = "0.1.0"

from mz_listeners.service.config import ListenerSettings

__all__ = ["__version__", "ListenerSettings"]
