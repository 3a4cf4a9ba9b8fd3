from .bus import EventBus
from .models import StreamEvent, Topic

__all__ = ["EventBus", "StreamEvent", "Topic"]
