# Package init for app.models
from .base import Base as Base  # explicit re-export
from .event import Event as Event
from .event import EventViewer as EventViewer
from .event import Photo as Photo
from .event import PhotoComment as PhotoComment
from .event import PhotoLike as PhotoLike
from .logging import AppErrorLog as AppErrorLog
