from .api import PackageApi
from .autosave import AutoSaveScheduler
from .config import EditorConfig, load_editor_config
from .drag import DragController, DragState, DropOutcome
from .errors import (
    AuthorizationError,
    EditorError,
    NetworkError,
    NotFound,
    ServerError,
    ValidationError,
)
from .identifiers import DragId, Kind, strip_tag, tag_with_kind
from .models import Package, Question, Round, RoundQuestion
from .notifications import Notification, Notifier
from .sync_client import AddQuestionContext, PackageSyncClient

__all__ = [
    "PackageApi",
    "AutoSaveScheduler",
    "EditorConfig",
    "load_editor_config",
    "DragController",
    "DragState",
    "DropOutcome",
    "EditorError",
    "ValidationError",
    "NetworkError",
    "ServerError",
    "AuthorizationError",
    "NotFound",
    "DragId",
    "Kind",
    "strip_tag",
    "tag_with_kind",
    "Package",
    "Question",
    "Round",
    "RoundQuestion",
    "Notification",
    "Notifier",
    "AddQuestionContext",
    "PackageSyncClient",
]
