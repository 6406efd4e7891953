from typing import TYPE_CHECKING

from .models import (
    AiModel,
    AuthType,
    ImagePart,
    ImageUrlPart,
    ProviderConfig,
    ProviderMessage,
    ProviderType,
    ReasoningEffort,
    Role,
    TextPart,
)
from .streaming_event import Connected, Content, Done, Error, KeepAlive, StreamingEvent

# ChatClient and PROVIDER_PLUGINS trigger the adapter plugin scan, so they
# are lazy-loaded via __getattr__
if TYPE_CHECKING:
    from .client import ChatClient
    from .providers import PROVIDER_PLUGINS

__all__ = [
    "ChatClient",
    "PROVIDER_PLUGINS",
    "AiModel",
    "AuthType",
    "ImagePart",
    "ImageUrlPart",
    "ProviderConfig",
    "ProviderMessage",
    "ProviderType",
    "ReasoningEffort",
    "Role",
    "TextPart",
    "Connected",
    "Content",
    "Done",
    "Error",
    "KeepAlive",
    "StreamingEvent",
]


def __getattr__(name):
    """Lazy-load ChatClient and PROVIDER_PLUGINS to speed up module import."""
    if name == "ChatClient":
        from .client import ChatClient
        return ChatClient
    if name == "PROVIDER_PLUGINS":
        from .providers import PROVIDER_PLUGINS
        return PROVIDER_PLUGINS
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
