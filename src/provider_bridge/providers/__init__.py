import importlib
import pkgutil
from typing import Dict, Type

from .provider_interface import (
    ConnectionResult,
    Credentials,
    ProviderInterface,
    StreamRequest,
    normalize_base_url,
)

# --- Provider Plugin System ---

# Discovered adapter classes keyed by protocol name ("ollama" from ollama_provider.py)
PROVIDER_PLUGINS: Dict[str, Type[ProviderInterface]] = {}


def _register_providers():
    """
    Dynamically discovers and imports provider plugins from this directory.
    """
    package_path = __path__
    package_name = __name__

    for _, module_name, _ in pkgutil.iter_modules(package_path):
        if not module_name.endswith("_provider"):
            continue
        module = importlib.import_module(f"{package_name}.{module_name}")

        for attribute_name in dir(module):
            attribute = getattr(module, attribute_name)
            if isinstance(attribute, type) and issubclass(attribute, ProviderInterface) and attribute is not ProviderInterface:
                PROVIDER_PLUGINS[module_name.replace("_provider", "")] = attribute


_register_providers()

__all__ = [
    "PROVIDER_PLUGINS",
    "ConnectionResult",
    "Credentials",
    "ProviderInterface",
    "StreamRequest",
    "normalize_base_url",
]
