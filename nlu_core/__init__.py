"""
NLU Core - Per-bot, per-language NLU model lifecycle
"""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

# Static analyzers don't infer exports provided via `__getattr__`.
if TYPE_CHECKING:
    from typing import Any

    NLUApplication: Any
    NLUConfig: Any
    NLUPresets: Any
    BotConfig: Any
    DefinitionsRepository: Any

    def create_application(*args: Any, **kwargs: Any) -> Any: ...


# Lazy imports so `import nlu_core` does not pull in torch
def __getattr__(name):
    if name in {"NLUApplication", "create_application"}:
        from nlu_core.core import application

        return getattr(application, name)
    elif name in {"NLUConfig", "NLUPresets"}:
        from nlu_core import configs

        return getattr(configs, name)
    elif name == "BotConfig":
        from nlu_core.core.schema import BotConfig

        return BotConfig
    elif name == "DefinitionsRepository":
        from nlu_core.core.definitions import DefinitionsRepository

        return DefinitionsRepository
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")


__all__ = [
    "NLUApplication",
    "create_application",
    "NLUConfig",
    "NLUPresets",
    "BotConfig",
    "DefinitionsRepository",
    "__version__",
]
