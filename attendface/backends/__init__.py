"""Backend implementations and pipeline wiring.

Use the factory module to create components from a ``Config``.
"""

from attendface.backends.factory import (
    PipelineComponents,
    create_analyzer,
    create_components,
)

__all__ = [
    "PipelineComponents",
    "create_analyzer",
    "create_components",
]
