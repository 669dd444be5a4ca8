# threadloop: agent threads, tool approval, and step/workflow loops.
# Imported as `import threadloop as tl`; subpackages are reachable as tl.common, tl.agent, ...
# agent is imported before llm and usage: both build on agent.messages.

from . import common
from . import agent
from . import llm
from . import usage
from . import workflow

__version__ = "0.1.0"

__all__ = ["common", "agent", "llm", "usage", "workflow", "__version__"]
