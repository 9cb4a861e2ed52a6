from browser_pilot.agent.memory.service import Memory
from browser_pilot.agent.memory.views import MemoryConfig

__all__ = ['Memory', 'MemoryConfig']
