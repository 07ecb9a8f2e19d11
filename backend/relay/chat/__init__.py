"""Real-time relay core: sessions, fan-out, rate limiting, history, presence, files.

Rooms are created implicitly on first join and live only in process memory.
Each room keeps the last 100 chat messages for replay to new joiners.
"""
from .engine import RelayEngine, get_engine, set_engine
from .router import router

__all__ = ["RelayEngine", "get_engine", "set_engine", "router"]
