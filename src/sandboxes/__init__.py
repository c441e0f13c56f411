"""Hot sandbox engine.

This package contains:
- A validated, debounced record store over LangGraph stores
- The in-memory content cache and multi-view sync coordinator
- The close-time delete-or-retain lifecycle and the context that wires them
"""
