"""
Apps package - FastAPI services.

- signal_bridge: Signal intake, scoring, fan-out and the EA command queue
"""
