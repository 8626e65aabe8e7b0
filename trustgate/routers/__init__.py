"""
API Routers

- data.py - Telemetry submission
- events.py - History and threshold views
- live.py - WebSocket live updates
"""

from . import data, events, live
