"""
Swarm Engine Web Surface - task board REST API and notification WebSocket
"""

__version__ = "1.0.0"
