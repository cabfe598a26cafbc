"""tether-mcp: tethered camera control exposed over the Model Context Protocol.

Layers:
    drivers: blocking camera transports (libgphoto2 hardware, digital twin)
    devices: the tethering session (key resolution, parameter sync, capture)
    tools: MCP tool handlers driving the session
    web: optional HTTP/WebSocket dashboard API
"""

__version__ = "0.1.0"
