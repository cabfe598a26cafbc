"""Camera transports and driver configuration.

Supports two modes:
- HARDWARE: libgphoto2 over USB/PTP
- DIGITAL_TWIN: Simulated camera bodies for testing without hardware

Use drivers.config to switch modes:
    from tether_mcp.drivers import config
    config.use_digital_twin()  # or config.use_hardware()
"""

from tether_mcp.drivers import cameras, config
from tether_mcp.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    TimingProfile,
    configure,
    get_factory,
    set_capture_dir,
    use_digital_twin,
    use_hardware,
)

__all__ = [
    # Submodules
    "cameras",
    "config",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "TimingProfile",
    "get_factory",
    "configure",
    "use_hardware",
    "use_digital_twin",
    "set_capture_dir",
]
