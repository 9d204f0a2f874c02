"""
shiprun - Run adapter for image builds

Accepts pipeline Runs that reference a Build, delegates them to BuildRuns and
mirrors the BuildRun outcome back onto the Run.
"""

__version__ = "0.1.0"


__all__ = ["ShiprunConfig", "load_config", "get_shiprun_home"]

from .config import ShiprunConfig, load_config, get_shiprun_home
