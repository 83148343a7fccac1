"""Engine assembly and supervision."""
from .factory import build_engine, build_sinks, check_chain, run_engine
from .supervisor import EngineSupervisor

__all__ = [
    "EngineSupervisor",
    "build_engine",
    "build_sinks",
    "check_chain",
    "run_engine",
]
