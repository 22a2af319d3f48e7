"""Registry engine — errors, state machine, validation, and the lifecycle runner."""

from prefix_registry.engine.errors import ErrorCode, RegistryError
from prefix_registry.engine.state_machine import PrefixStateMachine, PrefixTrigger

__all__ = ["ErrorCode", "RegistryError", "PrefixStateMachine", "PrefixTrigger"]
