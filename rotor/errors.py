"""
Exception types shared across Rotor
"""


class RotorError(Exception):
    """Base class for supervisor errors"""


class ConfigError(RotorError):
    """Raised when configuration values are unusable"""


class AgentLaunchError(RotorError):
    """Raised when the agent subprocess cannot be started"""

    def __init__(self, message: str, command=None):
        super().__init__(message)
        self.command = command


class SignalChannelClosed(RotorError):
    """Raised when writing to a closed signal writer"""


class StateTransitionError(RotorError):
    """Raised when an invalid loop state transition is attempted"""
