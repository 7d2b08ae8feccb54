"""
Error taxonomy for the action orchestration engine.

ValidationError is raised to the caller before any task exists. ExecutionError
and LaunchError are raised inside a provider call and converted into a failed
ActionResult at the provider boundary. NotImplementedError (builtin) marks a
provider variant that is missing a required capability and is never caught.
"""


class OrchestratorError(Exception):
    """Base class for engine errors"""


class ValidationError(OrchestratorError):
    """Bad target locator or action kind"""


class NoProviderAvailable(OrchestratorError):
    """Selection policy found no eligible provider"""

    def __init__(self, message: str = "no available providers"):
        super().__init__(message)


class ExecutionError(OrchestratorError):
    """A step of a provider's remote interaction failed"""


class LaunchError(OrchestratorError):
    """Browser session could not be created"""


class ConfigurationError(OrchestratorError):
    """Invalid configuration value"""


class InvalidTransitionError(OrchestratorError):
    """Task state machine received a transition it does not allow"""
