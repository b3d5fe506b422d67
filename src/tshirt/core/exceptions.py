"""
Custom exception hierarchy for the tshirt model.
Provides clear error categories and rich error information.
"""
from typing import Optional, Any, Dict
from dataclasses import dataclass


@dataclass
class ErrorContext:
    """Context information for errors"""
    component: Optional[str] = None
    operation: Optional[str] = None
    timestep_seconds: Optional[float] = None
    details: Optional[Dict[str, Any]] = None


class TshirtError(Exception):
    """Base exception for all tshirt errors"""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()

    def __str__(self) -> str:
        context_str = ""
        if self.context.component:
            context_str += f" [Component: {self.context.component}]"
        if self.context.operation:
            context_str += f" [Operation: {self.context.operation}]"
        if self.context.timestep_seconds is not None:
            context_str += f" [dt: {self.context.timestep_seconds}s]"

        return f"{self.__class__.__name__}: {self.message}{context_str}"


# Configuration errors
class ConfigurationError(TshirtError):
    """Configuration error"""
    pass


class ParameterError(ConfigurationError):
    """Invalid model parameters"""
    pass


# Physics model errors
class PhysicsModelError(TshirtError):
    """Base class for physics model errors"""
    pass


class InvariantViolationError(PhysicsModelError):
    """Storage or deficit outside its physical bounds"""
    pass


class ForcingError(PhysicsModelError):
    """Invalid forcing (negative input flux, non-positive timestep)"""
    pass


class WaterBalanceError(PhysicsModelError):
    """Water balance violation"""
    pass


class MassBalanceError(WaterBalanceError):
    """
    Post-hoc conservation check exceeded its tolerance.

    The timestep itself completed, so the computed state and fluxes travel
    with the error and the caller decides whether to keep them.
    """

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        report: Any = None,
        state: Any = None,
        fluxes: Any = None,
    ):
        super().__init__(message, context)
        self.report = report
        self.state = state
        self.fluxes = fluxes


# External collaborator errors
class CollaboratorError(TshirtError):
    """Partitioning, GIUH or ET collaborator failed"""
    pass


def handle_exception(exc: Exception, context: Optional[ErrorContext] = None) -> TshirtError:
    """
    Wrap generic exceptions in TshirtError hierarchy.
    Useful for hosts that want to categorize collaborator failures.
    """
    if isinstance(exc, TshirtError):
        return exc

    error_map = {
        ValueError: ParameterError,
        TypeError: CollaboratorError,
        KeyError: CollaboratorError,
        ZeroDivisionError: PhysicsModelError,
        OverflowError: PhysicsModelError,
        FloatingPointError: PhysicsModelError,
    }

    for exc_type, tshirt_exc_type in error_map.items():
        if isinstance(exc, exc_type):
            return tshirt_exc_type(str(exc), context)

    return TshirtError(str(exc), context)
