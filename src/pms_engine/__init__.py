"""PMS sales reconciliation from pump meter readings."""

from pms_engine.facade import OperationResult, PmsEngine

__version__ = "0.1.0"

__all__ = ["OperationResult", "PmsEngine", "__version__"]
