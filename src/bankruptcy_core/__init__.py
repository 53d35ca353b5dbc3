"""Bankruptcy Core - Income reconciliation and Chapter 7 means test."""

__version__ = "0.1.0"

from .config import EngineConfig
from .means_test import MeansTestCalculator
from .normalizer import ExtractionNormalizer
from .reconciler import IncomeReconciler
from .repository import InMemoryIncomeSourceRepository, IncomeSourceRepository
from .service import BankruptcyEngineService
from .models import IncomeSummary, MeansTestInput, MeansTestResult

__all__ = [
    "EngineConfig",
    "MeansTestCalculator",
    "ExtractionNormalizer",
    "IncomeReconciler",
    "InMemoryIncomeSourceRepository",
    "IncomeSourceRepository",
    "BankruptcyEngineService",
    "IncomeSummary",
    "MeansTestInput",
    "MeansTestResult",
]
