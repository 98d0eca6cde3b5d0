"""Classification engine over the Harmonized Tariff Schedule."""

from tariffsense.tariff.engine import ClassificationEngine, classify
from tariffsense.tariff.models import ClassificationResult, DutyRateModel

__all__ = ["ClassificationEngine", "ClassificationResult", "DutyRateModel", "classify"]
