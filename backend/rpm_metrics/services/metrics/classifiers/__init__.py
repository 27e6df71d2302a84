from rpm_metrics.services.metrics.classifiers.alerts import AlertClassifier
from rpm_metrics.services.metrics.classifiers.base import (
    BucketStat,
    ClassificationResult,
    EvidenceItem,
)
from rpm_metrics.services.metrics.classifiers.blood_pressure import BloodPressureClassifier
from rpm_metrics.services.metrics.classifiers.glucose import GlucoseClassifier
from rpm_metrics.services.metrics.classifiers.oximeter import OximeterClassifier
from rpm_metrics.services.metrics.classifiers.weight import WeightClassifier

__all__ = [
    "AlertClassifier",
    "BloodPressureClassifier",
    "BucketStat",
    "ClassificationResult",
    "EvidenceItem",
    "GlucoseClassifier",
    "OximeterClassifier",
    "WeightClassifier",
]
