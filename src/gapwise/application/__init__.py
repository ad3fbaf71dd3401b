# Application Package
from .catalog import CatalogService
from .service import LearningService, SubmissionOutcome
from .stability_model import StabilityModel

__all__ = ["CatalogService", "LearningService", "StabilityModel", "SubmissionOutcome"]
