from contentflow.models.job import Job
from contentflow.models.stage_lease import StageLease

__all__ = ["Job", "StageLease"]
