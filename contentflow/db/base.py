from contentflow.db.base_class import Base  # noqa: F401

# Import all the models here so that Base has them registered
# This file should NOT be imported by models.
from contentflow.models.job import Job  # noqa: F401
from contentflow.models.stage_lease import StageLease  # noqa: F401
