"""Fee calculation."""

from permitflow.fees.engine import FeeEngine
from permitflow.fees.models import FeeEstimate, FeeLineItem

__all__ = ["FeeEngine", "FeeEstimate", "FeeLineItem"]
