"""Database models - re-exports all models.

Import from here:  from leadminer.models import Company, ...
Or from submodules: from leadminer.models.crm import Company
"""

from .base import Base  # noqa: F401

# CRM: Companies, KDMs, Signals
from .crm import Company, DecisionMaker, Signal  # noqa: F401

# Mining sessions & API usage
from .mining import ApiUsage, MiningProgress  # noqa: F401
