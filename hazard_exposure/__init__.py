"""
Hazard Exposure Assessment
==========================

Zonal aggregation of population exposure to natural hazards per
administrative zone, province and nation.
"""

__version__ = "1.0.0"
