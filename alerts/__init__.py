"""alerts/ -- Alert synthesis, lifecycle transitions and delivery for ThreatMap.

Layer rule: alerts/ imports from core/ and posture/. It does NOT import
from api/ or auth/.
"""
