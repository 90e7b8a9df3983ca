"""auth/ -- Authentication and authorization package for ThreatMap.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/, posture/, or alerts/.
api/ imports from auth/, not the other way around.
"""
