"""posture/ -- Persistence and mutation rules for ThreatMap entities.

Layer rule: posture/ imports from core/ only. It does NOT import from api/,
auth/, or alerts/. Alert creation is reached through the notifier object the
caller passes in, never through a direct import.
"""
