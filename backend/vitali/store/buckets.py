"""
Vitali Backend — Bucket Catalog
=================================

The fixed set of state buckets the telehealth routes share, with their
hard-coded defaults. Names are also the durable `app_state.bucket` keys, so
renaming one orphans its stored snapshot.
"""

from typing import Any, NamedTuple, Tuple

from vitali.store.registry import BucketKind


class BucketSpec(NamedTuple):
    name: str
    kind: BucketKind
    default: Any = None


USERS = "users"
PATIENT_PROFILES = "patient_profiles"
PATIENT_BIOMETRICS = "patient_biometrics"
TRIAGE_SESSIONS = "triage_sessions"
PATIENT_TRIAGE_DATA = "patient_triage_data"
PATIENT_INSIGHTS = "patient_insights"
CONSULTATION_NOTES = "consultation_notes"
CONSULTATION_HISTORY = "consultation_history"
CONSULTATION_MESSAGES = "consultation_messages"
ACTIVE_CALLS = "active_calls"

# Demo patient shipped with every fresh deployment
_DEMO_PATIENT = {
    "id": "1",
    "name": "Sarah Johnson",
    "age": 32,
    "email": "sarah.johnson@example.com",
}

DEFAULT_BUCKETS: Tuple[BucketSpec, ...] = (
    BucketSpec(USERS, BucketKind.SEQUENCE),
    BucketSpec(PATIENT_PROFILES, BucketKind.MAPPING, {"1": _DEMO_PATIENT}),
    BucketSpec(PATIENT_BIOMETRICS, BucketKind.MAPPING),
    BucketSpec(TRIAGE_SESSIONS, BucketKind.MAPPING),
    BucketSpec(PATIENT_TRIAGE_DATA, BucketKind.MAPPING),
    BucketSpec(PATIENT_INSIGHTS, BucketKind.MAPPING),
    BucketSpec(CONSULTATION_NOTES, BucketKind.MAPPING),
    # patient id -> list of completed consultations
    BucketSpec(CONSULTATION_HISTORY, BucketKind.MAPPING),
    # patient id -> message thread
    BucketSpec(CONSULTATION_MESSAGES, BucketKind.MAPPING),
    # video room name -> call info
    BucketSpec(ACTIVE_CALLS, BucketKind.MAPPING),
)
