GEOFENCE_RADIUS_M = 100.0
TRANSITION_RETRY_LIMIT = 3
ASSIGNMENT_RETRY_LIMIT = 5
OUTBOX_MAX_ATTEMPTS = 5
OUTBOX_BATCH_SIZE = 100
AUTO_ASSIGN_DEFAULT = False


def env_flag(raw, default: bool = False) -> bool:
    if raw is None:
        return default
    return str(raw).strip().lower() in ('1', 'true', 'yes', 'on')
