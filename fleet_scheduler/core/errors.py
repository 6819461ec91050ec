# fleet_scheduler/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class SchedulerError(Exception):
    """Base class for all scheduler errors."""
    pass


# -----------------------------
# Validation / Domain Errors
# -----------------------------

class ConfigurationError(SchedulerError):
    """Invalid settings or desired spec."""
    pass


class InvalidSlotTransition(SchedulerError):
    """Illegal slot state transition attempted."""
    pass


class SlotNotFound(SchedulerError):
    pass


class DuplicateTaskBinding(SchedulerError):
    """Task already bound elsewhere, or slot not free for a new binding."""
    pass


# -----------------------------
# Persistence Errors
# -----------------------------

class PersistenceError(SchedulerError):
    pass


class StoreUnavailableError(PersistenceError):
    """Persistent store could not be reached."""
    pass


# -----------------------------
# Resource Manager Errors
# -----------------------------

class ResourceManagerUnavailable(SchedulerError):
    """Call issued while the resource manager is disconnected."""
    pass
