# offsite_api/services/side_effects.py
"""
Fire-and-forget wrapper for downstream calls (notifications, storage, email).

Run these only after the primary transition has been committed. A failure is
logged with its traceback and any half-written session state is rolled back,
so it can never undo or block the decision that triggered it.
"""
import logging

from offsite_api.extensions import db

log = logging.getLogger(__name__)


def best_effort(label: str, fn, *args, **kwargs):
    """Call fn(*args, **kwargs); return its result, or None if it raised."""
    try:
        return fn(*args, **kwargs)
    except Exception:
        log.warning("best-effort step %r failed", label, exc_info=True)
        try:
            db.session.rollback()
        except Exception:
            log.exception("rollback after failed step %r also failed", label)
        return None
