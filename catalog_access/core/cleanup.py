# catalog_access/core/cleanup.py
import logging
from dataclasses import dataclass

from catalog_access.core.clock import utcnow
from catalog_access.repositories.storage import Storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CleanupReport:
    tokens: int
    otps: int
    sessions: int


def run_cleanup(storage: Storage) -> CleanupReport:
    """
    Delete expired OTP challenges and server sessions.

    Access tokens never expire, so their sweep always reports 0.
    Triggered opportunistically by the cleanup middleware in main.py.
    """
    now = utcnow()
    with storage.transaction():
        report = CleanupReport(
            tokens=storage.tokens.cleanup_expired(),
            otps=storage.otps.cleanup_expired(now),
            sessions=storage.sessions.cleanup_expired(now),
        )

    if report.otps or report.sessions:
        logger.info(
            "Cleanup removed %s expired OTPs and %s expired sessions",
            report.otps,
            report.sessions,
        )
    return report
