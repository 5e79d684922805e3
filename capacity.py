import logging
from typing import Dict, Optional

from pymongo.database import Database

from affiliations import count_active
from errors import CapacityExceeded

logger = logging.getLogger(__name__)


def can_admit(db: Database, company_name: str, package_limit: Optional[int]) -> bool:
    """True while the company has fewer active affiliations than its package allows."""
    if not package_limit:
        return False
    return count_active(db, company_name) < package_limit


def check_capacity(db: Database, hr: Dict) -> None:
    # Count and later insert are separate operations: two approvals racing
    # for the last seat can both pass.
    if not can_admit(db, hr.get("company_name") or "", hr.get("package_limit")):
        logger.info("Package limit %s reached for %s", hr.get("package_limit"), hr.get("company_name"))
        raise CapacityExceeded("Employee limit reached. Please upgrade package.")
