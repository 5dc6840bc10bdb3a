"""Clinic service - clinic name normalization"""

import logging

from sqlalchemy.orm import Session

from ...models import Clinic
from ...shared.validators import is_slug

logger = logging.getLogger(__name__)


class ClinicService:
    """Maps URL slugs (e.g. "downtown-physio") to canonical clinic names"""

    def __init__(self, db: Session):
        self.db = db

    def slug_to_clinic_name(self, value: str) -> str:
        """
        Canonical clinic name for a slug or name.

        A known slug maps to its clinic's name, a known name is returned as is,
        and anything else is assumed to already be a clinic name.
        """
        value = (value or "").strip()
        if not value:
            return value

        if is_slug(value):
            clinic = self.db.query(Clinic).filter(Clinic.slug == value).first()
            if clinic:
                return clinic.name

        clinic = self.db.query(Clinic).filter(Clinic.name == value).first()
        if clinic:
            return clinic.name

        logger.debug(f"No clinic registered for '{value}', using it as the clinic name")
        return value
