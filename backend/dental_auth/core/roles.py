"""Staff roles used for authorization decisions."""

from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    DENTIST = "dentist"
    SECRETARY = "secretary"
