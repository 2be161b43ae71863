"""Schema exports."""

from .config import ProbeConfigDocument, load_probe_config, save_probe_config
from .events import OutcomeCategory, ProbeEvent, ValidationStatus
from .probe import ITEM_KEY_FIELD, Principal, ProbeQuery, credential_key_for

__all__ = [
    "ITEM_KEY_FIELD",
    "OutcomeCategory",
    "Principal",
    "ProbeConfigDocument",
    "ProbeEvent",
    "ProbeQuery",
    "ValidationStatus",
    "credential_key_for",
    "load_probe_config",
    "save_probe_config",
]
