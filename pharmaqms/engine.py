# pharmaqms/engine.py

"""
Wires one store, one audit ledger, one event bus and the notification
side-channel into every module repository.
"""

import logging
from typing import Dict, Optional

from .archive import export_bytes, import_all
from .audit_logger import AuditLogger
from .auth import CredentialVerifier, PasswordVerifier, User, UserDirectory
from .config import AppConfig
from .errors import ErrorKind, Result
from .events import EventBus
from .modules import (AuditRepository, BMRRepository, CAPARepository, COARepository, ChangeRequestRepository,
                      DeviationRepository, InventoryRepository, IPQCLedger, MFRRepository, OOSRepository,
                      RecallRepository, RiskRepository, SampleRepository, StabilityRepository)
from .notifications import NotificationService
from .repository import RecordRepository
from .signature import SignatureGate, SignatureMeaning
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class QMSEngine:

    def __init__(self, store: KeyValueStore, verifier: CredentialVerifier, config: Optional[AppConfig] = None):
        config = config or AppConfig()
        self.config = config
        self.store = store
        self.verifier = verifier
        self.users = UserDirectory(config.users, verifier)
        self.audit = AuditLogger(store, max_entries=config.audit_max_entries)
        self.bus = EventBus()
        self.notifications = NotificationService(store, max_entries=config.notifications_max_entries)
        self.notifications.subscribe(self.bus)

        args = (store, self.audit)
        self.deviations = DeviationRepository(*args, bus=self.bus)
        self.capa = CAPARepository(*args, bus=self.bus)
        self.audits = AuditRepository(*args, bus=self.bus)
        self.risk = RiskRepository(*args, bus=self.bus)
        self.oos = OOSRepository(*args, bus=self.bus)
        self.recalls = RecallRepository(*args, bus=self.bus)
        self.changes = ChangeRequestRepository(*args, bus=self.bus)
        self.stability = StabilityRepository(*args, bus=self.bus)
        self.inventory = InventoryRepository(*args, bus=self.bus)
        self.lims = SampleRepository(*args, bus=self.bus)
        self.coa = COARepository(*args, bus=self.bus)
        self.ipqc = IPQCLedger(*args, bus=self.bus, max_entries=config.ipqc_max_entries)
        self.mfr = MFRRepository(*args, bus=self.bus)
        self.bmr = BMRRepository(store, self.audit, self.mfr, bus=self.bus)

    @classmethod
    def with_passwords(cls, store: KeyValueStore, config: AppConfig, passwords: Optional[Dict[str, str]] = None,
                       default_password: Optional[str] = None) -> "QMSEngine":
        return cls(store, PasswordVerifier(passwords, default_password), config)

    @property
    def repositories(self) -> Dict[str, RecordRepository]:
        """Every repository keyed by the page title it is shown under."""
        return {
            "Deviations": self.deviations,
            "CAPA": self.capa,
            "Audits": self.audits,
            "Risk Register": self.risk,
            "OOS": self.oos,
            "Recalls": self.recalls,
            "Change Control": self.changes,
            "Stability": self.stability,
            "Inventory": self.inventory,
            "LIMS": self.lims,
            "COA": self.coa,
            "IPQC": self.ipqc,
            "MFR": self.mfr,
            "BMR": self.bmr,
        }

    def signature_gate(self, action_description: str, user: User,
                       default_meaning: SignatureMeaning = SignatureMeaning.AUTHORSHIP) -> SignatureGate:
        return SignatureGate(action_description, user, self.verifier, default_meaning).open()

    def dashboard_summary(self) -> Dict[str, Dict[str, int]]:
        """Record counts per module per status."""
        return {name: repo.status_counts() for name, repo in self.repositories.items()}

    def open_items(self) -> int:
        total = 0
        for repo in self.repositories.values():
            machine = repo.spec.machine
            if machine is None:
                continue
            total += sum(n for status, n in repo.status_counts().items() if not machine.is_terminal(status))
        return total

    def export_archive(self, user: User) -> bytes:
        payload = export_bytes(self.store, self.config.version)
        self.audit.log_action(user, "DATA_EXPORTED", "System", "Full system archive exported")
        return payload

    def restore_archive(self, document, user: User) -> Result:
        """Admin-only bulk restore. The restore is appended to the restored audit trail."""
        if not user.is_admin:
            return Result.failure(ErrorKind.UNAUTHORIZED, "Only administrators may restore an archive.")
        result = import_all(self.store, document)
        if result.ok:
            self.audit.log_action(user, "DATA_RESTORED", "System",
                                  f"Restored {len(result.value.restored)} collections from archive")
        return result
