# pharmaqms/modules/__init__.py

from .audits import AuditRepository
from .batch_records import BMRRepository, MFRRepository
from .capa import CAPARepository
from .change_control import ChangeRequestRepository
from .coa import COARepository
from .deviations import DeviationRepository
from .inventory import InventoryRepository
from .ipqc import IPQCLedger
from .lims import SampleRepository
from .oos import OOSRepository
from .recalls import RecallRepository
from .risk import RiskRepository
from .stability import StabilityRepository

__all__ = [
    "AuditRepository",
    "BMRRepository",
    "CAPARepository",
    "COARepository",
    "ChangeRequestRepository",
    "DeviationRepository",
    "IPQCLedger",
    "InventoryRepository",
    "MFRRepository",
    "OOSRepository",
    "RecallRepository",
    "RiskRepository",
    "SampleRepository",
    "StabilityRepository",
]
