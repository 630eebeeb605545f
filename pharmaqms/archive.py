# pharmaqms/archive.py

"""Whole-system backup and restore of every persisted collection."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from .audit_logger import AUDIT_STORAGE_KEY
from .errors import ErrorKind, Result
from .notifications import NOTIFICATIONS_KEY, PREFS_KEY
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

METADATA_KEYS = ("export_date", "app_version")

STORAGE_KEYS = (
    "master_coa_records_pro_v3",
    AUDIT_STORAGE_KEY,
    "pharma_risk_register_v1",
    "pharma_stability_v1",
    "master_ipqc_ledger_v3",
    "master_lims_samples",
    "pharma_audit_records_v1",
    "pharma_capa_v4",
    "pharma_recalls_v1",
    "pharma_inventory_v2",
    "pharma_oos_records_v1",
    "pharma_deviations_v1",
    "pharma_change_requests_v1",
    "master_mfr_vault_v8",
    "active_bmr_vault_v8",
    NOTIFICATIONS_KEY,
    PREFS_KEY,
)


@dataclass
class ImportReport:
    restored: List[str] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)


def export_all(store: KeyValueStore, app_version: str) -> Dict[str, Any]:
    """
    Bundles every known collection. Values are parsed JSON where possible,
    otherwise the raw stored string.
    """
    data: Dict[str, Any] = {}
    for key in STORAGE_KEYS:
        raw = store.get(key)
        if not raw:
            continue
        try:
            data[key] = json.loads(raw)
        except ValueError:
            data[key] = raw
    data["export_date"] = datetime.now(timezone.utc).isoformat()
    data["app_version"] = app_version
    logger.info(f"Exported {len(data) - len(METADATA_KEYS)} collections")
    return data


def export_bytes(store: KeyValueStore, app_version: str) -> bytes:
    return json.dumps(export_all(store, app_version), indent=2).encode("utf-8")


def import_all(store: KeyValueStore, document: Dict[str, Any]) -> Result:
    """
    Overwrites each known key present in the backup. Keys this system does not
    know about are skipped and listed in the report.
    """
    if not isinstance(document, dict):
        return Result.failure(ErrorKind.VALIDATION, "Restoration failed. Invalid archive format.")
    report = ImportReport()
    for key, value in document.items():
        if key in METADATA_KEYS:
            continue
        if key not in STORAGE_KEYS:
            report.ignored.append(key)
            continue
        store.set(key, value if isinstance(value, str) else json.dumps(value))
        report.restored.append(key)
    if report.ignored:
        logger.warning(f"Archive import ignored unknown keys: {', '.join(report.ignored)}")
    logger.info(f"Restored {len(report.restored)} collections from archive "
                f"(app_version {document.get('app_version', 'unknown')})")
    return Result.success(report)


def load_archive(uploaded_file) -> Result:
    """Parses an uploaded backup file."""
    try:
        document = json.load(uploaded_file)
    except ValueError as e:
        return Result.failure(ErrorKind.VALIDATION, f"Restoration failed. Invalid archive format: {e}")
    return Result.success(document)
