# pharmaqms/modules/ipqc.py

"""
IPQC ledger: one entry per in-process test with its readings and statistics.

Entries have no lifecycle; the ledger keeps the newest 500 entries.
"""

from typing import Dict, List

from .. import ipqc
from ..auth import User
from ..compliance import compliance_statement
from ..errors import ErrorKind, Result
from ..repository import ModuleSpec, RecordRepository

DEFAULT_MAX_ENTRIES = 500


def make_spec(max_entries: int = DEFAULT_MAX_ENTRIES) -> ModuleSpec:
    return ModuleSpec(
        name="IPQC",
        label="IPQC Test",
        storage_key="master_ipqc_ledger_v3",
        id_prefix="IPQC",
        number_prefix="IPQC",
        number_width=4,
        required_fields=("batchNumber", "productName", "testName"),
        search_fields=("number", "batchNumber", "productName", "testName"),
        protected_fields=("readings", "lsl", "usl", "mean", "sd", "cpk", "verdict"),
        create_action="IPQC_LOGGED",
        max_records=max_entries,
    )


class IPQCLedger(RecordRepository):

    def __init__(self, store, audit, bus=None, max_entries: int = DEFAULT_MAX_ENTRIES):
        super().__init__(make_spec(max_entries), store, audit, bus)

    def log_test(self, payload: Dict, readings, lsl: float, usl: float, user: User) -> Result:
        """
        Computes mean, SD and Cpk for the readings and commits the entry.
        Fewer than three numeric readings are refused.
        """
        values = ipqc.parse_readings(readings)
        if lsl >= usl:
            return Result.failure(ErrorKind.VALIDATION, "Lower specification limit must be below the upper limit.")
        stats = ipqc.process_stats(values, lsl, usl)
        if stats is None:
            return Result.failure(ErrorKind.VALIDATION,
                                  f"At least {ipqc.MIN_READINGS} numeric readings are required "
                                  f"({len(values)} supplied).")
        entry = dict(payload)
        entry.update({
            "readings": values,
            "lsl": lsl,
            "usl": usl,
            "mean": f"{stats.mean:.3f}",
            "sd": f"{stats.sd:.4f}",
            "cpk": f"{stats.cpk:.2f}",
            "verdict": stats.verdict,
        })
        return self.create(entry, user, details=f"{entry.get('testName')} on batch {entry.get('batchNumber')}: "
                                                f"{stats.verdict} (Cpk {stats.cpk:.2f})")

    def batch_entries(self, batch_number: str) -> List[Dict]:
        return self.list(predicate=lambda e: e.get("batchNumber") == batch_number)

    def batch_summary(self, batch_number: str) -> Dict:
        """Per-batch roll-up: the batch complies only if every logged test passed."""
        entries = self.batch_entries(batch_number)
        lines = [{"t": e.get("testName"), "status": "pass" if e.get("verdict") == "PASS" else "fail"}
                 for e in entries]
        return {
            "batchNumber": batch_number,
            "tests": len(entries),
            "failed": sum(1 for e in entries if e.get("verdict") == "FAIL"),
            "marginal": sum(1 for e in entries if e.get("verdict") == "MARGINAL"),
            "statement": compliance_statement(lines) if lines else "NO DATA",
        }
