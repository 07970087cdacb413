from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from threading import Lock
from typing import Dict, Mapping


@dataclass
class ShadowLedgerSnapshot:
    ingestion: Dict[str, Dict[str, int]]
    conversions: Dict[str, float]
    sweeps: Dict[str, int]
    breakage: Dict[str, float]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ingestion": {key: dict(value) for key, value in self.ingestion.items()},
            "conversions": dict(self.conversions),
            "sweeps": dict(self.sweeps),
            "breakage": dict(self.breakage),
        }


class ShadowLedgerObservabilityStore:
    """Collect ingestion, conversion and breakage telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ingestion_paths: Dict[str, int] = defaultdict(int)
        self._ingestion_outcomes: Dict[str, int] = defaultdict(int)
        self._conversions: Dict[str, int] = defaultdict(int)
        self._converted_amount = Decimal("0")
        self._sweeps: Dict[str, int] = defaultdict(int)
        self._breakage: Dict[str, Decimal] = defaultdict(Decimal)

    def record_ingestion(self, path: str, outcome: str) -> None:
        with self._lock:
            self._ingestion_paths[path or "unknown"] += 1
            self._ingestion_outcomes[outcome or "unknown"] += 1

    def record_ingestion_failure(self, outcome: str) -> None:
        """Count a rejected ingestion; the path counter only tracks credited transactions."""

        with self._lock:
            self._ingestion_outcomes[outcome or "unknown"] += 1

    def record_conversion(self, converted: int, amount: Decimal) -> None:
        with self._lock:
            self._conversions["runs"] += 1
            self._conversions["balances"] += converted
            self._converted_amount += amount

    def record_sweep(
        self,
        *,
        expired: int,
        errors: int,
        skipped: int,
        breakage_by_merchant: Mapping[str, Decimal],
    ) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            self._sweeps["expired"] += expired
            self._sweeps["errors"] += errors
            self._sweeps["skipped"] += skipped
            for merchant_id, amount in breakage_by_merchant.items():
                self._breakage[merchant_id] += amount

    def snapshot(self) -> ShadowLedgerSnapshot:
        with self._lock:
            ingestion = {
                "by_path": dict(self._ingestion_paths),
                "by_outcome": dict(self._ingestion_outcomes),
            }
            conversions = {
                "runs": float(self._conversions.get("runs", 0)),
                "balances": float(self._conversions.get("balances", 0)),
                "amount": float(self._converted_amount),
            }
            sweeps = dict(self._sweeps)
            breakage = {key: float(value) for key, value in self._breakage.items()}
        return ShadowLedgerSnapshot(
            ingestion=ingestion,
            conversions=conversions,
            sweeps=sweeps,
            breakage=breakage,
        )

    def reset(self) -> None:
        with self._lock:
            self._ingestion_paths.clear()
            self._ingestion_outcomes.clear()
            self._conversions.clear()
            self._converted_amount = Decimal("0")
            self._sweeps.clear()
            self._breakage.clear()


_STORE = ShadowLedgerObservabilityStore()


def get_shadow_ledger_store() -> ShadowLedgerObservabilityStore:
    return _STORE


__all__ = ["get_shadow_ledger_store", "ShadowLedgerObservabilityStore", "ShadowLedgerSnapshot"]
