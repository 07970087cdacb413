"""Observability endpoints for shadow ledger telemetry and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from fidelio_api.observability.shadow_ledger import get_shadow_ledger_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get("/shadow-ledger", summary="Shadow ledger observability snapshot")
async def get_shadow_ledger_snapshot() -> dict[str, object]:
    """Ingestion, conversion and breakage counters collected since process start."""
    return get_shadow_ledger_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_shadow_ledger_store().snapshot()
    lines: list[str] = []

    for path, value in sorted(snapshot.ingestion.get("by_path", {}).items()):
        lines.extend(
            _format_metric("fidelio_ingestions_total", "Ingested transactions by wallet path", value, labels={"path": path})
        )
    for outcome, value in sorted(snapshot.ingestion.get("by_outcome", {}).items()):
        lines.extend(
            _format_metric(
                "fidelio_ingestion_outcomes_total",
                "Ingestion outcomes by result code",
                value,
                labels={"outcome": outcome},
            )
        )

    lines.extend(
        _format_metric("fidelio_conversions_total", "Shadow balances converted", snapshot.conversions.get("balances", 0))
    )
    lines.extend(
        _format_metric(
            "fidelio_converted_amount_total",
            "Amount moved from shadow balances into wallets",
            snapshot.conversions.get("amount", 0),
        )
    )

    for key in ("runs", "expired", "errors", "skipped"):
        lines.extend(
            _format_metric(
                f"fidelio_expiration_sweep_{key}_total",
                f"Expiration sweep {key}",
                snapshot.sweeps.get(key, 0),
            )
        )

    for merchant_id, amount in sorted(snapshot.breakage.items()):
        lines.extend(
            _format_metric(
                "fidelio_breakage_amount_total",
                "Forfeited shadow balance amount per merchant",
                amount,
                labels={"merchant_id": merchant_id},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
