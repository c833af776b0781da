# offsite_api/services/anomaly.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from flask import current_app

from offsite_api.extensions import db
from offsite_api.models.material import MaterialRequest, MaterialRequestStatus

# statuses that count as historical usage
_BASELINE_STATUSES = (MaterialRequestStatus.APPROVED, MaterialRequestStatus.PENDING)


@dataclass(frozen=True)
class AnomalyResult:
    is_anomaly: bool
    reason: Optional[str] = None
    average_usage: Optional[float] = None

    def to_dict(self):
        return {"is_anomaly": self.is_anomaly, "reason": self.reason, "average_usage": self.average_usage}


def _round_int(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def detect(material_id: str, proposed_quantity, project_id: Optional[int] = None,
           now: Optional[datetime] = None) -> AnomalyResult:
    """
    Compare a proposed quantity with the trailing-window mean for the same
    material (optionally scoped to one project). Advisory only: the caller
    stores the verdict next to the request and never blocks on it.
    """
    cfg = current_app.config
    now = now or datetime.utcnow()
    since = now - timedelta(days=cfg["ANOMALY_WINDOW_DAYS"])

    q = db.session.query(MaterialRequest.quantity, MaterialRequest.unit).filter(
        MaterialRequest.material_id == material_id,
        MaterialRequest.created_at >= since,
        MaterialRequest.status.in_(_BASELINE_STATUSES),
    )
    if project_id is not None:
        q = q.filter(MaterialRequest.project_id == project_id)
    rows = q.order_by(MaterialRequest.created_at.asc()).all()

    if not rows:
        # no baseline, no judgment
        return AnomalyResult(is_anomaly=False)

    total = sum((Decimal(str(qty)) for qty, _ in rows), Decimal("0"))
    mean = total / len(rows)
    proposed = Decimal(str(proposed_quantity))
    threshold = mean * Decimal(str(cfg["ANOMALY_THRESHOLD"]))

    if mean > 0 and proposed > threshold:
        pct = (proposed - mean) / mean * 100
        unit = rows[0][1] or "units"
        reason = f"{_round_int(pct)}% higher than average usage ({_round_int(mean)} {unit})"
        return AnomalyResult(is_anomaly=True, reason=reason, average_usage=float(mean))

    return AnomalyResult(is_anomaly=False, average_usage=float(mean))
