# offsite_api/models/sequence.py
from offsite_api.extensions import db


class SequenceCounter(db.Model):
    """
    One row per category code (e.g. "OSSE", "LAB", "OS/CI/2025-26/").
    `seq` only ever moves through services.sequence.issue_id.
    """
    __tablename__ = "sequence_counters"

    category = db.Column(db.String(40), primary_key=True)
    seq      = db.Column(db.BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.category}={self.seq}>"
