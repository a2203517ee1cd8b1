
from sqlalchemy import UniqueConstraint, func
from .extensions import db

class ClientRecord(db.Model):
    __tablename__ = "clients"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    # name.casefold(); what name searches match against.
    name_folded = db.Column(db.Text, nullable=False, index=True)
    phone = db.Column(db.String(11), nullable=False)
    discount = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    reservations = db.relationship("ReservationRecord", back_populates="client")

class TableRecord(db.Model):
    __tablename__ = "tables"
    numeral = db.Column(db.Integer, primary_key=True, autoincrement=False)
    capacity = db.Column(db.Integer, nullable=False)
    occupied = db.Column(db.Boolean, nullable=False, default=False)
    vip = db.Column(db.Boolean, nullable=False, default=False)
    exclusive_view = db.Column(db.Boolean, nullable=True)

    reservations = db.relationship("ReservationRecord", back_populates="table")

class ReservationRecord(db.Model):
    __tablename__ = "reservations"
    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    table_numeral = db.Column(db.Integer, db.ForeignKey("tables.numeral"), nullable=False)
    timestamp = db.Column(db.DateTime, nullable=False, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    client = db.relationship("ClientRecord", back_populates="reservations")
    table = db.relationship("TableRecord", back_populates="reservations")

    __table_args__ = (
        UniqueConstraint("table_numeral", "timestamp", name="uq_reservation_slot"),
    )
