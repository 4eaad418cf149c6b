from trafficwork.extensions import db
from trafficwork.utils.helpers import utcnow


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Payment intent id (or invoice id when the invoice carries none); unique so redelivered
    # events cannot double-book a payment
    stripe_payment_id = db.Column(db.String(255), nullable=False, unique=True)
    amount = db.Column(db.Integer, nullable=False)  # minor units
    currency = db.Column(db.String(3), nullable=False)
    status = db.Column(db.String(32), nullable=False)
    payment_method = db.Column(db.String(32), nullable=True)
    click_id = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    user = db.relationship("User", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment id={self.id} user_id={self.user_id} amount={self.amount} {self.currency}>"
