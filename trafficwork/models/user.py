from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash
from trafficwork.utils.helpers import utcnow
from trafficwork.extensions import db, login_manager

# Values mirror the payment processor's subscription statuses plus our "inactive" default
SUBSCRIPTION_STATUSES = ("active", "inactive", "past_due", "canceled", "trialing", "unpaid")
SUBSCRIPTION_PLANS = ("monthly", "annual")


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True)

    # Attribution: opaque tracker token captured at registration
    click_id = db.Column(db.String(128), nullable=True, index=True)
    registration_source = db.Column(db.String(64), nullable=True)

    # Written only by webhook handlers or an admin override
    subscription_id = db.Column(db.String(64), nullable=True, index=True)
    subscription_status = db.Column(db.String(32), nullable=False, default="inactive", index=True)
    subscription_plan = db.Column(db.String(16), nullable=True)
    subscription_end_date = db.Column(db.DateTime, nullable=True)
    # Provider event time of the last accepted subscription write (out-of-order guard)
    subscription_synced_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    last_login_at = db.Column(db.DateTime, nullable=True)

    payments = db.relationship("Payment", back_populates="user", lazy="dynamic")

    # helpers
    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def get_id(self) -> str:
        return str(self.id)

    @property
    def has_active_subscription(self) -> bool:
        return self.subscription_status in ("active", "trialing")

    def to_dict(self) -> dict:
        from trafficwork.utils.helpers import iso
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "click_id": self.click_id,
            "subscription": {
                "status": self.subscription_status or "inactive",
                "plan": self.subscription_plan,
                "end_date": iso(self.subscription_end_date),
            },
            "created_at": iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} status={self.subscription_status!r}>"


@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None
