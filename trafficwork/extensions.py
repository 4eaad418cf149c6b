"""Extensions are created unbound here and attached in create_app()."""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from flask_login import LoginManager, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()

# No login view: the API answers 401 JSON (see unauthorized_handler in create_app)
login_manager = LoginManager()


def _rate_limit_key() -> str:
    # Signed-in users get one bucket across addresses; anonymous callers are keyed by IP
    if current_user.is_authenticated:
        return f"user:{current_user.id}"
    return f"ip:{get_remote_address()}"


# Storage is configured in create_app() via limiter.init_app(...).
limiter = Limiter(key_func=_rate_limit_key)
