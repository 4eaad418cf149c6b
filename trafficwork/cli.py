import click
from flask.cli import with_appcontext
from trafficwork.extensions import db
from trafficwork.errors import HandlerFailure
from trafficwork.models import User, SUBSCRIPTION_STATUSES, SUBSCRIPTION_PLANS
from trafficwork.utils.helpers import utcnow
from trafficwork import services


@click.group()
def tracking():
    """Conversion postback operations."""


@tracking.command("retry")
@with_appcontext
def tracking_retry():
    """Re-send unsent postbacks from the retry window (cron-friendly)."""
    result = services.sweeper().sweep()
    click.echo(f"Retried postbacks: selected={result.selected} delivered={result.delivered} failed={result.failed}")


@click.group()
def webhooks():
    """Webhook event store operations."""


@webhooks.command("replay")
@click.argument("event_id")
@with_appcontext
def webhooks_replay(event_id):
    try:
        result = services.reconciler().replay(event_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    except HandlerFailure as e:
        raise click.ClickException(f"Replay failed: {e}")
    click.echo(f"Replayed {result.event_id} ({result.event_type}) handled={result.handled}")


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", default=None)
@with_appcontext
def users_create(email, password, name):
    email = email.strip().lower()
    if db.session.query(User).filter_by(email=email).count():
        raise click.ClickException("User already exists")

    user = User(email=email, name=name, is_active=True, subscription_status="inactive")
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"User created id={user.id} email={user.email}")


@users.command("set-subscription")
@click.option("--email", required=True)
@click.option("--status", type=click.Choice(SUBSCRIPTION_STATUSES), required=True)
@click.option("--plan", type=click.Choice(SUBSCRIPTION_PLANS), default=None)
@with_appcontext
def users_set_subscription(email, status, plan):
    """Administrative override of a user's subscription fields."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).one_or_none()
    if not user:
        raise click.ClickException("User not found")
    user.subscription_status = status
    if plan:
        user.subscription_plan = plan
    # Later provider events still win over the override
    user.subscription_synced_at = utcnow()
    db.session.commit()
    click.echo(f"Subscription for {user.email} set to {status}{' / ' + plan if plan else ''}")


def register_cli(app):
    app.cli.add_command(tracking)
    app.cli.add_command(webhooks)
    app.cli.add_command(users)
