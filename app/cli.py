# cli.py
"""
Flask CLI commands for the RSVP check-in service.
"""

import os
import time

import click
from flask import current_app
from flask.cli import with_appcontext

from app.extensions import db


@click.command("init-db")
@with_appcontext
def init_db():
    """Create database tables."""
    from app import models  # noqa: F401

    db.create_all()
    click.echo("Database tables created.")


@click.command("issue-rsvp")
@click.argument("name")
@click.argument("email")
@click.argument("phone")
@click.option("--coming/--not-coming", default=True, help="Declared RSVP intent")
@click.option("--out", "out_path", type=click.Path(dir_okay=False), help="Where to save the QR PNG")
@with_appcontext
def issue_rsvp(name, email, phone, coming, out_path):
    """
    Register an invitee and write their QR code.

    Example usage:
        flask issue-rsvp "Ana" a@x.com "+1 5551234567"
        flask issue-rsvp "Ana" a@x.com "+1 5551234567" --not-coming --out ana.png
    """
    from app.services.rsvp_service import IdentityValidationError, RsvpService
    from app.services.rsvp_store import StoreError

    try:
        result = RsvpService().generate_and_register(
            {'name': name, 'email': email, 'phone': phone}, coming
        )
    except IdentityValidationError as e:
        for field, message in e.errors.items():
            click.echo(f"{field}: {message}", err=True)
        raise click.exceptions.Exit(1)
    except StoreError as e:
        click.echo(f"Failed to save RSVP: {str(e)}", err=True)
        raise click.exceptions.Exit(1)

    out_path = out_path or os.path.join(current_app.config["QR_CODE_FOLDER"], f"rsvp-{result.token}.png")
    out_dir = os.path.dirname(os.path.abspath(out_path))
    os.makedirs(out_dir, exist_ok=True)
    result.artifact.save(out_path, format='PNG')

    click.echo(f"Token: {result.token}")
    click.echo(f"QR code: {out_path}")


@click.command("check-in")
@click.argument("token")
@with_appcontext
def check_in(token):
    """Check in an RSVP by token without a camera."""
    from app.services.check_in_service import CheckInService

    outcome = CheckInService().check_in(token)
    click.echo(f"{outcome.token}: {outcome.message}")
    if not outcome.success:
        raise click.exceptions.Exit(1)


@click.command("scan")
@click.option("--camera", "camera_index", type=int, default=None, help="Camera device index")
@click.option("--cooldown-ms", type=int, default=None, help="Minimum gap between accepted scans")
@with_appcontext
def scan(camera_index, cooldown_ms):
    """Run the camera scanner in the foreground. Press Ctrl+C to stop."""
    from app.services.scan_loop import build_scan_loop

    app = current_app._get_current_object()
    scanner = build_scan_loop(app, camera_index=camera_index, cooldown_ms=cooldown_ms)

    def on_recognized(outcome):
        name = (outcome.record or {}).get('name', '')
        click.echo(f"[{outcome.kind}] {outcome.token} {name}".rstrip())

    def on_foreign(raw_text, classification):
        click.echo(f"[{classification}] {raw_text}")

    def on_error(error):
        click.echo(f"Scanner error: {error}", err=True)

    with scanner:
        if not scanner.start(on_recognized=on_recognized, on_foreign=on_foreign, on_error=on_error):
            raise click.exceptions.Exit(1)

        click.echo(scanner.state.status)
        try:
            while scanner.running:
                time.sleep(0.5)
        except KeyboardInterrupt:
            click.echo("\nStopping scanner...")

    scanner.coordinator.shutdown()


def register_cli_commands(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(init_db)
    app.cli.add_command(issue_rsvp)
    app.cli.add_command(check_in)
    app.cli.add_command(scan)
