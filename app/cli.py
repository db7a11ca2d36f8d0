"""
Operator commands.

    flask plans seed
    flask tenants reseed-permissions <slug>
    flask tenants clear-failed <slug>
    flask tenants health <slug>
    flask tenants delete <slug>
"""
import click
from flask.cli import AppGroup

from app import errors
from app.services.plan_catalog import seed_plans
from app.services.provisioning import ProvisioningService

plans_cli = AppGroup('plans', help='Manage the plan catalogue.')
tenants_cli = AppGroup('tenants', help='Repair and clean up tenants.')


@plans_cli.command('seed')
def seed_plans_command():
    """Insert or update the default plans."""
    count = seed_plans()
    click.echo(f"Seeded {count} plans")


@tenants_cli.command('reseed-permissions')
@click.argument('slug')
def reseed_permissions_command(slug):
    """Re-run the role/permission bootstrapper on a tenant."""
    try:
        created = ProvisioningService().reseed_permissions(slug)
    except errors.TenancyError as e:
        raise click.ClickException(e.message)
    click.echo("Missing roles/permissions added" if created else "Roles and permissions already complete")


@tenants_cli.command('clear-failed')
@click.argument('slug')
def clear_failed_command(slug):
    """Drop a tenant parked in the 'failed' state (or stuck provisioning) and free its slug."""
    try:
        ProvisioningService().clear_failed(slug)
    except errors.TenancyError as e:
        raise click.ClickException(e.message)
    click.echo(f"Cleared failed tenant '{slug}'")


@tenants_cli.command('health')
@click.argument('slug')
def health_command(slug):
    try:
        issues = ProvisioningService().check_health(slug)
    except errors.TenancyError as e:
        raise click.ClickException(e.message)
    if not issues:
        click.echo(f"Tenant '{slug}' is healthy")
        return
    for issue in issues:
        click.echo(f"- {issue}")
    raise SystemExit(1)


@tenants_cli.command('delete')
@click.argument('slug')
@click.confirmation_option(prompt='This permanently deletes the tenant and its data. Continue?')
def delete_command(slug):
    """Deprovision a tenant synchronously."""
    try:
        ProvisioningService().deprovision(slug)
    except errors.TenancyError as e:
        raise click.ClickException(e.message)
    click.echo(f"Deleted tenant '{slug}'")


def init_cli(app):
    app.cli.add_command(plans_cli)
    app.cli.add_command(tenants_cli)
