"""Demo data setup script.

Registers a demo tenant and seeds behavioural events for a few user personas
so the prediction endpoint has something to score:

- engaged: daily activity over several sessions
- drifting: a handful of page views, last seen weeks ago
- frustrated: recent activity with repeated errors
- newcomer: first visit yesterday

Commands:
- create-client: register a tenant and print its API key
- seed: insert persona events (and optionally score them)
- cleanup: delete a tenant and all of its data (destructive!)
"""

import secrets
from datetime import datetime, timedelta
from typing import Dict, List

import click
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from churnguard_server.lib.database import configure_engine, create_tables, get_session_factory, utcnow
from churnguard_server.lib.settings import get_settings
from churnguard_server.models import Client, Prediction, TrackedEvent, UserProfile
from churnguard_server.services.ingestion_service import IngestionService
from churnguard_server.services.prediction_service import PredictionService

console = Console()

# persona -> list of (days_ago, event_type, session index)
PERSONAS: Dict[str, List[tuple]] = {
  'engaged': [
    (day / 4, event_type, day // 4)
    for day in range(0, 28)
    for event_type in ('page_view', 'click', 'heartbeat')
  ],
  'drifting': [(35, 'page_view', 0), (34, 'click', 0), (33, 'page_view', 1)],
  'frustrated': [(1, 'page_view', 0), (1, 'error', 0), (1, 'error', 0), (0.5, 'promise_rejection', 1),
                 (0.5, 'error', 1), (0.2, 'error', 1), (0.1, 'click', 1)],
  'newcomer': [(1, 'page_view', 0), (1, 'click', 0), (0.9, 'form_submit', 0)],
}


def generate_api_key() -> str:
  return f'cg_{secrets.token_hex(16)}'


def seed_persona(db: Session, client_id: str, user_id: str, persona: str, now: datetime) -> int:
  """Insert the events of one persona for a user, oldest first."""
  service = IngestionService(db)
  events = sorted(PERSONAS[persona], key=lambda item: -item[0])
  for days_ago, event_type, session_index in events:
    service.record_event(
      client_id=client_id,
      event_type=event_type,
      user_id=user_id,
      session_id=f'session_demo_{user_id}_{int(session_index)}',
      page_url=f'https://demo.example.com/{event_type}',
      properties={'persona': persona},
      now=now - timedelta(days=days_ago),
    )
  return len(events)


def _session() -> Session:
  configure_engine(get_settings().database_url)
  create_tables()
  return get_session_factory()()


@click.group()
def cli():
  """ChurnGuard demo data management."""
  pass


@cli.command('create-client')
@click.option('--name', default='Demo Store', help='Tenant display name')
def create_client(name):
  """Register a demo tenant and print its API key."""
  db = _session()
  try:
    client = Client(name=name, api_key=generate_api_key())
    db.add(client)
    db.commit()
    console.print(f'[green]✓ Created client {client.name}[/green]')
    console.print(f'  Client ID: {client.id}')
    console.print(f'  API key:   [bold]{client.api_key}[/bold]')
  except SQLAlchemyError as e:
    console.print(f'[red]Error creating client: {e}[/red]')
    raise click.Abort() from e
  finally:
    db.close()


@cli.command()
@click.option('--api-key', required=True, help='API key of the tenant to seed')
@click.option('--users-per-persona', default=2, type=int, help='Users created for each persona')
@click.option('--score/--no-score', default=True, help='Compute predictions after seeding')
def seed(api_key, users_per_persona, score):
  """Insert persona events for a tenant."""
  db = _session()
  try:
    client = db.query(Client).filter_by(api_key=api_key).one_or_none()
    if client is None:
      console.print('[red]Error: unknown API key. Run create-client first.[/red]')
      raise click.Abort()

    now = utcnow()
    console.print(f'\n[bold]Seeding demo events for {client.name}...[/bold]')
    seeded = []
    for persona in PERSONAS:
      for index in range(users_per_persona):
        user_id = f'{persona}-{index + 1}'
        count = seed_persona(db, client.id, user_id, persona, now)
        seeded.append((user_id, persona, count))
        console.print(f'[cyan]  {user_id}: {count} events[/cyan]')

    if score:
      service = PredictionService(db, ttl=get_settings().prediction_ttl)
      table = Table(title='Demo Predictions')
      table.add_column('User')
      table.add_column('Persona')
      table.add_column('Events', justify='right')
      table.add_column('Risk', justify='right')
      table.add_column('Level')
      table.add_column('Factors')
      for user_id, persona, count in seeded:
        prediction = service.get_or_compute(client.id, user_id, now=now).prediction
        table.add_row(
          user_id,
          persona,
          str(count),
          f'{prediction.risk_score:.2f}',
          prediction.risk_level,
          ', '.join(sorted(prediction.risk_factors or {})) or '-',
        )
      console.print(table)

    console.print('\n[green]✓ Demo data created successfully![/green]')
  except SQLAlchemyError as e:
    console.print(f'[red]Database error: {e}[/red]')
    console.print('[yellow]Check DATABASE_URL and run alembic upgrade head[/yellow]')
    raise click.Abort() from e
  finally:
    db.close()


@cli.command()
@click.option('--api-key', required=True, help='API key of the tenant to delete')
@click.option('--confirm', is_flag=True, help='Skip confirmation prompt')
def cleanup(api_key, confirm):
  """Delete a tenant and all of its events, profiles and predictions."""
  if not confirm:
    console.print('[yellow]This will DELETE the tenant and its data. Use --confirm flag to proceed.[/yellow]')
    return

  db = _session()
  try:
    client = db.query(Client).filter_by(api_key=api_key).one_or_none()
    if client is None:
      console.print('[yellow]No client with that API key[/yellow]')
      return

    for model in (Prediction, UserProfile, TrackedEvent):
      deleted = db.query(model).filter(model.client_id == client.id).delete()
      console.print(f'[cyan]Deleted {deleted} rows from {model.__tablename__}[/cyan]')
    db.delete(client)
    db.commit()
    console.print(f'[green]✓ Deleted client {client.name}[/green]')
  except SQLAlchemyError as e:
    db.rollback()
    console.print(f'[red]Error deleting demo data: {e}[/red]')
    raise click.Abort() from e
  finally:
    db.close()


if __name__ == '__main__':
  cli()
