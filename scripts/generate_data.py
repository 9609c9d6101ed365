"""
Data generation and loading script for the betting dataset.

Implements deterministic pseudo-random users, events and bets, CSV emission,
and Postgres COPY loading for maximum throughput. Primary keys are written
explicitly so foreign keys line up without a lookup; the id sequences are
advanced past the loaded rows afterwards.
"""

from __future__ import annotations

import csv
import random
import sys
import tempfile
import time
from datetime import UTC, datetime, timedelta
from pathlib import Path

import psycopg
import typer
from psycopg.rows import dict_row

from dbre_bench.config import get_settings
from dbre_bench.domain.models import Bet, BetStatus, Event, EventStatus, User
from dbre_bench.infrastructure.db_factory import build_dsn
from dbre_bench.infrastructure.schema import TABLES, init_schema

app = typer.Typer(help="Generate the synthetic betting dataset and load it into Postgres.")

HISTORY_DAYS = 60
FUTURE_DAYS = 30
LIVE_WINDOW = timedelta(hours=3)
RECENT_WINDOW = timedelta(hours=2)
RECENT_SHARE = 0.02

TABLE_COLUMNS = {
    "users": ("id", "name", "created_at"),
    "events": ("id", "name", "start_time", "status"),
    "bets": ("id", "user_id", "event_id", "status", "amount", "placed_at"),
}

# Settled history dominates; open bets sit mostly on upcoming events.
_PAST_STATUSES = [BetStatus.SETTLED, BetStatus.CASHED_OUT, BetStatus.CANCELLED, BetStatus.OPEN]
_PAST_WEIGHTS = [75, 15, 5, 5]
_FUTURE_STATUSES = [BetStatus.OPEN, BetStatus.CANCELLED]
_FUTURE_WEIGHTS = [92, 8]

_SPORTS = ["Football", "Tennis", "Basketball", "Ice Hockey", "Volleyball", "Esports"]
_FIRST_NAMES = ["Ana", "Bruno", "Carla", "Diego", "Elisa", "Felipe", "Gabi", "Hugo", "Iris", "Joao"]


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def _event_start_times(events: int, seed: int, now: datetime) -> list[datetime]:
    rng = random.Random(seed + 1)
    span = (HISTORY_DAYS + FUTURE_DAYS) * 86_400
    origin = now - timedelta(days=HISTORY_DAYS)
    return [origin + timedelta(seconds=rng.uniform(0, span)) for _ in range(events)]


def _event_status(start_time: datetime, now: datetime) -> EventStatus:
    if start_time > now:
        return EventStatus.SCHEDULED
    if now - start_time < LIVE_WINDOW:
        return EventStatus.LIVE
    return EventStatus.FINISHED


def _generate_users_csv(
    csv_path: Path, users: int, batch_size: int, seed: int, now: datetime
) -> None:
    rng = random.Random(seed)
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(TABLE_COLUMNS["users"])

        buffer: list[list[str]] = []
        for user_id in range(1, users + 1):
            created_at = now - timedelta(seconds=rng.uniform(0, 365 * 86_400))
            name = f"{rng.choice(_FIRST_NAMES)} {user_id}"
            buffer.append([str(user_id), name, created_at.isoformat()])
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _generate_events_csv(
    csv_path: Path, start_times: list[datetime], batch_size: int, seed: int, now: datetime
) -> None:
    rng = random.Random(seed + 2)
    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(TABLE_COLUMNS["events"])

        buffer: list[list[str]] = []
        for event_id, start_time in enumerate(start_times, start=1):
            buffer.append(
                [
                    str(event_id),
                    f"{rng.choice(_SPORTS)} match #{event_id}",
                    start_time.isoformat(),
                    _event_status(start_time, now).value,
                ]
            )
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def _generate_bets_csv(
    csv_path: Path,
    bets: int,
    users: int,
    start_times: list[datetime],
    batch_size: int,
    seed: int,
    now: datetime,
) -> None:
    rng = random.Random(seed + 3)
    history = HISTORY_DAYS * 86_400
    recent = RECENT_WINDOW.total_seconds()
    events = len(start_times)

    with csv_path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(TABLE_COLUMNS["bets"])

        buffer: list[list[str]] = []
        for bet_id in range(1, bets + 1):
            event_id = rng.randint(1, events)
            if rng.random() < RECENT_SHARE:
                placed_at = now - timedelta(seconds=rng.uniform(0, recent))
            else:
                placed_at = now - timedelta(seconds=rng.uniform(0, history))
            if start_times[event_id - 1] > now:
                status = rng.choices(_FUTURE_STATUSES, weights=_FUTURE_WEIGHTS)[0]
            else:
                status = rng.choices(_PAST_STATUSES, weights=_PAST_WEIGHTS)[0]
            amount = round(rng.uniform(1, 500), 2)
            buffer.append(
                [
                    str(bet_id),
                    str(rng.randint(1, users)),
                    str(event_id),
                    status.value,
                    f"{amount:.2f}",
                    placed_at.isoformat(),
                ]
            )
            if len(buffer) >= batch_size:
                writer.writerows(buffer)
                buffer.clear()
        if buffer:
            writer.writerows(buffer)


def generate_csvs(
    directory: Path,
    users: int,
    events: int,
    bets: int,
    batch_size: int = 10_000,
    seed: int = 42,
    now: datetime | None = None,
) -> dict[str, Path]:
    """Write users.csv, events.csv and bets.csv into `directory`."""
    if min(users, events) < 1 or bets < 0:
        raise ValueError("users and events must be >= 1 and bets >= 0")
    now = now or datetime.now(UTC)
    directory.mkdir(parents=True, exist_ok=True)
    paths = {table: directory / f"{table}.csv" for table in TABLES}

    start_times = _event_start_times(events, seed, now)
    _generate_users_csv(paths["users"], users, batch_size, seed, now)
    _generate_events_csv(paths["events"], start_times, batch_size, seed, now)
    _generate_bets_csv(paths["bets"], bets, users, start_times, batch_size, seed, now)
    return paths


def _copy_into_db(conn: psycopg.Connection, table: str, csv_path: Path) -> int:
    columns = ", ".join(TABLE_COLUMNS[table])
    lines = 0
    with conn.cursor() as cur:
        with cur.copy(
            f"COPY public.{table} ({columns}) FROM STDIN WITH (FORMAT csv, HEADER TRUE)"
        ) as copy:
            with csv_path.open("r", encoding="utf-8") as f:
                for line in f:
                    copy.write(line)
                    lines += 1
    conn.commit()
    # header line excluded
    return max(lines - 1, 0)


def _reset_sequences(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        for table in TABLES:
            cur.execute(
                f"SELECT setval(pg_get_serial_sequence('public.{table}', 'id'), "
                f"COALESCE((SELECT MAX(id) FROM public.{table}), 0) + 1, false)"
            )
    conn.commit()


def _truncate(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        cur.execute("TRUNCATE TABLE public.bets, public.events, public.users RESTART IDENTITY")
    conn.commit()


def _analyze(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        for table in TABLES:
            cur.execute(f"ANALYZE public.{table}")
    conn.commit()


def _validate_sample(conn: psycopg.Connection, limit: int = 5) -> int:
    """Validate a few loaded rows of each table against the domain models."""
    models = {"users": User, "events": Event, "bets": Bet}
    checked = 0
    with conn.cursor(row_factory=dict_row) as cur:
        for table, model in models.items():
            cur.execute(f"SELECT * FROM public.{table} ORDER BY id LIMIT %s", (limit,))
            for row in cur.fetchall():
                model.model_validate(row)
                checked += 1
    conn.rollback()
    return checked


def load_dataset(
    dsn: str, paths: dict[str, Path], create_schema: bool = False, truncate: bool = False
) -> dict[str, int]:
    """COPY the generated CSVs (users, events, bets in FK order) and ANALYZE."""
    counts: dict[str, int] = {}
    with psycopg.connect(dsn) as conn:
        if create_schema:
            init_schema(conn)
        if truncate:
            _truncate(conn)
        for table in TABLES:
            counts[table] = _copy_into_db(conn, table, paths[table])
        _reset_sequences(conn)
        _analyze(conn)
        _validate_sample(conn)
    return counts


@app.command()
def main(
    users: int | None = typer.Option(None, "--users", help="Users (default from settings)."),
    events: int | None = typer.Option(None, "--events", help="Events (default from settings)."),
    bets: int | None = typer.Option(None, "--bets", help="Bets (default from settings)."),
    batch_size: int = typer.Option(
        10_000,
        "--batch-size",
        "-b",
        help="Batch size for CSV buffering during generation.",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Deterministic RNG seed (default from settings).",
    ),
    output_dir: Path | None = typer.Option(
        None,
        "--output-dir",
        "-o",
        help="Optional directory for the CSVs (if omitted, a temp dir will be used).",
    ),
    dsn: str | None = typer.Option(
        None,
        "--dsn",
        help="Optional DSN override for Postgres.",
    ),
    schema: bool = typer.Option(
        False,
        "--schema",
        help="Create the users/events/bets tables before loading.",
    ),
    truncate: bool = typer.Option(
        False,
        "--truncate",
        help="Empty the tables before loading.",
    ),
    no_load: bool = typer.Option(
        False,
        "--no-load",
        help="Only generate CSV; skip loading into Postgres.",
    ),
) -> None:
    """
    Generate the betting dataset and optionally load it into Postgres using COPY.
    """
    settings = get_settings()
    users = users or settings.data_users
    events = events or settings.data_events
    bets = bets if bets is not None else settings.data_bets
    seed = seed if seed is not None else settings.data_seed

    start = time.perf_counter()
    directory = output_dir or Path(tempfile.mkdtemp(prefix="betting_csv_"))
    total_rows = users + events + bets

    typer.echo(
        f"Generating users={users:,} events={events:,} bets={bets:,} -> {directory} "
        f"(batch={batch_size}, seed={seed})"
    )
    paths = generate_csvs(directory, users, events, bets, batch_size=batch_size, seed=seed)
    gen_duration = time.perf_counter() - start
    typer.echo(
        f"CSV generation completed in {gen_duration:.2f}s "
        f"({total_rows / gen_duration:,.0f} rows/s)"
    )

    if no_load:
        typer.echo("Skipping load (no-load flag set).")
        return

    load_start = time.perf_counter()
    typer.echo("Loading CSVs into Postgres via COPY...")
    counts = load_dataset(_build_dsn(dsn), paths, create_schema=schema, truncate=truncate)
    load_duration = time.perf_counter() - load_start

    total_duration = time.perf_counter() - start
    loaded = ", ".join(f"{table}={count:,}" for table, count in counts.items())
    typer.echo(
        f"Load completed in {load_duration:.2f}s ({loaded}). Total time {total_duration:.2f}s "
        f"({total_rows / total_duration:,.0f} rows/s overall)."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
