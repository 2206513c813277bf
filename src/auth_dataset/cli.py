"""Command-line interface for building and inspecting the auth dataset."""

import json
import shutil
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

import click

from . import paths
from .analysis import ato_candidates, failed_login_bursts, risky_accounts, session_summary
from .config import generate_defaults, get_active_db, set_active_db
from .credentials import reset_password as rehash_password
from .fixtures import GenerationConfig, build_database
from .loader import DATABASE_ERRORS, load_dataset, load_table
from .log import configure_logging
from .schema import TABLE_NAMES
from .validate import existing_columns, validate_database

db_option = click.option(
    "--db",
    "db_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Database file (default: the active database).",
)


def _require_db(db_path: Path | None) -> Path:
    path = db_path or get_active_db()
    if not path.exists():
        raise click.ClickException(
            f"Database not found: {path}\n"
            f"Run 'auth-dataset generate' to build it."
        )
    return path


@contextmanager
def _reading(path: Path):
    """Report SQLite failures (not a database, locked, missing table) as CLI errors."""
    try:
        yield
    except DATABASE_ERRORS as e:
        raise click.ClickException(f"Could not read {path}: {e}") from e


def _size_mb(path: Path) -> float:
    return path.stat().st_size / (1024 * 1024)


@click.group()
@click.version_option(package_name="auth-dataset")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr.")
def cli(verbose: bool) -> None:
    """Synthetic authentication dataset for data-analysis exercises.

    Build the SQLite dataset, check its data quality, and create
    deliberately broken copies for cleaning exercises.
    """
    configure_logging(verbose)


@cli.command()
@click.option("--users", "-u", type=click.IntRange(min=2), default=None, help="Number of users (default: 200).")
@click.option("--seed", "-s", type=int, default=None, help="Random seed (default: 42).")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output database file (default: data/auth.db).",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing database.")
@click.option(
    "--answer-key",
    type=click.Path(path_type=Path),
    default=None,
    help="Write the planted incidents to this JSON file.",
)
def generate(
    users: int | None,
    seed: int | None,
    output: Path | None,
    force: bool,
    answer_key: Path | None,
) -> None:
    """Generate the synthetic dataset.

    The same seed and user count always produce the same data.
    Defaults can be set in the [generate] table of config.toml.
    """
    defaults = generate_defaults()
    config = GenerationConfig(
        users=users or defaults.get("users", GenerationConfig.users),
        seed=seed if seed is not None else defaults.get("seed", GenerationConfig.seed),
    )
    output_path = output or paths.default_db()

    click.echo(f"Generating {config.users} users (seed {config.seed})...")
    try:
        result = build_database(output_path, config, force=force)
    except FileExistsError as e:
        raise click.ClickException(f"{e}\nUse --force to overwrite.") from e

    for name, count in result.counts.items():
        click.echo(f"  {name:16} {count:6} rows")
    click.echo(click.style(f"Dataset written to {result.path}", fg="green"))

    if answer_key:
        answer_key.parent.mkdir(parents=True, exist_ok=True)
        with open(answer_key, "w", encoding="utf-8") as f:
            json.dump(result.planted, f, indent=2)
        click.echo(f"Answer key saved to {answer_key}")


@cli.command()
@db_option
def info(db_path: Path | None) -> None:
    """Show database size and row counts."""
    path = _require_db(db_path)

    click.echo(click.style("=== Dataset Info ===", bold=True))
    click.echo()
    click.echo(f"Database: {path}")
    click.echo(f"Size: {_size_mb(path):.2f} MB")
    click.echo()

    conn = sqlite3.connect(path)
    try:
        with _reading(path):
            present = existing_columns(conn)
            click.echo(click.style("Tables:", bold=True))
            for name in TABLE_NAMES:
                if name not in present:
                    click.echo(f"  {name:16} " + click.style("(missing)", fg="red"))
                    continue
                count = conn.execute(f"SELECT COUNT(*) FROM {name}").fetchone()[0]
                click.echo(f"  {name:16} {count:6} rows")

            if "role" in present.get("users", []):
                click.echo()
                click.echo(click.style("Users by role:", bold=True))
                for role, count in conn.execute(
                    "SELECT role, COUNT(*) FROM users GROUP BY role ORDER BY COUNT(*) DESC"
                ):
                    click.echo(f"  {role}: {count}")
    finally:
        conn.close()


@cli.command()
@db_option
def validate(db_path: Path | None) -> None:
    """Check the documented data-quality facts.

    Exits with status 1 when any check fails.
    """
    path = _require_db(db_path)
    with _reading(path):
        report = validate_database(path)

    if report.ok:
        click.echo(click.style(f"{path}: all checks passed", fg="green"))
        return

    for check, issues in report.by_check().items():
        click.echo(click.style(f"{check}:", bold=True))
        for issue in issues:
            click.echo(f"  {issue}")
    click.echo()
    click.echo(click.style(f"{len(report.issues)} issue(s) found", fg="red"))
    raise SystemExit(1)


@cli.command()
@click.argument("table", type=click.Choice(TABLE_NAMES))
@db_option
@click.option("--limit", "-n", type=int, default=10, help="Rows to show.")
@click.option("--raw", is_flag=True, help="Show stored text without casting.")
def show(table: str, db_path: Path | None, limit: int, raw: bool) -> None:
    """Print the first rows of a table."""
    path = _require_db(db_path)
    with _reading(path):
        df = load_table(path, table, cast=not raw)

    click.echo(df.head(limit).to_string(index=False))
    click.echo()
    click.echo(", ".join(f"{col}: {dtype}" for col, dtype in df.dtypes.items()))


@cli.command()
@db_option
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for CSV files (default: data/exports).",
)
def export(db_path: Path | None, output: Path | None) -> None:
    """Export every table as CSV, values exactly as stored."""
    path = _require_db(db_path)
    output_dir = output or paths.exports_dir()
    output_dir.mkdir(parents=True, exist_ok=True)

    with _reading(path):
        frames = load_dataset(path, cast=False)
    for name, df in frames.items():
        csv_path = output_dir / f"{name}.csv"
        df.to_csv(csv_path, index=False)
        click.echo(f"  {name:16} -> {csv_path}")


@cli.command()
@db_option
def analyze(db_path: Path | None) -> None:
    """Run the exercise analyses: takeovers, stuffing, risky admins."""
    path = _require_db(db_path)
    with _reading(path):
        frames = load_dataset(path)

    # Analyses whose columns are missing (see 'validate') are skipped
    sections = [
        ("Account takeover candidates", ato_candidates),
        ("Failed login bursts", failed_login_bursts),
        ("Admins without MFA holding admin keys", risky_accounts),
    ]
    for title, analysis in sections:
        try:
            df = analysis(frames)
        except ValueError as e:
            click.echo(click.style(f"{title}: skipped", bold=True))
            click.echo(click.style(f"  {e}", fg="yellow"))
            click.echo()
            continue
        click.echo(click.style(f"{title} ({len(df)}):", bold=True))
        if df.empty:
            click.echo("  (none)")
        else:
            click.echo(df.to_string(index=False))
        click.echo()

    try:
        summary = session_summary(frames)
    except ValueError as e:
        click.echo(click.style("Users with the most distinct IPs: skipped", bold=True))
        click.echo(click.style(f"  {e}", fg="yellow"))
        return
    busiest = summary.sort_values("distinct_ips", ascending=False).head(5)
    click.echo(click.style("Users with the most distinct IPs:", bold=True))
    click.echo(busiest.to_string(index=False))


@cli.command()
@click.option(
    "--name",
    "-n",
    type=str,
    default=None,
    help="Custom backup name (default: timestamp).",
)
def backup(name: str | None) -> None:
    """Create a backup of the active database.

    Uses SQLite VACUUM INTO for a clean, compact copy in data/backups/.
    """
    paths.ensure_dirs()
    active_db = _require_db(None)

    if name:
        backup_name = f"{name}.db"
    else:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_name = f"{timestamp}_auth.db"

    backup_path = paths.backups_dir() / backup_name
    if backup_path.exists():
        raise click.ClickException(f"Backup already exists: {backup_path}")

    click.echo(f"Backing up: {active_db}")
    click.echo(f"       To: {backup_path}")

    conn = sqlite3.connect(active_db)
    try:
        with _reading(active_db):
            conn.execute("VACUUM INTO ?", (str(backup_path),))
        click.echo(click.style("Backup created successfully!", fg="green"))
        click.echo(f"Size: {_size_mb(backup_path):.2f} MB")
    finally:
        conn.close()


# Scenario presets: name -> (description, apply_function)
# Each apply function takes (conn, echo) and damages a copy of the dataset
SCENARIO_PRESETS: dict[str, tuple[str, callable]] = {}


def _register_preset(name: str, description: str):
    """Decorator to register a scenario preset."""
    def decorator(func):
        SCENARIO_PRESETS[name] = (description, func)
        return func
    return decorator


@_register_preset("dirty_flags", "Flag columns with 'yes', 'true', 1 and NULL")
def _apply_dirty_flags(conn: sqlite3.Connection, echo: callable) -> None:
    changed = conn.execute("UPDATE users SET mfa_enabled = 'yes' WHERE user_id % 7 = 0").rowcount
    changed += conn.execute("UPDATE sessions SET is_active = 'true' WHERE session_id % 11 = 0").rowcount
    changed += conn.execute("UPDATE api_keys SET revoked = NULL WHERE key_id % 5 = 0").rowcount
    conn.commit()
    echo(f"Rewrote {changed} flag values")


@_register_preset("bad_timestamps", "Unparseable and locale-formatted timestamps")
def _apply_bad_timestamps(conn: sqlite3.Connection, echo: callable) -> None:
    # dd/mm/yyyy does not parse as ISO 8601; these become NaT when cast
    changed = conn.execute(
        "UPDATE sessions SET created_at = strftime('%d/%m/%Y %H:%M', created_at) "
        "WHERE session_id % 9 = 0"
    ).rowcount
    changed += conn.execute("UPDATE audit_log SET created_at = '' WHERE log_id % 50 = 0").rowcount
    changed += conn.execute(
        "UPDATE users SET last_login = 'never' WHERE last_login IS NULL"
    ).rowcount
    # Naive timestamps are still valid (read as UTC)
    conn.execute(
        "UPDATE password_resets SET requested_at = replace(replace(requested_at, 'T', ' '), 'Z', '')"
    )
    conn.commit()
    echo(f"Broke {changed} timestamp values")


@_register_preset("orphans", "Sessions and audit events pointing at deleted users")
def _apply_orphans(conn: sqlite3.Connection, echo: callable) -> None:
    changed = conn.execute(
        "UPDATE sessions SET user_id = user_id + 100000 WHERE session_id % 17 = 0"
    ).rowcount
    changed += conn.execute(
        "UPDATE audit_log SET user_id = 999999 WHERE user_id IS NOT NULL AND log_id % 40 = 0"
    ).rowcount
    conn.commit()
    echo(f"Orphaned {changed} rows")


@_register_preset("schema_drift", "Renamed and undocumented columns")
def _apply_schema_drift(conn: sqlite3.Connection, echo: callable) -> None:
    conn.execute("ALTER TABLE api_keys RENAME COLUMN scope TO scopes")
    conn.execute("ALTER TABLE users ADD COLUMN phone TEXT")
    conn.commit()
    echo("Renamed api_keys.scope to scopes, added users.phone")


@cli.command("create-scenario")
@click.argument("preset", required=False)
@click.option(
    "--list",
    "-l",
    "list_presets",
    is_flag=True,
    help="List available scenario presets.",
)
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing scenario.")
def create_scenario(preset: str | None, list_presets: bool, force: bool) -> None:
    """Create a damaged copy of the dataset from a preset.

    Copies the active database and applies the preset's modifications,
    for data-cleaning exercises.

    Examples:

        # List available presets
        auth-dataset create-scenario --list

        # Flags with non-literal values
        auth-dataset create-scenario dirty_flags
    """
    paths.ensure_dirs()

    if list_presets:
        click.echo(click.style("Available presets:", bold=True))
        for name, (desc, _) in SCENARIO_PRESETS.items():
            click.echo(f"  {name:15} - {desc}")
        return

    if preset is None:
        raise click.ClickException("PRESET is required (or use --list)")

    if preset not in SCENARIO_PRESETS:
        raise click.ClickException(
            f"Unknown preset: {preset}\n"
            f"Run 'auth-dataset create-scenario --list' to see available presets."
        )

    source = _require_db(None)
    scenario_path = paths.scenarios_dir() / f"{preset}.db"
    if scenario_path.exists() and not force:
        if not click.confirm(f"Scenario '{preset}' exists. Overwrite?"):
            click.echo("Aborted.")
            return

    click.echo(f"Creating scenario: {preset}")
    shutil.copy2(source, scenario_path)

    desc, apply_fn = SCENARIO_PRESETS[preset]
    conn = sqlite3.connect(scenario_path)
    try:
        with _reading(scenario_path):
            apply_fn(conn, click.echo)
        click.echo(click.style(f"Scenario created: {scenario_path}", fg="green"))
        click.echo()
        click.echo(f"To use: auth-dataset use {preset}")
    finally:
        conn.close()


def resolve_db_path(name: str) -> Path | None:
    """Resolve a database name to a full path."""
    if name == "default":
        return paths.default_db()

    scenario_db = paths.scenarios_dir() / f"{name}.db"
    if scenario_db.exists():
        return scenario_db

    for backup_db in paths.backups_dir().glob("*.db"):
        if backup_db.stem == name or backup_db.name == name:
            return backup_db

    return None


@cli.command("list")
def list_dbs() -> None:
    """List all databases (default, scenarios, backups)."""
    paths.ensure_dirs()
    active_db = get_active_db()

    def line(db: Path, label: str, extra: str = "") -> str:
        is_active = " (active)" if active_db == db else ""
        return f"  {label} - {_size_mb(db):.2f} MB{extra}{click.style(is_active, fg='green')}"

    click.echo(click.style("=== Databases ===", bold=True))
    click.echo()

    click.echo(click.style("Default:", bold=True))
    default_db = paths.default_db()
    if default_db.exists():
        click.echo(line(default_db, default_db.name))
    else:
        click.echo("  (not found)")
    click.echo()

    click.echo(click.style("Scenarios:", bold=True))
    scenarios = sorted(paths.scenarios_dir().glob("*.db"))
    if scenarios:
        for db in scenarios:
            click.echo(line(db, db.stem))
    else:
        click.echo("  (none)")
    click.echo()

    click.echo(click.style("Backups:", bold=True))
    backups = sorted(paths.backups_dir().glob("*.db"), reverse=True)
    if backups:
        for db in backups[:10]:  # Show last 10
            mtime = datetime.fromtimestamp(db.stat().st_mtime)
            click.echo(line(db, db.stem, f" - {mtime:%Y-%m-%d %H:%M}"))
        if len(backups) > 10:
            click.echo(f"  ... and {len(backups) - 10} more")
    else:
        click.echo("  (none)")


@cli.command()
@click.argument("name")
def use(name: str) -> None:
    """Switch the active database.

    Updates config.toml to point at a scenario or backup.
    Use 'default' to switch back to data/auth.db.

    Examples:

        auth-dataset use dirty_flags   # Use a scenario
        auth-dataset use default       # Back to the clean dataset
    """
    db_path = resolve_db_path(name)
    if db_path is None:
        raise click.ClickException(
            f"Database not found: {name}\n"
            f"Run 'auth-dataset list' to see available databases."
        )

    if name == "default":
        set_active_db(None)
        click.echo(click.style("Switched to default database", fg="green"))
    else:
        set_active_db(db_path)
        click.echo(click.style(f"Switched to: {name}", fg="green"))
        click.echo(f"Path: {db_path}")


@cli.command("reset-password")
@click.argument("username")
@click.argument("password")
@db_option
def reset_password(username: str, password: str, db_path: Path | None) -> None:
    """Set a user's password, rehashing it with a fresh salt."""
    path = _require_db(db_path)
    try:
        with _reading(path):
            rehash_password(path, username, password)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Password reset for user '{username}'")
