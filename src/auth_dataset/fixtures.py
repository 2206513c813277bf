"""Synthetic data generation for the auth dataset.

Generation is fully deterministic: every random choice comes from a single
seeded ``random.Random`` and password hashes use an explicit salt, so the same
seed and size always produce identical table contents.

Besides background activity, a few incidents are planted for the analysis
exercises. Their ground truth is returned in ``Dataset.planted`` and is never
written to the database itself:

- ato: account takeover via a password reset from a never-seen IP, followed
  by a session and an API key from that IP
- credential_stuffing: one IP failing logins against many usernames
- dormant_admin: admin without MFA holding an unrevoked admin-scope key
"""

import json
import random
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import structlog

from .credentials import DEFAULT_MEMORY_COST, DEFAULT_TIME_COST, hash_password
from .schema import FLAG_FALSE, FLAG_TRUE, TABLES, TIMESTAMP_FORMAT, create_schema

logger = structlog.get_logger(__name__)

SNAPSHOT_END = datetime(2024, 6, 30, tzinfo=timezone.utc)

FIRST_NAMES = [
    "alice", "bob", "carol", "dave", "erin", "frank", "grace", "heidi",
    "ivan", "judy", "mallory", "niaj", "olivia", "peggy", "rupert", "sybil",
    "trent", "victor", "walter", "yara", "zoe", "omar", "lena", "kai",
]
LAST_NAMES = [
    "smith", "jones", "brown", "taylor", "wilson", "davies", "evans", "thomas",
    "johnson", "roberts", "walker", "wright", "robinson", "thompson", "white",
    "hughes", "edwards", "green", "hall", "wood", "harris", "lewis", "martin",
]
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/124.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 Safari/17.4",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) Mobile/15E148",
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 Chrome/124.0 Mobile",
]
ATTACKER_USER_AGENT = "python-requests/2.31.0"
STUFFING_USER_AGENT = "curl/8.5.0"
COMMON_USERNAMES = ["admin", "root", "test", "guest", "info", "support", "oracle", "user"]

SESSION_TTLS = [
    timedelta(hours=1),
    timedelta(hours=8),
    timedelta(days=1),
    timedelta(days=7),
    timedelta(days=30),
]

# Probability of MFA by role
MFA_RATES = {"user": 0.7, "support": 0.8, "admin": 0.9, "service": 0.3}


@dataclass
class GenerationConfig:
    """Knobs for the synthetic dataset."""

    users: int = 200
    seed: int = 42
    end: datetime = SNAPSHOT_END
    days: int = 90
    ato_incidents: int = 2
    stuffing_bursts: int = 1
    # Argon2id cost; tests lower these to keep generation fast
    hash_time_cost: int = DEFAULT_TIME_COST
    hash_memory_cost: int = DEFAULT_MEMORY_COST

    @property
    def start(self) -> datetime:
        return self.end - timedelta(days=self.days)


@dataclass
class Dataset:
    """Generated rows for every table plus the planted ground truth."""

    tables: dict[str, list[dict[str, Any]]]
    planted: dict[str, list[Any]]
    credentials: dict[str, str] = field(default_factory=dict)

    def counts(self) -> dict[str, int]:
        return {name: len(rows) for name, rows in self.tables.items()}


@dataclass
class GenerationResult:
    """Outcome of writing a dataset to disk."""

    path: Path
    counts: dict[str, int]
    planted: dict[str, list[Any]]


def format_ts(value: datetime) -> str:
    """Format an aware datetime as the dataset's UTC timestamp text."""
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


class _Generator:
    """Builds all rows for one dataset. Not reusable across seeds."""

    def __init__(self, config: GenerationConfig):
        self.config = config
        self.rng = random.Random(config.seed)
        self.start = config.start
        self.end = config.end

        self.users: list[dict[str, Any]] = []
        self.sessions: list[dict[str, Any]] = []
        self.api_keys: list[dict[str, Any]] = []
        self.resets: list[dict[str, Any]] = []
        self.events: list[dict[str, Any]] = []
        self.home_ips: dict[int, list[str]] = {}
        self.credentials: dict[str, str] = {}
        self.planted: dict[str, list[Any]] = {
            "ato": [],
            "credential_stuffing": [],
            "dormant_admin": [],
        }
        self._used_ips: set[str] = set()

    # -- primitives -------------------------------------------------------

    def token(self, nbytes: int) -> str:
        return self.rng.getrandbits(nbytes * 8).to_bytes(nbytes, "big").hex()

    def between(self, lo: datetime, hi: datetime) -> datetime:
        span = int((hi - lo).total_seconds())
        if span <= 0:
            return lo
        return lo + timedelta(seconds=self.rng.randint(0, span))

    def home_ip(self) -> str:
        # Ordinary clients live in 24.0.0.0 - 99.255.255.255; planted
        # attackers use the documentation ranges and never collide.
        while True:
            ip = "{}.{}.{}.{}".format(
                self.rng.randint(24, 99),
                self.rng.randint(0, 255),
                self.rng.randint(0, 255),
                self.rng.randint(1, 254),
            )
            if ip not in self._used_ips:
                self._used_ips.add(ip)
                return ip

    def event(
        self,
        event_type: str,
        at: datetime,
        user_id: int | None,
        ip: str,
        **details: Any,
    ) -> None:
        if not (self.start <= at <= self.end):
            return
        self.events.append({
            "user_id": user_id,
            "event_type": event_type,
            "ip_address": ip,
            "created_at": at,
            "details": details,
        })

    # -- tables -----------------------------------------------------------

    def build_users(self) -> None:
        seen: set[str] = set()
        for user_id in range(1, self.config.users + 1):
            first = self.rng.choice(FIRST_NAMES)
            last = self.rng.choice(LAST_NAMES)
            username = f"{first}.{last}"
            suffix = 2
            while username in seen:
                username = f"{first}.{last}{suffix}"
                suffix += 1
            seen.add(username)

            if user_id == 1:
                role = "admin"
            else:
                roll = self.rng.random()
                if roll < 0.05:
                    role = "admin"
                elif roll < 0.13:
                    role = "support"
                elif roll < 0.17:
                    role = "service"
                else:
                    role = "user"

            password = f"{self.token(6)}-{username}"
            salt = self.token(16)
            self.credentials[username] = password

            created_at = self.between(
                self.start - timedelta(days=365),
                self.start + timedelta(days=int(self.config.days * 0.8)),
            )
            self.users.append({
                "user_id": user_id,
                "username": username,
                "email": f"{username}@example.com",
                "password_hash": hash_password(
                    password,
                    salt,
                    time_cost=self.config.hash_time_cost,
                    memory_cost=self.config.hash_memory_cost,
                ),
                "salt": salt,
                "role": role,
                "mfa_enabled": FLAG_TRUE if self.rng.random() < MFA_RATES[role] else FLAG_FALSE,
                "is_locked": FLAG_FALSE,
                "created_at": created_at,
                "last_login": None,
            })
            self.home_ips[user_id] = [self.home_ip() for _ in range(self.rng.randint(1, 3))]

            if self.users[-1]["mfa_enabled"] == FLAG_TRUE:
                enabled_at = created_at + timedelta(hours=self.rng.randint(1, 72))
                self.event("mfa_enabled", enabled_at, user_id, self.home_ips[user_id][0])
            if role == "support" and self.rng.random() < 0.5:
                changed_at = self.between(created_at, self.end)
                self.event(
                    "role_changed", changed_at, 1, self.home_ips[1][0],
                    target_user_id=user_id, **{"from": "user", "to": "support"},
                )

    def add_session(
        self,
        user: dict[str, Any],
        created_at: datetime,
        ip: str,
        user_agent: str,
        ttl: timedelta | None = None,
    ) -> dict[str, Any]:
        ttl = ttl or self.rng.choice(SESSION_TTLS)
        expires_at = created_at + ttl
        if expires_at <= self.end:
            is_active = False
            logout_at = self.between(created_at, expires_at)
            if self.rng.random() < 0.5:
                self.event("logout", logout_at, user["user_id"], ip)
        else:
            is_active = self.rng.random() < 0.85
            if not is_active:
                self.event("logout", self.between(created_at, self.end), user["user_id"], ip)

        session = {
            "user_id": user["user_id"],
            "session_token": self.token(32),
            "ip_address": ip,
            "user_agent": user_agent,
            "created_at": created_at,
            "expires_at": expires_at,
            "is_active": FLAG_TRUE if is_active else FLAG_FALSE,
        }
        self.sessions.append(session)
        self.event("login_success", created_at, user["user_id"], ip, session_token_prefix=session["session_token"][:8])
        return session

    def build_sessions(self) -> None:
        ranges = {"user": (0, 12), "support": (5, 20), "admin": (5, 20), "service": (0, 2)}
        for user in self.users:
            if user["role"] == "user" and self.rng.random() < 0.08:
                continue  # never logged in
            lo, hi = ranges[user["role"]]
            window_start = max(self.start, user["created_at"])
            agents = self.rng.sample(USER_AGENTS, 2)
            for _ in range(self.rng.randint(lo, hi)):
                created_at = self.between(window_start, self.end - timedelta(minutes=5))
                ip = self.rng.choice(self.home_ips[user["user_id"]])
                if self.rng.random() < 0.15:
                    for n in range(self.rng.randint(1, 2)):
                        self.event(
                            "login_failure",
                            created_at - timedelta(seconds=30 * (n + 1)),
                            user["user_id"],
                            ip,
                            username=user["username"],
                            reason="bad_password",
                        )
                self.add_session(user, created_at, ip, self.rng.choice(agents))

    def add_api_key(
        self,
        user: dict[str, Any],
        created_at: datetime,
        scope: str,
        ip: str,
        revocable: bool = True,
    ) -> dict[str, Any]:
        secret = f"sk_{self.token(20)}"
        revoked = revocable and self.rng.random() < 0.15
        revoked_at = self.between(created_at, self.end) if revoked else None
        last_used_at = None
        if self.rng.random() < 0.7:
            last_used_at = self.between(created_at, revoked_at or self.end)

        key = {
            "user_id": user["user_id"],
            "key_prefix": secret[:8],
            "api_key": secret,
            "scope": scope,
            "created_at": created_at,
            "last_used_at": last_used_at,
            "revoked": FLAG_TRUE if revoked else FLAG_FALSE,
        }
        self.api_keys.append(key)
        self.event("api_key_created", created_at, user["user_id"], ip, key_prefix=key["key_prefix"], scope=scope)
        if revoked_at is not None:
            self.event("api_key_revoked", revoked_at, user["user_id"], ip, key_prefix=key["key_prefix"])
        return key

    def build_api_keys(self) -> None:
        for user in self.users:
            role = user["role"]
            if role == "service":
                count = self.rng.randint(1, 3)
            elif role == "admin":
                count = self.rng.randint(0, 2)
            else:
                count = 1 if self.rng.random() < 0.2 else 0

            for _ in range(count):
                if role == "admin" and user["mfa_enabled"] == FLAG_TRUE:
                    scope = self.rng.choice(["read write admin", "read write"])
                elif role in ("admin", "service"):
                    scope = self.rng.choice(["read", "read write"])
                else:
                    scope = self.rng.choice(["read", "read", "read write"])
                created_at = self.between(max(self.start, user["created_at"]), self.end)
                ip = self.home_ips[user["user_id"]][0]
                self.add_api_key(user, created_at, scope, ip)

    def build_resets(self) -> None:
        sessions_by_user: dict[int, list[dict[str, Any]]] = {}
        for session in self.sessions:
            sessions_by_user.setdefault(session["user_id"], []).append(session)

        for user in self.users:
            if self.rng.random() >= 0.10:
                continue
            history = sessions_by_user.get(user["user_id"])
            if not history:
                continue
            # Resets come from an address the user has already signed in from
            prior = self.rng.choice(history)
            lo = prior["created_at"] + timedelta(hours=1)
            hi = self.end - timedelta(hours=3)
            if lo >= hi:
                continue
            requested_at = self.between(lo, hi)
            ip = prior["ip_address"]
            used_at = None
            if self.rng.random() < 0.75:
                used_at = requested_at + timedelta(minutes=self.rng.randint(2, 60))

            self.resets.append({
                "user_id": user["user_id"],
                "reset_token": self.token(24),
                "ip_address": ip,
                "requested_at": requested_at,
                "used_at": used_at,
            })
            self.event("password_reset_requested", requested_at, user["user_id"], ip)
            if used_at is not None:
                self.event("password_reset_completed", used_at, user["user_id"], ip)
                if self.rng.random() < 0.6:
                    self.add_session(
                        user,
                        used_at + timedelta(minutes=self.rng.randint(1, 10)),
                        ip,
                        self.rng.choice(USER_AGENTS),
                    )

    def build_lockouts(self) -> None:
        for user in self.users:
            if user["role"] != "user" or self.rng.random() >= 0.02:
                continue
            locked_at = self.between(max(self.start, user["created_at"]), self.end - timedelta(hours=1))
            ip = self.home_ips[user["user_id"]][0]
            for n in range(5, 0, -1):
                self.event(
                    "login_failure",
                    locked_at - timedelta(seconds=20 * n),
                    user["user_id"],
                    ip,
                    username=user["username"],
                    reason="bad_password",
                )
            self.event("account_locked", locked_at, user["user_id"], ip, failed_attempts=5)
            user["is_locked"] = FLAG_TRUE

    # -- planted incidents ------------------------------------------------

    def plant_ato(self) -> None:
        victims = [
            u for u in self.users
            if u["role"] in ("user", "support")
            and u["is_locked"] == FLAG_FALSE
            and u["user_id"] not in self.planted["ato"]
        ]
        for n in range(min(self.config.ato_incidents, len(victims))):
            victim = self.rng.choice(victims)
            victims.remove(victim)
            attacker_ip = f"203.0.113.{10 + n}"
            requested_at = self.between(
                self.end - timedelta(days=max(1, self.config.days // 3)),
                self.end - timedelta(hours=6),
            )
            used_at = requested_at + timedelta(minutes=self.rng.randint(3, 10))
            self.resets.append({
                "user_id": victim["user_id"],
                "reset_token": self.token(24),
                "ip_address": attacker_ip,
                "requested_at": requested_at,
                "used_at": used_at,
            })
            self.event("password_reset_requested", requested_at, victim["user_id"], attacker_ip)
            self.event("password_reset_completed", used_at, victim["user_id"], attacker_ip)
            session_at = used_at + timedelta(minutes=self.rng.randint(1, 5))
            self.add_session(victim, session_at, attacker_ip, ATTACKER_USER_AGENT, ttl=timedelta(days=30))
            self.add_api_key(
                victim,
                session_at + timedelta(minutes=self.rng.randint(2, 15)),
                "read write",
                attacker_ip,
                revocable=False,
            )
            self.planted["ato"].append(victim["user_id"])
            logger.debug("planted_ato", user_id=victim["user_id"], ip=attacker_ip)

    def plant_credential_stuffing(self) -> None:
        by_username = {u["username"]: u["user_id"] for u in self.users}
        known = list(by_username)
        for n in range(self.config.stuffing_bursts):
            ip = f"198.51.100.{20 + n}"
            burst_start = self.between(self.start + timedelta(days=1), self.end - timedelta(hours=1))
            targets = self.rng.sample(known, min(len(known), self.rng.randint(15, 25)))
            targets += COMMON_USERNAMES
            self.rng.shuffle(targets)
            for i, username in enumerate(targets):
                user_id = by_username.get(username)
                self.event(
                    "login_failure",
                    burst_start + timedelta(seconds=15 * i),
                    user_id,
                    ip,
                    username=username,
                    reason="bad_password" if user_id else "unknown_user",
                    user_agent=STUFFING_USER_AGENT,
                )
            self.planted["credential_stuffing"].append(ip)
            logger.debug("planted_credential_stuffing", ip=ip, targets=len(targets))

    def plant_dormant_admin(self) -> None:
        admins = [u for u in self.users if u["role"] == "admin"]
        admin = self.rng.choice(admins)
        admin["mfa_enabled"] = FLAG_FALSE
        # Its MFA enrollment never happened
        self.events = [
            e for e in self.events
            if not (e["event_type"] == "mfa_enabled" and e["user_id"] == admin["user_id"])
        ]
        created_at = self.between(max(self.start, admin["created_at"]), self.end - timedelta(days=1))
        self.add_api_key(admin, created_at, "read write admin", self.home_ips[admin["user_id"]][0], revocable=False)
        self.planted["dormant_admin"].append(admin["user_id"])

    # -- assembly ---------------------------------------------------------

    def finalize(self) -> Dataset:
        last_login: dict[int, datetime] = {}
        for session in self.sessions:
            uid = session["user_id"]
            if uid not in last_login or session["created_at"] > last_login[uid]:
                last_login[uid] = session["created_at"]
        for user in self.users:
            user["last_login"] = last_login.get(user["user_id"])

        def ordered(rows: list[dict[str, Any]], id_col: str, sort_col: str) -> list[dict[str, Any]]:
            rows = sorted(rows, key=lambda r: r[sort_col])
            return [{id_col: i, **row} for i, row in enumerate(rows, start=1)]

        audit = ordered(self.events, "log_id", "created_at")
        for row in audit:
            row["details"] = json.dumps(row["details"], sort_keys=True)

        tables = {
            "users": self.users,
            "sessions": ordered(self.sessions, "session_id", "created_at"),
            "api_keys": ordered(self.api_keys, "key_id", "created_at"),
            "password_resets": ordered(self.resets, "reset_id", "requested_at"),
            "audit_log": audit,
        }
        for name, rows in tables.items():
            tables[name] = [_serialize_row(name, row) for row in rows]

        return Dataset(tables=tables, planted=self.planted, credentials=self.credentials)


def _serialize_row(table: str, row: dict[str, Any]) -> dict[str, Any]:
    """Order a row by the table's columns and render datetimes as text."""
    out = {}
    for name in TABLES[table].column_names:
        value = row[name]
        out[name] = format_ts(value) if isinstance(value, datetime) else value
    return out


def generate_dataset(config: GenerationConfig | None = None) -> Dataset:
    """Generate all five tables in memory."""
    config = config or GenerationConfig()
    if config.users < 2:
        raise ValueError(f"Need at least 2 users, got {config.users}")
    if config.days < 1:
        raise ValueError(f"Need a window of at least 1 day, got {config.days}")

    gen = _Generator(config)
    gen.build_users()
    gen.build_sessions()
    gen.build_api_keys()
    gen.build_resets()
    gen.build_lockouts()
    gen.plant_ato()
    gen.plant_credential_stuffing()
    gen.plant_dormant_admin()
    dataset = gen.finalize()
    logger.info("dataset_generated", seed=config.seed, **dataset.counts())
    return dataset


def write_dataset(dataset: Dataset, path: Path, force: bool = False) -> GenerationResult:
    """Write a generated dataset to a new SQLite file."""
    if path.exists():
        if not force:
            raise FileExistsError(f"Database already exists: {path}")
        path.unlink()
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(path)
    try:
        create_schema(conn)
        with conn:
            for name, spec in TABLES.items():
                columns = spec.column_names
                placeholders = ", ".join("?" for _ in columns)
                conn.executemany(
                    f"INSERT INTO {name} ({', '.join(columns)}) VALUES ({placeholders})",
                    [tuple(row[c] for c in columns) for row in dataset.tables[name]],
                )
    finally:
        conn.close()

    logger.info("dataset_written", path=str(path))
    return GenerationResult(path=path, counts=dataset.counts(), planted=dataset.planted)


def build_database(
    path: Path,
    config: GenerationConfig | None = None,
    force: bool = False,
) -> GenerationResult:
    """Generate a dataset and write it to ``path``."""
    return write_dataset(generate_dataset(config), path, force=force)
