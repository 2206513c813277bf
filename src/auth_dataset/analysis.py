"""Worked solutions for the analysis exercises.

All functions take the cast frames returned by ``loader.load_dataset`` and
return a new DataFrame; nothing here touches the database.
"""

import json
from datetime import timedelta

import pandas as pd

Frames = dict[str, pd.DataFrame]


def _require(frames: Frames, **needed: tuple[str, ...]) -> None:
    """Raise ValueError naming any column an analysis needs but the frames lack."""
    missing = [
        f"{table}.{col}"
        for table, columns in needed.items()
        for col in columns
        if col not in frames.get(table, pd.DataFrame()).columns
    ]
    if missing:
        raise ValueError(f"Missing column(s): {', '.join(missing)}")


def _detail(key: str):
    def get(raw):
        if not isinstance(raw, str):
            return None
        try:
            details = json.loads(raw)
        except ValueError:
            return None
        return details.get(key) if isinstance(details, dict) else None
    return get


def ato_candidates(frames: Frames, window: timedelta = timedelta(hours=2)) -> pd.DataFrame:
    """Find likely account takeovers.

    A candidate is a used password reset followed, within ``window`` of its
    use, by a session from the same IP the reset came from, where the user
    had never had a session from that IP before the reset was requested.

    Returns one row per reset with the first matching session.
    """
    _require(
        frames,
        password_resets=("reset_id", "user_id", "ip_address", "requested_at", "used_at"),
        sessions=("session_id", "user_id", "ip_address", "created_at"),
        users=("user_id", "username"),
    )
    resets = frames["password_resets"]
    sessions = frames["sessions"]
    users = frames["users"][["user_id", "username"]]

    used = resets[resets["used_at"].notna()]
    pairs = used.merge(sessions, on=["user_id", "ip_address"], suffixes=("", "_session"))

    seen_before = pairs[pairs["created_at"] < pairs["requested_at"]]["reset_id"].unique()
    follow = pairs[
        (pairs["created_at"] >= pairs["used_at"])
        & (pairs["created_at"] <= pairs["used_at"] + pd.Timedelta(window))
        & ~pairs["reset_id"].isin(seen_before)
    ]

    follow = (
        follow.sort_values(["reset_id", "created_at"])
        .drop_duplicates("reset_id")
        .rename(columns={"created_at": "session_created_at"})
        .merge(users, on="user_id", how="left")
    )
    columns = [
        "user_id", "username", "reset_id", "session_id", "ip_address",
        "requested_at", "used_at", "session_created_at",
    ]
    return follow[columns].sort_values("used_at").reset_index(drop=True)


def failed_login_bursts(
    frames: Frames,
    window: str | timedelta = "15min",
    min_targets: int = 10,
) -> pd.DataFrame:
    """Find IPs failing logins against many different usernames.

    Consecutive ``login_failure`` events from one IP that are no more than
    ``window`` apart form a burst. Bursts that target at least
    ``min_targets`` distinct usernames are reported.
    """
    _require(
        frames,
        audit_log=("log_id", "user_id", "event_type", "ip_address", "details", "created_at"),
    )
    audit = frames["audit_log"]
    fails = audit[audit["event_type"] == "login_failure"].copy()
    columns = [
        "ip_address", "first_seen", "last_seen", "attempts",
        "distinct_usernames", "known_users",
    ]
    if fails.empty:
        return pd.DataFrame(columns=columns)

    fails["username"] = fails["details"].map(_detail("username"))
    fails = fails.sort_values(["ip_address", "created_at"])
    gap = fails.groupby("ip_address")["created_at"].diff()
    fails["burst"] = (gap.isna() | (gap > pd.Timedelta(window))).cumsum()

    bursts = fails.groupby("burst").agg(
        ip_address=("ip_address", "first"),
        first_seen=("created_at", "min"),
        last_seen=("created_at", "max"),
        attempts=("log_id", "count"),
        distinct_usernames=("username", "nunique"),
        known_users=("user_id", "nunique"),
    )
    bursts = bursts[bursts["distinct_usernames"] >= min_targets]
    return bursts[columns].sort_values("first_seen").reset_index(drop=True)


def risky_accounts(frames: Frames) -> pd.DataFrame:
    """Admins without MFA that hold an unrevoked admin-scope API key."""
    _require(
        frames,
        users=("user_id", "username", "role", "mfa_enabled", "last_login"),
        api_keys=("key_id", "user_id", "scope", "revoked", "created_at"),
    )
    users = frames["users"]
    keys = frames["api_keys"]

    admins = users[(users["role"] == "admin") & ~users["mfa_enabled"].fillna(False)]
    has_admin_scope = keys["scope"].fillna("").str.split().map(lambda scopes: "admin" in scopes)
    live = keys[has_admin_scope & ~keys["revoked"].fillna(False)]

    merged = admins.merge(live, on="user_id", suffixes=("", "_key"))
    result = merged.groupby(["user_id", "username"], as_index=False).agg(
        admin_keys=("key_id", "count"),
        newest_key_at=("created_at_key", "max"),
        last_login=("last_login", "first"),
    )
    return result.sort_values("user_id").reset_index(drop=True)


def session_summary(frames: Frames) -> pd.DataFrame:
    """Per-user session counts, active sessions and distinct IPs."""
    _require(
        frames,
        users=("user_id", "username", "role"),
        sessions=("session_id", "user_id", "is_active", "ip_address", "created_at"),
    )
    users = frames["users"][["user_id", "username", "role"]]
    sessions = frames["sessions"]

    stats = sessions.groupby("user_id").agg(
        sessions=("session_id", "count"),
        active_sessions=("is_active", "sum"),
        distinct_ips=("ip_address", "nunique"),
        last_session_at=("created_at", "max"),
    ).reset_index()

    summary = users.merge(stats, on="user_id", how="left")
    for col in ("sessions", "active_sessions", "distinct_ips"):
        summary[col] = summary[col].fillna(0).astype(int)
    return summary.sort_values("user_id").reset_index(drop=True)
