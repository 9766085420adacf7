"""SQLite-backed access to the single-row network configuration."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
import sqlite3
import threading

from core.logging import logger as LOGGER


DEFAULT_NETMASK = "255.255.255.0"


@dataclass(frozen=True)
class NetworkConfig:
    """Persisted network mode, WiFi credentials and static-IP override."""

    mode: str = "offline"
    wifi_ssid: str = ""
    wifi_password: str = ""
    use_static_ip: bool = False
    static_ip: str = ""
    static_netmask: str = DEFAULT_NETMASK
    static_gateway: str = ""
    static_dns_primary: str = ""
    static_dns_secondary: str = ""

    @property
    def static_ip_usable(self) -> bool:
        """Static settings only count when both address and gateway are set."""

        return self.use_static_ip and bool(self.static_ip) and bool(self.static_gateway)

    def with_updates(self, **changes: object) -> "NetworkConfig":
        return replace(self, **changes)


_COLUMNS = (
    "mode",
    "wifi_ssid",
    "wifi_password",
    "use_static_ip",
    "static_ip_address",
    "static_ip_netmask",
    "static_ip_gateway",
    "static_dns_primary",
    "static_dns_secondary",
)


class NetworkConfigStore:
    """Read and overwrite the ``network_config`` row with id 1.

    The database belongs to the API service. A missing file, a missing
    table or row, or a corrupt database all read as ``None`` so callers fall
    back to the default mode. Reads never create the database.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def exists(self) -> bool:
        return self._db_path.exists()

    def load(self) -> NetworkConfig | None:
        if not self._db_path.exists():
            return None
        try:
            conn = sqlite3.connect(f"file:{self._db_path}?mode=ro", uri=True)
        except sqlite3.Error as exc:
            LOGGER.warning("[Storage] Cannot open %s: %s", self._db_path, exc)
            return None
        try:
            cursor = conn.cursor()
            cursor.execute(
                f"SELECT {', '.join(_COLUMNS)} FROM network_config WHERE id = ?",
                (1,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as exc:
            LOGGER.warning("[Storage] network_config unreadable: %s", exc)
            return None
        finally:
            conn.close()
        if not row:
            return None
        return NetworkConfig(
            mode=(row[0] or "offline").strip(),
            wifi_ssid=row[1] or "",
            wifi_password=row[2] or "",
            use_static_ip=bool(row[3]),
            static_ip=row[4] or "",
            static_netmask=row[5] or DEFAULT_NETMASK,
            static_gateway=row[6] or "",
            static_dns_primary=row[7] or "",
            static_dns_secondary=row[8] or "",
        )

    def save(self, config: NetworkConfig) -> None:
        """Overwrite row 1, creating the table when the API has not yet."""

        values = (
            config.mode,
            config.wifi_ssid,
            config.wifi_password,
            1 if config.use_static_ip else 0,
            config.static_ip,
            config.static_netmask or DEFAULT_NETMASK,
            config.static_gateway,
            config.static_dns_primary,
            config.static_dns_secondary,
        )
        assignments = ", ".join(f"{column} = excluded.{column}" for column in _COLUMNS)
        with self._lock:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
            try:
                cursor = conn.cursor()
                self._ensure_table(cursor)
                cursor.execute(
                    f"""
                    INSERT INTO network_config (id, {', '.join(_COLUMNS)})
                    VALUES (1, {', '.join('?' for _ in _COLUMNS)})
                    ON CONFLICT(id) DO UPDATE SET {assignments}
                    """,
                    values,
                )
                conn.commit()
            finally:
                conn.close()

    def _ensure_table(self, cursor: sqlite3.Cursor) -> None:
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS network_config (
                id INTEGER PRIMARY KEY,
                mode TEXT NOT NULL DEFAULT 'offline',
                wifi_ssid TEXT DEFAULT '',
                wifi_password TEXT DEFAULT '',
                use_static_ip INTEGER DEFAULT 0,
                static_ip_address TEXT DEFAULT '',
                static_ip_netmask TEXT DEFAULT '255.255.255.0',
                static_ip_gateway TEXT DEFAULT '',
                static_dns_primary TEXT DEFAULT '',
                static_dns_secondary TEXT DEFAULT ''
            )
            """
        )
