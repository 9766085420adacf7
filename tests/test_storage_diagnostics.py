"""Tests for the network config store and storage diagnostics."""

from __future__ import annotations

import sqlite3

from diagnostics.models import DiagnosticStatus
from storage.diagnostics import probe
from storage.network_config import NetworkConfig, NetworkConfigStore


def test_storage_probe_without_database(tmp_path) -> None:
    """Storage probe should warn and leave no database behind."""

    db_path = tmp_path / "cubeos.db"

    result = probe(db_path=db_path)
    assert result.status is DiagnosticStatus.WARN
    assert not db_path.exists()


def test_storage_probe_with_row(tmp_path) -> None:
    db_path = tmp_path / "cubeos.db"
    NetworkConfigStore(db_path).save(NetworkConfig(mode="server_eth"))

    result = probe(db_path=db_path)
    assert result.status is DiagnosticStatus.PASS
    assert "server_eth" in result.details


def test_store_round_trip_and_overwrite(tmp_path) -> None:
    store = NetworkConfigStore(tmp_path / "data" / "cubeos.db")
    store.save(NetworkConfig(mode="online_wifi", wifi_ssid="HomeNet", wifi_password="secret123"))
    store.save(
        store.load().with_updates(use_static_ip=True, static_ip="192.168.1.50", static_gateway="192.168.1.1")
    )

    loaded = store.load()

    assert loaded.mode == "online_wifi"
    assert loaded.wifi_ssid == "HomeNet"
    assert loaded.static_ip_usable
    conn = sqlite3.connect(store.db_path)
    try:
        assert conn.execute("SELECT COUNT(*) FROM network_config").fetchone()[0] == 1
    finally:
        conn.close()


def test_store_reads_api_owned_table(tmp_path) -> None:
    db_path = tmp_path / "cubeos.db"
    conn = sqlite3.connect(db_path)
    conn.execute(
        """
        CREATE TABLE network_config (
            id INTEGER PRIMARY KEY, mode TEXT, wifi_ssid TEXT, wifi_password TEXT,
            use_static_ip INTEGER, static_ip_address TEXT, static_ip_netmask TEXT,
            static_ip_gateway TEXT, static_dns_primary TEXT, static_dns_secondary TEXT,
            updated_at TEXT
        )
        """
    )
    conn.execute("INSERT INTO network_config (id, mode, use_static_ip) VALUES (1, ' wifi_client ', 0)")
    conn.commit()
    conn.close()

    loaded = NetworkConfigStore(db_path).load()

    assert loaded.mode == "wifi_client"
    assert loaded.static_netmask == "255.255.255.0"
    assert loaded.use_static_ip is False


def test_store_treats_corrupt_file_as_absent(tmp_path) -> None:
    db_path = tmp_path / "cubeos.db"
    db_path.write_bytes(b"not a database at all, just some bytes" * 10)

    store = NetworkConfigStore(db_path)
    assert store.load() is None
