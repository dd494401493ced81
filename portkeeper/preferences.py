"""
SQLite persistence for user preferences

Favorites, the watch list and the tree-view preference survive restarts.
The store is injected into ``AppState`` at startup and saves again every
time one of those values changes.
"""

import logging
import os
import sqlite3

from .models import Preferences, WatchedPort
from .state import CHANGE_FAVORITES, CHANGE_VIEW_MODE, CHANGE_WATCHED, StateView

logger = logging.getLogger(__name__)


class PreferencesStore:
    """SQLite-backed preferences store"""

    def __init__(self, db_path: str = "portkeeper.db"):
        self.db_path = db_path
        self.init_database()

    def _connect(self):
        return sqlite3.connect(self.db_path)

    def init_database(self):
        """Initialize the database with required tables"""
        directory = os.path.dirname(os.path.abspath(self.db_path))
        if not os.path.exists(directory):
            os.makedirs(directory)

        with self._connect() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS favorites (
                    port INTEGER PRIMARY KEY,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS watched_ports (
                    port INTEGER PRIMARY KEY,
                    notify_on_start BOOLEAN NOT NULL DEFAULT 1,
                    notify_on_stop BOOLEAN NOT NULL DEFAULT 1,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            conn.commit()
        logger.info(f"Preferences database initialized: {self.db_path}")

    def load(self) -> Preferences:
        """Load preferences, falling back to defaults if the database is unreadable"""
        try:
            with self._connect() as conn:
                cursor = conn.cursor()

                cursor.execute('SELECT port FROM favorites ORDER BY port')
                favorites = {row[0] for row in cursor.fetchall()}

                cursor.execute('SELECT port, notify_on_start, notify_on_stop FROM watched_ports ORDER BY port')
                watched = [
                    WatchedPort(port=row[0], notify_on_start=bool(row[1]), notify_on_stop=bool(row[2]))
                    for row in cursor.fetchall()
                ]

                cursor.execute("SELECT value FROM settings WHERE key = 'use_tree_view'")
                row = cursor.fetchone()
                use_tree_view = bool(row) and row[0] == '1'

            return Preferences(favorites=favorites, watched_ports=watched, use_tree_view=use_tree_view)
        except Exception as e:
            logger.error(f"Failed to load preferences: {e}")
            return Preferences()

    def save_favorites(self, favorites) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute('DELETE FROM favorites')
                cursor.executemany('INSERT INTO favorites (port) VALUES (?)', [(p,) for p in sorted(favorites)])
                conn.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to save favorites: {e}")
            return False

    def save_watched_ports(self, watched_ports) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute('DELETE FROM watched_ports')
                cursor.executemany(
                    'INSERT INTO watched_ports (port, notify_on_start, notify_on_stop) VALUES (?, ?, ?)',
                    [(w.port, w.notify_on_start, w.notify_on_stop) for w in watched_ports]
                )
                conn.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to save watched ports: {e}")
            return False

    def save_setting(self, key: str, value: str) -> bool:
        try:
            with self._connect() as conn:
                cursor = conn.cursor()
                cursor.execute('''
                    INSERT INTO settings (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                ''', (key, value))
                conn.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to save setting {key}: {e}")
            return False

    def save(self, preferences: Preferences) -> bool:
        results = [
            self.save_favorites(preferences.favorites),
            self.save_watched_ports(preferences.watched_ports),
            self.save_setting('use_tree_view', '1' if preferences.use_tree_view else '0'),
        ]
        return all(results)

    def on_state_change(self, change: str, view: StateView):
        """AppState subscriber persisting the values it owns"""
        if change == CHANGE_FAVORITES:
            self.save_favorites(view.favorites)
        elif change == CHANGE_WATCHED:
            self.save_watched_ports([view.watched_ports[p] for p in sorted(view.watched_ports)])
        elif change == CHANGE_VIEW_MODE:
            self.save_setting('use_tree_view', '1' if view.use_tree_view else '0')

    def attach(self, state):
        """Subscribe to state changes"""
        state.subscribe(self.on_state_change)
