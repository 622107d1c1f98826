"""Relational database dumps."""

import os
import tempfile
from typing import Any, Dict, List, Optional

from .base import BackupItem
from ..core.errors import CommandError
from ..core.models import ItemType

MYSQL_DEFAULT_PORT = 3306
PGSQL_DEFAULT_PORT = 5432

MYSQL_ENGINES = ('mysql', 'mariadb')
PGSQL_ENGINES = ('postgresql', 'pgsql', 'postgres')


class DatabaseDumpItem(BackupItem):
    """Dumps one or more databases to ``<depot>/<database>.sql``.

    Credentials are handed to the dump tool through a temporary file that
    only exists for the duration of the dump. Each successful dump is hashed
    and compressed by the run's post-processor.
    """

    type_tag = ItemType.DATABASE.value

    def backup(self, depot_dir: str) -> None:
        engine = str(self.option('engine', 'mariadb')).lower()
        if engine not in MYSQL_ENGINES + PGSQL_ENGINES:
            self.log.critical('CRIT_INVALID_DB_ENGINE', engine)
            return

        with self.stopped_service(self.option('service')):
            for database in self.databases():
                self.dump_database(engine, database, depot_dir)

    def databases(self) -> List[Dict[str, Any]]:
        """Database entries, inheriting connection settings from the item."""
        shared = {key: self.option(key) for key in
                  ('user', 'password', 'password_file', 'host', 'port')
                  if self.option(key) is not None}

        entries = self.option('databases')
        if not entries:
            return [dict(shared, name=self.option('database') or self.name)]

        databases = []
        for entry in entries:
            if isinstance(entry, str):
                entry = {'name': entry}
            databases.append(dict(shared, **entry))
        return databases

    def dump_database(self, engine: str, database: Dict[str, Any], depot_dir: str) -> bool:
        name = database['name']
        self.log.info('INFO_DUMP_START', name)
        started = self.context.clock()

        password = self._password(database)
        if password is None:
            return False

        try:
            conf_path = self._write_connection_file(engine, database, password)
        except OSError as e:
            self.log.critical('CRIT_TEMP_CONFIG_FAILED', name, e)
            return False

        dump_path = os.path.join(depot_dir, f"{name}.sql")
        if os.path.basename(dump_path) in self.context.postprocessor.processed:
            self.log.warning('WARN_DUMP_OVERWRITTEN', dump_path)
        try:
            result = self.context.runner(
                self._dump_command(engine, database, conf_path),
                stdout_path=dump_path,
                env=self._dump_env(engine, conf_path),
            )
        except CommandError as e:
            self.log.critical('CRIT_DUMP_FAILED', name, e)
            self.discard(dump_path)
            return False
        finally:
            self.discard(conf_path)

        if not result.ok:
            self.log.critical('CRIT_DUMP_FAILED', name, result.error_text())
            self.discard(dump_path)
            return False

        self.log.info('INFO_DUMP_FINISHED', name, os.path.getsize(dump_path),
                      self.elapsed_ms(started))

        artifact = self.context.postprocessor.process(dump_path, log=self.log)
        self.result.add_artifact(artifact)
        return True

    def _password(self, database: Dict[str, Any]) -> Optional[str]:
        password_file = database.get('password_file')
        if not password_file:
            return str(database.get('password') or '')
        try:
            with open(password_file, 'r', encoding='utf-8') as f:
                return f.readline().rstrip('\r\n')
        except OSError as e:
            self.log.critical('CRIT_PASSWORD_FILE', password_file, e)
            return None

    def _write_connection_file(self, engine: str, database: Dict[str, Any], password: str) -> str:
        """Write the per-database credentials file, readable by the owner only."""
        if engine in PGSQL_ENGINES:
            content = _pgpass_line(database, password)
            suffix = '.pgpass'
        else:
            content = _mysql_defaults(database, password)
            suffix = '.cnf'

        fd, path = tempfile.mkstemp(prefix=f"{database['name']}-", suffix=suffix,
                                    dir=self.context.temp_dir)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError:
            self.discard(path)
            raise
        return path

    def _dump_command(self, engine: str, database: Dict[str, Any], conf_path: str) -> List[str]:
        if engine in PGSQL_ENGINES:
            host = database.get('host') or 'localhost'
            port = database.get('port') or PGSQL_DEFAULT_PORT
            args = [self.option('dump_tool', 'pg_dump'), '-h', host, '-p', str(port), '-w']
            if database.get('user'):
                args += ['-U', database['user']]
            return args + [database['name']]

        return [self.option('dump_tool', 'mysqldump'), f"--defaults-file={conf_path}",
                database['name']]

    def _dump_env(self, engine: str, conf_path: str) -> Optional[Dict[str, str]]:
        if engine in PGSQL_ENGINES:
            return {'PGPASSFILE': conf_path}
        return None


def _mysql_defaults(database: Dict[str, Any], password: str) -> str:
    """Client option file for mysqldump."""
    lines = ['[client]', f'user="{database.get("user") or ""}"', f'password="{password}"']
    host = database.get('host') or 'localhost'
    port = int(database.get('port') or MYSQL_DEFAULT_PORT)
    if host.startswith('/'):
        lines.append(f'socket="{host}"')
    else:
        if host != 'localhost':
            lines.append(f'host="{host}"')
        if port != MYSQL_DEFAULT_PORT:
            lines.append(f'port="{port}"')
    return '\n'.join(lines) + '\n'


def _pgpass_line(database: Dict[str, Any], password: str) -> str:
    """Password file line for pg_dump."""
    def escape(value: Any) -> str:
        return str(value).replace('\\', '\\\\').replace(':', '\\:')

    fields = [
        database.get('host') or 'localhost',
        database.get('port') or PGSQL_DEFAULT_PORT,
        database['name'],
        database.get('user') or '*',
        password,
    ]
    return ':'.join(escape(f) for f in fields) + '\n'
