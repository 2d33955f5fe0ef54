"""Typed errors raised while preparing test databases."""

from __future__ import annotations

from sqlalchemy.exc import DBAPIError


class DBPrepError(RuntimeError):
    """Base error for database preparation failures."""


class ConfigError(DBPrepError, ValueError):
    """Raised when settings or build inputs are invalid. Never retried."""

    @classmethod
    def invalid_connection(cls, connection: str) -> ConfigError:
        return cls(f'The connection "{connection}" does not exist')

    @classmethod
    def unsupported_driver(cls, connection: str, driver: str) -> ConfigError:
        return cls(f'Connection "{connection}" uses driver "{driver}" which is not supported')

    @classmethod
    def migrations_path_invalid(cls, path: str) -> ConfigError:
        return cls(
            f'The migrations directory "{path}" does not exist. '
            'Please review the "migrations" setting'
        )

    @classmethod
    def checksum_path_invalid(cls, path: str) -> ConfigError:
        return cls(
            f'Couldn\'t open file or directory "{path}". '
            'Please review the "checksum_paths" setting'
        )

    @classmethod
    def initial_import_path_invalid(cls, path: str) -> ConfigError:
        return cls(
            f'Couldn\'t open initial-import file "{path}". '
            'Please review the "initial_imports" setting'
        )

    @classmethod
    def storage_dir_is_a_file(cls, path: str) -> ConfigError:
        return cls(
            f'The storage directory "{path}" exists and is a file. '
            'Please review the "storage_dir" setting'
        )

    @classmethod
    def unknown_seeder(cls, seeder: str) -> ConfigError:
        return cls(f'The seeder "{seeder}" could not be resolved')


class AccessDeniedError(ConfigError):
    """Raised when the database server rejects the configured credentials."""

    @classmethod
    def for_connection(cls, connection: str) -> AccessDeniedError:
        return cls(
            f'Access to the database was denied for connection "{connection}". '
            "Please check the username, password and permissions"
        )


class BuildError(DBPrepError):
    """Raised when the database could not be built."""


class MigrationsFailedError(BuildError):
    def __init__(self, path: str | None) -> None:
        self.path = path
        location = f' from "{path}"' if path else ""
        super().__init__(f"An error occurred when running the migrations{location}")


class SeederFailedError(BuildError):
    def __init__(self, seeder: str) -> None:
        self.seeder = seeder
        super().__init__(f'An error occurred when running the seeder "{seeder}"')


class BrowserTestIncompatibleError(BuildError):
    def __init__(self, driver: str) -> None:
        self.driver = driver
        super().__init__(f'"{driver}" databases cannot be used for browser tests')


class AlreadyExecutedError(BuildError):
    """Raised when a builder is executed a second time."""


class SnapshotError(DBPrepError):
    """Raised when snapshot files cannot be handled."""


class SnapshotDeleteError(SnapshotError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f'Could not delete snapshot file "{path}"')


class SnapshotImportsNotAllowedError(SnapshotError):
    def __init__(self, driver: str, database: str) -> None:
        super().__init__(
            f'Cannot import files into "{database}" because "{driver}" '
            "databases do not support snapshots"
        )


class InitialImportFailedError(SnapshotError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f'Initial import "{path}" could not be loaded')


class RemoteBuildError(DBPrepError):
    """Raised when a remote peer could not build the database. Terminal."""

    def __init__(self, message: str, *, url: str, response_body: str | None = None) -> None:
        self.url = url
        self.response_body = response_body
        detail = f"{message} (url: {url})"
        if response_body:
            detail = f"{detail}\nRemote response: {response_body}"
        super().__init__(detail)


class RemoteBuildUrlInvalidError(RemoteBuildError):
    def __init__(self, url: str) -> None:
        super().__init__("The remote build url is invalid", url=url)


class RemoteBuildNotSupportedError(DBPrepError):
    def __init__(self, driver: str) -> None:
        self.driver = driver
        super().__init__(f'"{driver}" databases cannot be built remotely')


class RemoteShareError(DBPrepError):
    """Raised when a remote build payload cannot be interpreted."""


class TransactionCommittedError(DBPrepError):
    """Raised when code under test committed the reuse transaction."""

    def __init__(self, connection: str, test_name: str | None = None) -> None:
        self.connection = connection
        self.test_name = test_name
        where = f' in test "{test_name}"' if test_name else ""
        super().__init__(
            f'The reuse transaction on connection "{connection}" was committed{where}. '
            "The database cannot be trusted and will be rebuilt next time"
        )


class VerificationError(DBPrepError):
    """Raised when the database no longer matches its recorded baseline."""

    def __init__(self, database: str, differences: list[str]) -> None:
        self.database = database
        self.differences = differences
        listing = "; ".join(differences)
        super().__init__(f'Database "{database}" changed during the test: {listing}')


_ACCESS_DENIED_MYSQL_CODES = {1044, 1045}
_ACCESS_DENIED_SQLSTATES = {"42501", "28P01", "28000"}
_ACCESS_DENIED_PHRASES = ("access denied", "permission denied", "password authentication failed")


def find_access_denied(exc: BaseException) -> DBAPIError | None:
    """Return the driver error in ``exc``'s chain that reports denied access, if any."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, DBAPIError) and _is_access_denied(current):
            return current
        current = current.__cause__ or current.__context__
    return None


def _is_access_denied(error: DBAPIError) -> bool:
    original = error.orig
    args = getattr(original, "args", ())
    if args and args[0] in _ACCESS_DENIED_MYSQL_CODES:
        return True
    sqlstate = getattr(original, "pgcode", None) or getattr(original, "sqlstate", None)
    if sqlstate in _ACCESS_DENIED_SQLSTATES:
        return True
    message = str(original).lower()
    return any(phrase in message for phrase in _ACCESS_DENIED_PHRASES)
