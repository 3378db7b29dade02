"""
Connection provider for the source and destination databases.

Credentials move through DISCONNECTED -> PROMPTING_CREDENTIALS -> VALIDATED.
When a connection attempt fails and a prompt callable is configured, the
prompt is asked for replacement settings; once the attempts run out (or the
prompt gives up by returning None) validation raises ConnectivityError.
"""

import logging
import threading
from enum import Enum
from typing import Callable, Optional

from core.errors import ConnectivityError, sanitize_error
from extensions.plugins import mssql_adapter, postgresql_adapter

logger = logging.getLogger(__name__)

SOURCE = "source"
DESTINATION = "destination"

# prompt(side, current_config, error) -> replacement config, or None to give up
CredentialPrompt = Callable[[str, object, ConnectivityError], Optional[object]]


class CredentialState(Enum):
    DISCONNECTED = "disconnected"
    PROMPTING_CREDENTIALS = "prompting_credentials"
    VALIDATED = "validated"


class ConnectionProvider:
    """Opens connections from validated settings; one fresh connection per call"""

    def __init__(self, source_config: postgresql_adapter.ConnectionConfig,
                 destination_config: mssql_adapter.MSSQLConnectionConfig,
                 prompt: CredentialPrompt = None, max_attempts: int = 3):
        self.source_config = source_config
        self.destination_config = destination_config
        self.prompt = prompt
        self.max_attempts = max(1, max_attempts)
        self._state = CredentialState.DISCONNECTED
        self._lock = threading.Lock()

    @classmethod
    def from_urls(cls, source_url: str, destination_url: str, query_timeout: int = None,
                  prompt: CredentialPrompt = None, max_attempts: int = 3) -> 'ConnectionProvider':
        try:
            source_config = postgresql_adapter.create_config_from_url(source_url)
            destination_kwargs = {'query_timeout': query_timeout} if query_timeout else {}
            destination_config = mssql_adapter.create_config_from_url(destination_url, **destination_kwargs)
        except ValueError as e:
            raise ConnectivityError(f"Invalid connection URL: {sanitize_error(e)}") from e
        return cls(source_config, destination_config, prompt=prompt, max_attempts=max_attempts)

    @property
    def state(self) -> CredentialState:
        return self._state

    def open_source_connection(self):
        return postgresql_adapter.connect(self.source_config)

    def open_destination_connection(self):
        return mssql_adapter.connect(self.destination_config)

    def validate(self):
        """Prove both sides accept a trivial query; raises ConnectivityError"""
        with self._lock:
            if self._state == CredentialState.VALIDATED:
                return
            self._state = CredentialState.DISCONNECTED
            self._validate_side(SOURCE)
            self._validate_side(DESTINATION)
            self._state = CredentialState.VALIDATED
            logger.info("Source and destination connections validated")

    def _validate_side(self, side: str):
        for attempt in range(1, self.max_attempts + 1):
            try:
                self._check_side(side)
                return
            except ConnectivityError as e:
                logger.warning(f"{side} connection attempt {attempt}/{self.max_attempts} failed: {e.message}")
                if self.prompt is None or attempt == self.max_attempts:
                    self._state = CredentialState.DISCONNECTED
                    raise
                self._state = CredentialState.PROMPTING_CREDENTIALS
                replacement = self.prompt(side, self._config_for(side), e)
                if replacement is None:
                    self._state = CredentialState.DISCONNECTED
                    raise
                self._set_config(side, replacement)

    def _check_side(self, side: str):
        opener = self.open_source_connection if side == SOURCE else self.open_destination_connection
        conn = opener()
        try:
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
        except ConnectivityError:
            raise
        except Exception as e:
            raise ConnectivityError(
                f"Validation query failed on {side}: {sanitize_error(e)}", {'side': side}
            ) from e
        finally:
            conn.close()

    def _config_for(self, side: str):
        return self.source_config if side == SOURCE else self.destination_config

    def _set_config(self, side: str, config):
        if side == SOURCE:
            self.source_config = config
        else:
            self.destination_config = config

    def describe(self) -> dict:
        """Connection targets without credentials, for reports"""
        src, dst = self.source_config, self.destination_config
        return {
            SOURCE: f"postgresql://{src.host}:{src.port}/{src.database}",
            DESTINATION: f"mssql://{dst.host}:{dst.port}/{dst.database}",
        }
