"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

Persistence for neural networks.

Networks are stored in the NETWORK/LAYER/NEURON weight format, either in a
plain stream, in a named file, or as a blob in a SQLite database alongside
queryable metadata. The weight format does not record the activation
function, so the database keeps it in its own column.
"""

import io
import os
import json
import sqlite3
import logging
from typing import BinaryIO, Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from .activation import DEFAULT_ACTIVATION, Activation
from .exceptions import MalformedRecordError, PersistenceIOError
from .network import Network

# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# STREAM AND FILE ENTRY POINTS
# ============================================================================

def write_network(network: Network, stream: BinaryIO) -> None:
    """
    Write ``network`` to an already open binary stream.

    The stream is left open and positioned after the network, so the
    network can be embedded in a larger document.

    Raises:
        PersistenceIOError: If the stream rejects a write
    """
    network.write(stream)
    try:
        stream.flush()
    except (OSError, ValueError) as e:
        raise PersistenceIOError(f"Failed to flush stream: {e}") from e


def read_network(
    stream: BinaryIO,
    activation: Activation = DEFAULT_ACTIVATION
) -> Network:
    """
    Read a network from an already open binary stream.

    Args:
        stream: Stream positioned at a NETWORK record
        activation: Activation function the network was trained with

    Returns:
        The fully loaded network

    Raises:
        MalformedRecordError: If the document is malformed or truncated
        PersistenceIOError: If the stream cannot be read
    """
    return Network.read(stream, Activation(activation))


def dump_network(network: Network) -> bytes:
    """Serialize ``network`` to bytes."""
    buffer = io.BytesIO()
    write_network(network, buffer)
    return buffer.getvalue()


def parse_network(
    data: bytes,
    activation: Activation = DEFAULT_ACTIVATION
) -> Network:
    """Deserialize a network from bytes produced by ``dump_network``."""
    return read_network(io.BytesIO(data), activation)


def save_network_file(network: Network, path: str) -> bool:
    """
    Save a network to a file.

    Args:
        network: The network to save
        path: Destination file, overwritten if it exists

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network(2, 1, [2])
        >>> save_network_file(net, "xor.nn")
        True
    """
    try:
        with open(path, 'wb') as f:
            write_network(network, f)
    except (OSError, PersistenceIOError) as e:
        logger.error(f"Failed to save network to '{path}': {e}")
        return False

    logger.info(f"Saved network {network.sizes} to '{path}'")
    return True


def load_network_file(
    path: str,
    activation: Activation = DEFAULT_ACTIVATION
) -> Optional[Network]:
    """
    Load a network from a file.

    Args:
        path: File written by ``save_network_file``
        activation: Activation function the network was trained with

    Returns:
        The loaded network, or None if the file is missing or malformed
    """
    try:
        with open(path, 'rb') as f:
            network = read_network(f, activation)
    except MalformedRecordError as e:
        logger.error(f"Malformed network file '{path}': {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read network file '{path}': {e}")
        return None

    logger.info(f"Loaded network {network.sizes} from '{path}'")
    return network


# ============================================================================
# SQLITE MODEL STORE
# ============================================================================

class ModelDatabase:
    """
    Manages SQLite database for neural network model persistence.

    The database stores:
    - Network metadata (architecture, activation, training status, error)
    - Network weights as blobs in the NETWORK/LAYER/NEURON format
    """

    def __init__(self, db_path: str = 'models/networks.db'):
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = db_path
        self._ensure_directory()
        self._initialize_schema()

    def _ensure_directory(self) -> None:
        """Create the database directory if it doesn't exist."""
        db_dir = os.path.dirname(self.db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir)

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for database connections.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row  # Enable column access by name
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_schema(self) -> None:
        """Create the database schema if it doesn't exist."""
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS networks (
                    network_id TEXT PRIMARY KEY,
                    architecture TEXT NOT NULL,
                    activation TEXT NOT NULL,
                    network_data BLOB NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    mse REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            ''')

            cursor.execute('''
                CREATE INDEX IF NOT EXISTS idx_created_at
                ON networks(created_at DESC)
            ''')

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> Dict[str, Any]:
        return {
            'network_id': row['network_id'],
            'architecture': json.loads(row['architecture']),
            'activation': row['activation'],
            'trained': bool(row['trained']),
            'mse': row['mse'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        network: Network,
        network_id: str,
        trained: bool = True,
        mse: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database.

        Saving under an existing id replaces the stored network but keeps
        its creation time.

        Args:
            network: Network object to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            mse: Final training mean squared error

        Returns:
            bool: True if successful

        Raises:
            ValueError: If mse is negative
        """
        if mse is not None and mse < 0.0:
            raise ValueError(f"mse must be non-negative, got {mse}")

        network_data = dump_network(network)
        architecture_json = json.dumps(network.sizes)

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, activation, network_data,
                 trained, mse, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    activation = excluded.activation,
                    network_data = excluded.network_data,
                    trained = excluded.trained,
                    mse = excluded.mse,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                architecture_json,
                network.activation.value,
                sqlite3.Binary(network_data),
                1 if trained else 0,
                mse
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{network.sizes}, trained={trained}, mse={mse}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[Network]:
        """
        Load a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Network object or None if not found

        Raises:
            MalformedRecordError: If the stored weights are corrupt
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT activation, network_data FROM networks '
                'WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

        if row is None:
            logger.warning(f"Network '{network_id}' not found")
            return None

        network = parse_network(
            bytes(row['network_data']),
            Activation.from_name(row['activation'])
        )
        logger.info(f"Loaded network '{network_id}'")
        return network

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata.

        Returns:
            List of network metadata dictionaries, newest first
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    activation,
                    trained,
                    mse,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')

            networks = []
            for row in cursor.fetchall():
                metadata = self._row_to_metadata(row)
                architecture = metadata['architecture']

                # One row per neuron, one column per input plus the bias
                metadata['weights_shape'] = [
                    [architecture[i+1], architecture[i] + 1]
                    for i in range(len(architecture) - 1)
                ]
                networks.append(metadata)

            logger.debug(f"Listed {len(networks)} networks")
            return networks

    def delete_network_from_db(self, network_id: str) -> bool:
        """
        Delete a network from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            bool: True if deleted, False if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'DELETE FROM networks WHERE network_id = ?',
                (network_id,)
            )

            deleted = cursor.rowcount > 0
            if deleted:
                logger.info(f"Deleted network '{network_id}'")
            else:
                logger.warning(
                    f"Could not delete network '{network_id}': not found"
                )
            return deleted

    def delete_old_networks_from_db(self, days: float) -> int:
        """
        Delete networks created more than ``days`` days ago.

        Returns:
            int: Number of deleted networks

        Raises:
            ValueError: If days is negative
        """
        if days < 0:
            raise ValueError(f"days must be non-negative, got {days}")

        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                DELETE FROM networks
                WHERE julianday('now') - julianday(created_at) > ?
            ''', (days,))
            deleted = cursor.rowcount

        logger.info(f"Deleted {deleted} network(s) older than {days} day(s)")
        return deleted

    def get_network_metadata_from_db(
        self,
        network_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Get network metadata without loading the weights.

        Args:
            network_id: Unique identifier of the network

        Returns:
            Metadata dictionary or None if not found
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    activation,
                    trained,
                    mse,
                    created_at,
                    updated_at
                FROM networks
                WHERE network_id = ?
            ''', (network_id,))

            row = cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Metadata for network '{network_id}' not found"
                )
                return None

            return self._row_to_metadata(row)


# Global database instance
_db = None


def _get_db(model_dir: str = 'models') -> ModelDatabase:
    """
    Get the database for ``model_dir``.

    The default directory shares one global instance, any other directory
    gets a fresh one.

    Returns:
        ModelDatabase: The database instance
    """
    global _db
    if model_dir != 'models':
        return ModelDatabase(db_path=os.path.join(model_dir, 'networks.db'))
    if _db is None:
        _db = ModelDatabase()
    return _db


def save_network(
    network: Network,
    network_id: str,
    model_dir: str = 'models',
    trained: bool = True,
    mse: Optional[float] = None
) -> bool:
    """
    Save a neural network to the SQLite database.

    Args:
        network: The neural network object to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Boolean indicating if the network has been trained
        mse: Final training mean squared error

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> net = Network(2, 1, [2])
        >>> save_network(net, "xor", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).save_network_to_db(
            network, network_id, trained, mse
        )

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except PersistenceIOError as e:
        logger.error(
            f"Serialization error saving network '{network_id}': {e}"
        )
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(network_id: str, model_dir: str = 'models') -> Optional[Network]:
    """
    Load a neural network from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded neural network object or None if not found or corrupt
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).load_network_from_db(network_id)

    except MalformedRecordError as e:
        logger.error(
            f"Deserialization error loading network '{network_id}': {e}"
        )
        return None
    except sqlite3.Error as e:
        logger.error(
            f"Database error loading network '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error loading network '{network_id}': {e}"
        )
        return None


def list_saved_networks(model_dir: str = 'models') -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved network
    """
    try:
        return _get_db(model_dir).list_networks_from_db()

    except sqlite3.Error as e:
        logger.error(f"Database error listing networks: {e}")
        return []
    except json.JSONDecodeError as e:
        logger.error(f"JSON decode error listing networks: {e}")
        return []
    except Exception as e:
        logger.exception(f"Unexpected error listing networks: {e}")
        return []


def delete_network(network_id: str, model_dir: str = 'models') -> bool:
    """
    Delete a saved network from the database.

    Args:
        network_id: The unique identifier of the network to delete
        model_dir: Directory where the database is stored

    Returns:
        bool: True if deletion was successful, False otherwise
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        return _get_db(model_dir).delete_network_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error deleting network '{network_id}': {e}"
        )
        return False


def delete_old_networks(days: float = 2, model_dir: str = 'models') -> int:
    """
    Delete saved networks older than ``days`` days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of deleted networks, -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        return _get_db(model_dir).delete_old_networks_from_db(days)

    except sqlite3.Error as e:
        logger.error(f"Database error deleting old networks: {e}")
        return -1
    except Exception as e:
        logger.exception(f"Unexpected error deleting old networks: {e}")
        return -1


def get_network_metadata(
    network_id: str,
    model_dir: str = 'models'
) -> Optional[Dict[str, Any]]:
    """
    Get metadata for a specific network without loading its weights.

    Args:
        network_id: The unique identifier of the network
        model_dir: Directory where the database is stored

    Returns:
        dict: Network metadata or None if not found
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        return _get_db(model_dir).get_network_metadata_from_db(network_id)

    except sqlite3.Error as e:
        logger.error(
            f"Database error getting metadata for '{network_id}': {e}"
        )
        return None
    except json.JSONDecodeError as e:
        logger.error(
            f"JSON decode error getting metadata for '{network_id}': {e}"
        )
        return None
    except Exception as e:
        logger.exception(
            f"Unexpected error getting metadata for '{network_id}': {e}"
        )
        return None
