"""
model_persistence.py
~~~~~~~~~~~~~~~~~~~~

SQLite-based persistence for trained networks.

Weights are stored in the same two-block text format as weight files,
so a stored network can be exported byte-for-byte with
``weights_to_text`` and re-imported with ``weights_from_text``.
"""

import sqlite3
import json
import os
import logging
from typing import Optional, List, Dict, Any, Generator
from contextlib import contextmanager

from digitnet.config import Architecture
from digitnet.errors import MalformedWeightFileError
from digitnet.weights import WeightSet, weights_from_text, weights_to_text

# Configure module logger
logger = logging.getLogger(__name__)


class ModelDatabase:
    """
    Manages SQLite database for network persistence.

    The database stores:
    - Network metadata (architecture, training status, cost, accuracy)
    - Weight matrices in weight-file text format
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
                    weights TEXT NOT NULL,
                    trained INTEGER NOT NULL DEFAULT 0,
                    training_status TEXT,
                    final_cost REAL,
                    accuracy REAL,
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
            'trained': bool(row['trained']),
            'training_status': row['training_status'],
            'final_cost': row['final_cost'],
            'accuracy': row['accuracy'],
            'created_at': row['created_at'],
            'updated_at': row['updated_at']
        }

    def save_network_to_db(
        self,
        weights: WeightSet,
        network_id: str,
        trained: bool = True,
        training_status: Optional[str] = None,
        final_cost: Optional[float] = None,
        accuracy: Optional[float] = None
    ) -> bool:
        """
        Save a network to the database.

        Args:
            weights: Network weights to save
            network_id: Unique identifier for the network
            trained: Whether the network has been trained
            training_status: Terminal status of the last training run
            final_cost: Cost reached by the last training run
            accuracy: Classification accuracy (0.0 to 1.0)

        Returns:
            bool: True if successful

        Raises:
            ValueError: If accuracy is out of valid range
        """
        # Validate inputs
        if accuracy is not None and not 0.0 <= accuracy <= 1.0:
            raise ValueError(
                f"Accuracy must be between 0.0 and 1.0, got {accuracy}"
            )

        architecture = weights.architecture.to_dict()

        with self._get_connection() as conn:
            cursor = conn.cursor()
            # Keep the original creation time when replacing a network
            cursor.execute('''
                INSERT INTO networks
                (network_id, architecture, weights, trained,
                 training_status, final_cost, accuracy, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(network_id) DO UPDATE SET
                    architecture = excluded.architecture,
                    weights = excluded.weights,
                    trained = excluded.trained,
                    training_status = excluded.training_status,
                    final_cost = excluded.final_cost,
                    accuracy = excluded.accuracy,
                    updated_at = CURRENT_TIMESTAMP
            ''', (
                network_id,
                json.dumps(architecture),
                weights_to_text(weights),
                1 if trained else 0,
                training_status,
                final_cost,
                accuracy
            ))

        logger.info(
            f"Saved network '{network_id}' with architecture "
            f"{architecture}, trained={trained}, status={training_status}"
        )
        return True

    def load_network_from_db(self, network_id: str) -> Optional[WeightSet]:
        """
        Load a network's weights from the database.

        Args:
            network_id: Unique identifier of the network

        Returns:
            WeightSet or None if not found

        Raises:
            MalformedWeightFileError: If the stored weights are corrupt
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                'SELECT architecture, weights FROM networks WHERE network_id = ?',
                (network_id,)
            )
            row = cursor.fetchone()

            if row is None:
                logger.warning(f"Network '{network_id}' not found")
                return None

            architecture = Architecture.from_dict(json.loads(row['architecture']))
            weights = weights_from_text(row['weights'], architecture)
            logger.info(f"Loaded network '{network_id}'")
            return weights

    def list_networks_from_db(self) -> List[Dict[str, Any]]:
        """
        List all networks with metadata.

        Returns:
            List of network metadata dictionaries
        """
        with self._get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute('''
                SELECT
                    network_id,
                    architecture,
                    trained,
                    training_status,
                    final_cost,
                    accuracy,
                    created_at,
                    updated_at
                FROM networks
                ORDER BY created_at DESC
            ''')

            networks = []
            for row in cursor.fetchall():
                metadata = self._row_to_metadata(row)
                architecture = Architecture.from_dict(metadata['architecture'])
                metadata['hidden_shape'] = list(architecture.hidden_shape)
                metadata['output_shape'] = list(architecture.output_shape)
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

        Args:
            days: Age threshold in days (non-negative)

        Returns:
            int: Number of networks deleted

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
        Get network metadata without parsing the weights.

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
                    trained,
                    training_status,
                    final_cost,
                    accuracy,
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
    Get the database for a model directory.

    The default directory shares one global instance; any other
    directory gets a fresh instance.

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
    weights: WeightSet,
    network_id: str,
    model_dir: str = 'models',
    trained: bool = True,
    training_status: Optional[str] = None,
    final_cost: Optional[float] = None,
    accuracy: Optional[float] = None
) -> bool:
    """
    Save a network to the SQLite database.

    Args:
        weights: The network weights to save
        network_id: A unique identifier for the network
        model_dir: Directory for the database file
        trained: Boolean indicating if the network has been trained
        training_status: Terminal status of the last training run
        final_cost: Cost reached by the last training run
        accuracy: The classification accuracy (0.0 to 1.0)

    Returns:
        bool: True if the save was successful, False otherwise

    Example:
        >>> weights = initialize_weights(Architecture(), seed=1)
        >>> save_network(weights, "my_network", trained=False)
        True
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return False

    try:
        db = _get_db(model_dir)
        return db.save_network_to_db(
            weights, network_id, trained, training_status, final_cost, accuracy
        )

    except ValueError as e:
        logger.error(f"Validation error saving network '{network_id}': {e}")
        return False
    except sqlite3.Error as e:
        logger.error(f"Database error saving network '{network_id}': {e}")
        return False
    except Exception as e:
        logger.exception(
            f"Unexpected error saving network '{network_id}': {e}"
        )
        return False


def load_network(network_id: str, model_dir: str = 'models') -> Optional[WeightSet]:
    """
    Load a network's weights from the SQLite database.

    Args:
        network_id: The unique identifier of the network to load
        model_dir: Directory where the database is stored

    Returns:
        The loaded WeightSet or None if not found

    Example:
        >>> weights = load_network("my_network")
        >>> if weights:
        ...     print(weights.architecture)
    """
    if not network_id or not isinstance(network_id, str):
        logger.error("Invalid network_id: must be a non-empty string")
        return None

    try:
        db = _get_db(model_dir)
        return db.load_network_from_db(network_id)

    except (MalformedWeightFileError, json.JSONDecodeError) as e:
        logger.error(
            f"Corrupt weights stored for network '{network_id}': {e}"
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


def list_saved_networks(
    model_dir: str = 'models'
) -> List[Dict[str, Any]]:
    """
    List all saved networks with their metadata.

    Args:
        model_dir: Directory where the database is stored

    Returns:
        list: A list of metadata dictionaries for each saved network
    """
    try:
        db = _get_db(model_dir)
        return db.list_networks_from_db()

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
        db = _get_db(model_dir)
        return db.delete_network_from_db(network_id)

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
    Delete saved networks older than the given number of days.

    Args:
        days: Age threshold in days
        model_dir: Directory where the database is stored

    Returns:
        int: Number of networks deleted, or -1 on a database error

    Raises:
        ValueError: If days is negative
    """
    if days < 0:
        raise ValueError(f"days must be non-negative, got {days}")

    try:
        db = _get_db(model_dir)
        return db.delete_old_networks_from_db(days)

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
        db = _get_db(model_dir)
        return db.get_network_metadata_from_db(network_id)

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
