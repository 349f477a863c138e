import json
import logging
import os
import pathlib
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

MAX_RECENT_CONNECTIONS = 20


@dataclass(frozen=True)
class ServerConnection:
    username: str
    server: str
    instance: str
    time: int
    is_using_qmserver_cloud: bool = False
    is_premium: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServerConnection':
        return cls(
            username=str(data.get('username', '')),
            server=str(data.get('server', '')),
            instance=str(data.get('instance', '')),
            time=int(data.get('time') or 0),
            is_using_qmserver_cloud=bool(data.get('is_using_qmserver_cloud', False)),
            is_premium=bool(data.get('is_premium', False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        # Flags are only written when set
        for key in ('is_using_qmserver_cloud', 'is_premium'):
            if not data[key]:
                del data[key]
        return data


class RecentConnections:
    """The list of recently joined servers kept in ``<root>/.recent_connections.json``."""

    def __init__(self, path: pathlib.Path, logger: Optional[logging.Logger] = None):
        self.path = path
        self.log = logger or log

    def load(self) -> List[ServerConnection]:
        """Returns stored connections, newest first. A missing file is an empty list."""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            return []
        if not isinstance(raw, list):
            raise ValueError(f"{self.path} does not contain a list")
        connections = [ServerConnection.from_dict(entry) for entry in raw if isinstance(entry, dict)]
        return sorted(connections, key=lambda c: c.time, reverse=True)

    def save(self, connections: List[ServerConnection]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump([c.to_dict() for c in connections], f, indent=2)
        os.replace(tmp_path, self.path)

    def add(self, username: str, server: str, instance: str, is_using_qmserver_cloud: bool = False,
            is_premium: bool = False, timestamp: Optional[int] = None) -> ServerConnection:
        connection = ServerConnection(
            username=username,
            server=server,
            instance=instance,
            time=int(time.time()) if timestamp is None else timestamp,
            is_using_qmserver_cloud=is_using_qmserver_cloud,
            is_premium=is_premium,
        )
        connections = [
            c for c in self.load()
            if (c.username, c.server, c.instance) != (username, server, instance)
        ]
        connections.insert(0, connection)
        self.save(connections[:MAX_RECENT_CONNECTIONS])
        self.log.debug(f"Recorded connection of {username} to {server} ({instance})")
        return connection
