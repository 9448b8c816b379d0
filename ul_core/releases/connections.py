from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from ul_core.constants import STATUS_DELETING
from ul_core.releases.selection import even_split


def rebalance_namespace(connection: Connection, *, release_id: str, namespace: str) -> int:
    """Give every live connection of ``namespace`` in the release an even share."""

    rows = connection.execute(
        text(
            """
            SELECT c.id
            FROM release_build_connections c
            JOIN builds b ON b.id = c.build_id
            WHERE c.release_id = :release_id
              AND b.namespace = :namespace
              AND b.status != :deleting
            ORDER BY c.position, c.id
            """
        ),
        {"release_id": release_id, "namespace": namespace, "deleting": STATUS_DELETING},
    ).all()
    if not rows:
        return 0

    for (connection_id,), chance in zip(rows, even_split(len(rows))):
        connection.execute(
            text("UPDATE release_build_connections SET selection_chance = :chance WHERE id = :id"),
            {"chance": chance, "id": connection_id},
        )
    return len(rows)
