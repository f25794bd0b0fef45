"""Diff desired server configuration against live connection records."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from mcphub.config.schema import SseServerConfig, StdioServerConfig
from mcphub.records import ConnectionRecord


class ActionKind(str, Enum):
    """What the manager must do for one server name."""

    REMOVE = "remove"
    ADD_DISABLED = "add_disabled"
    DISABLE = "disable"
    CONNECT = "connect"
    ENABLE = "enable"
    RECONNECT = "reconnect"


@dataclass(frozen=True)
class ReconcileAction:
    kind: ActionKind
    name: str
    config: StdioServerConfig | SseServerConfig | None = None

    @property
    def propagates_errors(self) -> bool:
        """Whether a failure should reach the caller that triggered reconciliation."""
        return self.kind is ActionKind.CONNECT


def config_changed(record: ConnectionRecord, config: StdioServerConfig | SseServerConfig) -> bool:
    """Deep-compare the record's stored config with *config*."""
    try:
        stored = json.loads(record.config)
    except ValueError:
        return True
    return stored != config.to_persisted()


def plan_reconciliation(
    current: Mapping[str, ConnectionRecord],
    desired: Mapping[str, StdioServerConfig | SseServerConfig],
) -> list[ReconcileAction]:
    """Return the ordered actions turning *current* into *desired*.

    Removals come first so a server can be replaced under the same name in
    one pass. Unchanged enabled servers and already-disabled servers produce
    no action, which makes a second pass over the same configuration a no-op.
    """
    actions = [ReconcileAction(ActionKind.REMOVE, name) for name in current if name not in desired]

    for name, config in desired.items():
        record = current.get(name)
        if config.disabled:
            if record is None:
                actions.append(ReconcileAction(ActionKind.ADD_DISABLED, name, config))
            elif not record.disabled:
                actions.append(ReconcileAction(ActionKind.DISABLE, name, config))
            continue

        if record is None:
            actions.append(ReconcileAction(ActionKind.CONNECT, name, config))
        elif record.disabled:
            actions.append(ReconcileAction(ActionKind.ENABLE, name, config))
        elif config_changed(record, config):
            actions.append(ReconcileAction(ActionKind.RECONNECT, name, config))

    return actions
