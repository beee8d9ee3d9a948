"""Dependencies handed to job handlers."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from supportdesk.services.relay_service import RelayService


@dataclass
class JobContext:
    relay: RelayService

    @property
    def session_factory(self) -> sessionmaker:
        return self.relay.session_factory

    @property
    def platform(self):
        return self.relay.platform

    @property
    def status(self):
        return self.relay.status

    @property
    def timers(self):
        return self.relay.timers

    @property
    def connections(self):
        return self.relay.connections

    @property
    def support_group_id(self) -> int:
        return self.relay.support_group_id
