from __future__ import annotations

from datetime import datetime, timezone


class TimeProvider:
    def utc_now(self) -> datetime:
        return datetime.now(timezone.utc)

    def server_timestamp(self) -> str:
        # Fixed-width UTC ISO strings sort chronologically as plain text.
        return self.utc_now().strftime('%Y-%m-%dT%H:%M:%S.%fZ')


default_time_provider = TimeProvider()
