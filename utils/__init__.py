"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_iso, start_of_day_utc
from utils.org_context import (
    get_current_org_id,
    set_current_org_id,
    clear_current_org_id,
    org_context,
    get_current_actor_id,
    set_current_actor_id,
)
