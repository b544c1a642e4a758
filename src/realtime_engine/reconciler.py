from typing import Optional

from src.realtime_engine.models import SessionOptions
from utils.ml_logging import get_logger

logger = get_logger("realtime_engine.reconciler")

# Fields that exist only on the client and never come back in a session echo
CLIENT_HELD_FIELDS = ("tools", "tool_choice", "tracing")


def reconcile(server_options: SessionOptions, prior_options: Optional[SessionOptions]) -> SessionOptions:
    """
    Merge a server-echoed snapshot with the snapshot the client last requested.

    Args:
        server_options (SessionOptions): Scalar state decoded from session.created/updated.
        prior_options (SessionOptions, optional): The client's current snapshot.

    Returns:
        SessionOptions: Server scalars with the client-held tools, tool choice
        and tracing metadata carried over. The server snapshot is returned
        unchanged when there is no prior snapshot.
    """
    if prior_options is None:
        return server_options

    carried = {name: getattr(prior_options, name) for name in CLIENT_HELD_FIELDS}
    logger.debug(f"Reconciling session options; carrying over {len(prior_options.tools)} tool(s)")
    return server_options.with_changes(**carried)
