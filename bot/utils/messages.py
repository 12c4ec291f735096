"""Message templates for relay notices, help texts and operator diagnostics."""


def help_operator_private() -> str:
    """/start from the operator in private."""
    return "\n".join([
        "👋 Welcome back!",
        "· Send /init in your forum group to bind it, /status shows the mapping",
        "· Reply #del to a message to delete its counterpart",
        "· /ban /unban (and /silent_ban /silent_unban) work inside a thread",
        "· /reset clears the binding so the group can be re-initialized",
    ])


def help_operator_group() -> str:
    """/start from the operator in the group itself."""
    return "\n".join([
        "Relay console:",
        "· /init binds this group, /status shows the current state",
        "· Inside a thread use /ban /unban or reply #del to clean up",
        "· The bot needs topic management and delete permissions",
    ])


def help_thread() -> str:
    return "\n".join([
        "👀 This thread belongs to one private chat. Replies here reach that user.",
        "· Replies, edits and reactions are synced, reply #del to delete",
    ])


def help_user() -> str:
    return "\n".join([
        "Hi! Just send your message here and it will reach the team.",
        "· Replies and edits are synced, reply #del to a message to delete it",
    ])


NOT_INITIALIZED = "⚠️ The relay is not initialized yet. The operator has to send /init in the forum group."
GROUP_BINDING_MISSING = "⚠️ The group binding is missing. Run /init in the forum group again."
ALREADY_INITIALIZED = "This group is already bound. Use /status to see the current state."
BOUND_TO_OTHER_GROUP = "⚠️ Another group is bound. Run /reset there first."
INITIALIZED = "✅ Initialized. Private chats will now get one thread each in this group."
RESET_DONE = "Binding cleared. Send /init to bind a group again."
OPERATOR_ONLY = "Only the operator can use this command."
RUN_IN_THREAD = "Run this command inside a thread of the bound group."
RUN_IN_BOUND_GROUP = "Run this command in the bound group."

ADMIN_NO_THREAD = (
    "As an administrator of the group you don't need the bot. "
    "Reply to users directly inside their threads."
)
USER_BLOCKED = "You are blocked; your messages are not delivered."

THREAD_BLOCKED = "🚫 Blocked. Messages from this private chat are no longer relayed."
THREAD_UNBLOCKED = "✅ Unblocked. Messages from this private chat are relayed again."
THREAD_ALREADY_BLOCKED = "This thread is already blocked."
THREAD_NOT_BLOCKED = "This thread is not blocked."
THREAD_UNBOUND = "⚠️ This thread has no private chat bound to it."
USER_NOTIFIED_BLOCKED = "You have been blocked; your messages will no longer be delivered."
USER_NOTIFIED_UNBLOCKED = "You have been unblocked and can send messages again."

COUNTERPART_STALE = "⚠️ Could not find the counterpart message; it may be too old or the link was lost."
NO_THREAD_YET = "⚠️ No thread exists for this chat yet. Send a message first."
USER_DELETE_DONE = "✅ Message deleted on the other side. You can delete your own copy and the #del message."
OPERATOR_DELETE_DONE = "✅ Deleted. These 3 messages will be removed in a moment."
EDIT_TEXT_ONLY = "⚠️ Only text edits are synced."
EDIT_RESENT = "⬆️ Message edited (the original could not be edited, a new copy was sent)."


def delete_failed(description: str) -> str:
    return f"❌ Delete failed: {description}"


def edit_failed(description: str) -> str:
    return f"❌ Edit failed: {description}"


def thread_creation_failed(description: str) -> str:
    return f"Could not create a thread: {description}"


def relay_failure_report(error: Exception) -> str:
    return f"Relaying a message failed: {error}"


def api_failure_report(method: str, context: str, description: str) -> str:
    where = f" ({context})" if context else ""
    return f"⚠️ {method} failed{where}: {description or 'Unknown error'}"


def status_summary(group_id, bindings: int, blocked: int, record_length: int, record_limit: int) -> str:
    """/status output."""
    return "\n".join([
        "Current state:",
        f"Group id: {group_id if group_id is not None else 'not recorded'}",
        f"Bindings: {bindings}",
        f"Blocked threads: {blocked}",
        f"Metadata record: {record_length}/{record_limit}",
    ])
